"""Graph store client for the temporal knowledge-graph service.

Makes HTTP requests to the Zep v2 REST API, handling authentication, error
mapping, and schema validation of responses. Business logic only ever sees
the typed GraphSearchResults or a ServiceError.
"""

from typing import Any, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from temporal_bridge.config import Config
from temporal_bridge.log_config import get_logger

log = get_logger("graph_client")

SEARCH_SCOPES = ("edges", "nodes", "episodes")
ADD_TYPES = ("json", "text", "message")


class ServiceError(Exception):
    """Error from the graph service, including malformed responses.

    status_code is 0 for transport failures and for responses that could not
    be decoded or validated.
    """

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Graph service error {status_code}: {detail}")


# ═══════════════════════════════════════════════════════════════════════════════
# RESPONSE SCHEMAS
# ═══════════════════════════════════════════════════════════════════════════════


class GraphNode(BaseModel):
    """Entity node as returned by a nodes-scoped search."""

    model_config = ConfigDict(extra="ignore")

    name: str
    uuid: str | None = None
    summary: str | None = None
    labels: list[str] = Field(default_factory=list)
    attributes: dict[str, Any] = Field(default_factory=dict)
    created_at: str | None = None
    score: float | None = None

    @field_validator("labels", "attributes", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any, info) -> Any:
        if value is None:
            return [] if info.field_name == "labels" else {}
        return value

    def has_label(self, *labels: str) -> bool:
        wanted = {label.lower() for label in labels}
        return any(label.lower() in wanted for label in self.labels)


class GraphEdge(BaseModel):
    """Fact edge as returned by an edges-scoped search."""

    model_config = ConfigDict(extra="ignore")

    fact: str = ""
    uuid: str | None = None
    name: str | None = None
    source_node_uuid: str | None = None
    target_node_uuid: str | None = None
    episodes: list[str] = Field(default_factory=list)
    created_at: str | None = None
    valid_at: str | None = None
    invalid_at: str | None = None
    score: float | None = None

    @field_validator("fact", mode="before")
    @classmethod
    def _none_fact(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("episodes", mode="before")
    @classmethod
    def _none_episodes(cls, value: Any) -> Any:
        return [] if value is None else value


class GraphSearchResults(BaseModel):
    """Validated search response. Absent collections become empty lists."""

    model_config = ConfigDict(extra="ignore")

    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)

    @field_validator("nodes", "edges", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value


@runtime_checkable
class GraphStore(Protocol):
    """What the engine needs from a knowledge-graph service."""

    async def search(
        self,
        user_id: str,
        query: str,
        scope: str = "edges",
        search_filters: dict[str, Any] | None = None,
        limit: int = 10,
    ) -> GraphSearchResults:
        ...

    async def add(self, user_id: str, type: str, data: str) -> None:
        ...


class GraphStoreClient:
    """HTTP client for the knowledge-graph service.

    Handles:
    - Async HTTP requests with a lazily created httpx client
    - API key authentication
    - Mapping of HTTP, transport and schema failures to ServiceError
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        config: Config | None = None,
    ):
        """Initialize the graph store client.

        Args:
            base_url: Service URL (defaults to config.graph_url)
            api_key: API key (defaults to config.api_key)
            timeout: Request timeout in seconds (defaults to config.request_timeout)
            config: Configuration used for any value not passed explicitly
        """
        config = config or Config()
        self.base_url = (base_url or config.graph_url).rstrip("/")
        self.api_key = api_key or config.api_key
        self.timeout = timeout if timeout is not None else config.request_timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if not self.api_key:
            raise ServiceError(401, "ZEP_API_KEY is required")

        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Api-Key {self.api_key}",
                },
                timeout=httpx.Timeout(self.timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GraphStoreClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _request(self, method: str, path: str, json_data: dict | None = None) -> Any:
        """Make an HTTP request to the graph service.

        Args:
            method: HTTP method
            path: API path relative to the base URL (e.g., "/graph/search")
            json_data: Request body

        Returns:
            Decoded JSON body (None for an empty body)

        Raises:
            ServiceError: If the request fails or the body is not JSON
        """
        client = await self._get_client()

        try:
            response = await client.request(method=method, url=path, json=json_data)
        except httpx.RequestError as e:
            log.error(f"Request to {path} failed: {e}")
            raise ServiceError(0, str(e)) from e

        if response.status_code >= 400:
            try:
                error_data = response.json()
                detail = error_data.get("message") or error_data.get("detail") or response.text
            except Exception:
                detail = response.text
            log.warning(f"{method} {path} -> {response.status_code}: {detail}")
            raise ServiceError(response.status_code, str(detail))

        if not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise ServiceError(0, f"Malformed response from {path}: {e}") from e

    async def search(
        self,
        user_id: str,
        query: str,
        scope: str = "edges",
        search_filters: dict[str, Any] | None = None,
        limit: int = 10,
    ) -> GraphSearchResults:
        """Search a user's graph.

        Args:
            user_id: Graph owner
            query: Free-text query
            scope: One of edges, nodes, episodes
            search_filters: Optional filters (e.g., {"node_labels": ["Technology"]})
            limit: Maximum number of results

        Returns:
            Validated search results

        Raises:
            ValueError: For an unknown scope
            ServiceError: On any service failure or an invalid response
        """
        if scope not in SEARCH_SCOPES:
            raise ValueError(f"scope must be one of {SEARCH_SCOPES}, got {scope!r}")

        data: dict[str, Any] = {
            "user_id": user_id,
            "query": query,
            "scope": scope,
            "limit": limit,
        }
        if search_filters:
            data["search_filters"] = search_filters

        log.debug(f"search scope={scope} limit={limit} query={query[:60]!r}")
        raw = await self._request("POST", "/graph/search", json_data=data)

        if not isinstance(raw, dict):
            raise ServiceError(0, f"Expected a JSON object from graph search, got {type(raw).__name__}")
        try:
            results = GraphSearchResults.model_validate(raw)
        except ValidationError as e:
            raise ServiceError(0, f"Invalid graph search response: {e}") from e

        log.trace(f"search returned {len(results.nodes)} nodes, {len(results.edges)} edges")
        return results

    async def add(self, user_id: str, type: str, data: str) -> None:
        """Add data to a user's graph.

        Args:
            user_id: Graph owner
            type: "json" for structured entities, "text" for facts
            data: Serialized payload

        Raises:
            ValueError: For an unknown type
            ServiceError: On any service failure
        """
        if type not in ADD_TYPES:
            raise ValueError(f"type must be one of {ADD_TYPES}, got {type!r}")

        await self._request(
            "POST",
            "/graph",
            json_data={"user_id": user_id, "type": type, "data": data},
        )
        log.trace(f"added {type} data ({len(data)} chars) for {user_id}")
