"""Tests for the graph store HTTP client."""

import json

import httpx
import pytest
import respx
from httpx import Response

from temporal_bridge.graph_client import GraphStore, GraphStoreClient, ServiceError

BASE = "http://zep.test/api/v2"


@pytest.fixture
def client(config):
    """Create a test graph client."""
    return GraphStoreClient(config=config)


class TestSearch:
    """Tests for GraphStoreClient.search."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_search_nodes(self, client):
        """search should POST the query and return typed nodes."""
        route = respx.post(f"{BASE}/graph/search").mock(
            return_value=Response(200, json={
                "nodes": [{
                    "name": "acme-widget",
                    "uuid": "n-1",
                    "labels": ["Location", "git"],
                    "attributes": {"lastUpdated": "2025-01-05T10:00:00.000Z"},
                    "unknown_field": "ignored",
                }]
            })
        )

        results = await client.search("dev-1", "Project widget", scope="nodes", limit=1)

        assert results.nodes[0].name == "acme-widget"
        assert results.nodes[0].has_label("location")
        assert results.edges == []
        request = route.calls.last.request
        assert json.loads(request.content) == {
            "user_id": "dev-1",
            "query": "Project widget",
            "scope": "nodes",
            "limit": 1,
        }
        assert request.headers["Authorization"] == "Api-Key test-key"
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_search_edges_with_filters(self, client):
        """Filters are forwarded and null collections become empty."""
        route = respx.post(f"{BASE}/graph/search").mock(
            return_value=Response(200, json={
                "edges": [{"fact": "acme-widget USES Go", "episodes": None, "score": 0.8}],
                "nodes": None,
            })
        )

        results = await client.search(
            "dev-1", "acme-widget USES", search_filters={"edge_types": ["USES"]}, limit=100
        )

        assert results.edges[0].fact == "acme-widget USES Go"
        assert results.edges[0].episodes == []
        assert results.nodes == []
        assert json.loads(route.calls.last.request.content)["search_filters"] == {"edge_types": ["USES"]}
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_http_error_maps_to_service_error(self, client):
        """Error status should raise ServiceError with the service's message."""
        respx.post(f"{BASE}/graph/search").mock(
            return_value=Response(500, json={"message": "graph unavailable"})
        )

        with pytest.raises(ServiceError) as exc_info:
            await client.search("dev-1", "Project widget", scope="nodes")

        assert exc_info.value.status_code == 500
        assert exc_info.value.detail == "graph unavailable"
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_object_response(self, client):
        """A JSON array is not a valid search response."""
        respx.post(f"{BASE}/graph/search").mock(return_value=Response(200, json=[1, 2]))

        with pytest.raises(ServiceError) as exc_info:
            await client.search("dev-1", "q")

        assert exc_info.value.status_code == 0
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_schema_violation(self, client):
        """Nodes without a name fail validation."""
        respx.post(f"{BASE}/graph/search").mock(
            return_value=Response(200, json={"nodes": [{"labels": ["Location"]}]})
        )

        with pytest.raises(ServiceError, match="Invalid graph search response"):
            await client.search("dev-1", "q", scope="nodes")
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_empty_body(self, client):
        """An empty body is not a search response."""
        respx.post(f"{BASE}/graph/search").mock(return_value=Response(200))

        with pytest.raises(ServiceError):
            await client.search("dev-1", "q")
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error(self, client):
        """Connection failures become ServiceError(0)."""
        respx.post(f"{BASE}/graph/search").mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(ServiceError) as exc_info:
            await client.search("dev-1", "q")

        assert exc_info.value.status_code == 0
        await client.close()

    @pytest.mark.asyncio
    async def test_invalid_scope(self, client):
        with pytest.raises(ValueError):
            await client.search("dev-1", "q", scope="everything")


class TestAdd:
    """Tests for GraphStoreClient.add."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_add_text(self, client):
        """add should POST the payload to /graph."""
        route = respx.post(f"{BASE}/graph").mock(return_value=Response(200, json={"uuid": "ep-1"}))

        await client.add("dev-1", "text", "acme-widget USES Go")

        assert json.loads(route.calls.last.request.content) == {
            "user_id": "dev-1",
            "type": "text",
            "data": "acme-widget USES Go",
        }
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_add_empty_response(self, client):
        """An empty success body is fine for writes."""
        respx.post(f"{BASE}/graph").mock(return_value=Response(201))

        assert await client.add("dev-1", "json", "{}") is None
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_add_rejected(self, client):
        respx.post(f"{BASE}/graph").mock(return_value=Response(400, json={"detail": "bad payload"}))

        with pytest.raises(ServiceError) as exc_info:
            await client.add("dev-1", "json", "{}")

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == "bad payload"
        await client.close()

    @pytest.mark.asyncio
    async def test_invalid_type(self, client):
        with pytest.raises(ValueError):
            await client.add("dev-1", "structured", "{}")


class TestClientLifecycle:
    """Tests for credentials and lifecycle."""

    @pytest.mark.asyncio
    async def test_missing_api_key(self, config):
        """No credential: fail before any network call."""
        client = GraphStoreClient(config=config, api_key=None)
        client.api_key = None

        with pytest.raises(ServiceError) as exc_info:
            await client.add("dev-1", "text", "fact")

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    @respx.mock
    async def test_async_context_manager_closes(self, config):
        respx.post(f"{BASE}/graph").mock(return_value=Response(200, json={}))

        async with GraphStoreClient(config=config) as client:
            await client.add("dev-1", "text", "fact")
            assert client._client is not None

        assert client._client is None

    def test_explicit_arguments_override_config(self, config):
        client = GraphStoreClient(base_url="http://other.test/", api_key="k2", timeout=5.0, config=config)

        assert client.base_url == "http://other.test"
        assert client.api_key == "k2"
        assert client.timeout == 5.0

    def test_satisfies_protocol(self, client):
        assert isinstance(client, GraphStore)
