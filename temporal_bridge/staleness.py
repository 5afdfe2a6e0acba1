"""Staleness check and carry-over helpers.

Technology detection scans a filesystem tree, which is the most expensive
step of a sync. The check trades it for one cheap graph lookup of the
project node and its lastUpdated attribute. The check is advisory: any
failure means "stale".

Because the store overwrites attributes on re-add, a sync that does not
detect must re-submit the previously stored detection. The helpers here
rebuild it from the project node.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from temporal_bridge.graph_client import GraphNode, GraphStore
from temporal_bridge.log_config import get_logger
from temporal_bridge.models import DetectedTechnology, ProjectContext, TechnologyDetectionResult
from temporal_bridge.time_utils import parse_timestamp, utc_now

log = get_logger("staleness")

FRESHNESS_WINDOW = timedelta(hours=24)
TECHNOLOGY_SEPARATOR = ", "


@dataclass
class StalenessCheck:
    """Result of searching the graph for an existing project node.

    Attributes:
        stale: Whether technology detection should run
        node: The existing project node, if one was found
        reason: Short description of how the decision was made
        error: Set when the lookup itself failed
    """

    stale: bool
    node: GraphNode | None = None
    reason: str = ""
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


def project_node_query(context: ProjectContext) -> str:
    """Search text used to locate a project's node."""
    return f"Project {context.project_name}"


def is_project_node(node: GraphNode, context: ProjectContext) -> bool:
    """Whether node is this project's entity, by name or by summary."""
    return node.name == context.project_id or node.summary == f"Project: {context.project_name}"


async def check_project_node(
    store: GraphStore,
    user_id: str,
    context: ProjectContext,
    now: datetime | None = None,
    window: timedelta = FRESHNESS_WINDOW,
) -> StalenessCheck:
    """Look up the project node and decide whether it is stale.

    Stale when: the search fails, no node is found, the nearest node is
    another project's, the node has no lastUpdated attribute, the attribute
    does not parse, or it is at least ``window`` old.
    """
    try:
        results = await store.search(
            user_id=user_id,
            query=project_node_query(context),
            scope="nodes",
            limit=1,
        )
    except Exception as e:
        log.warning(f"Staleness lookup failed for {context.project_id}, assuming stale: {e}")
        return StalenessCheck(stale=True, reason="lookup failed", error=str(e))

    if not results.nodes:
        return StalenessCheck(stale=True, reason="no existing node")

    node = results.nodes[0]
    if not is_project_node(node, context):
        # Ranked search returns the closest node, which may be another project's
        log.debug(f"Nearest node {node.name} is not project {context.project_id}")
        return StalenessCheck(stale=True, reason="no matching node")

    last_updated = parse_timestamp(node.attributes.get("lastUpdated"))
    if last_updated is None:
        return StalenessCheck(stale=True, node=node, reason="lastUpdated missing or unparseable")

    age = (now or utc_now()) - last_updated
    stale = age >= window
    log.debug(f"Project node {node.name} age={age} stale={stale}")
    return StalenessCheck(
        stale=stale,
        node=node,
        reason=f"last updated {age.total_seconds() / 3600:.1f}h ago",
    )


async def is_stale(
    store: GraphStore,
    user_id: str,
    context: ProjectContext,
    now: datetime | None = None,
    window: timedelta = FRESHNESS_WINDOW,
) -> bool:
    """True when technology detection should run for this project."""
    check = await check_project_node(store, user_id, context, now=now, window=window)
    return check.stale


def join_technologies(names: list[str]) -> str:
    """Serialize a complete technology list into the project node attribute."""
    return TECHNOLOGY_SEPARATOR.join(names)


def split_technologies(value: Any) -> list[str]:
    """Parse the project node's technologies attribute."""
    if not isinstance(value, str) or not value.strip():
        return []
    return [name.strip() for name in value.split(",") if name.strip()]


def technologies_changed(stored: list[str], detected: list[str]) -> bool:
    """Compare technology sets, ignoring order."""
    return set(stored) != set(detected)


def _load_json_attribute(attributes: dict[str, Any], key: str) -> Any:
    value = attributes.get(key)
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            log.debug(f"Ignoring malformed {key} attribute")
            return None
    return value


def carried_over_detection(node: GraphNode | None) -> TechnologyDetectionResult | None:
    """Rebuild the last stored detection from a project node.

    Prefers the lossless technologyDetails attribute; falls back to the
    technologies list with per-name confidence. Returns None when the node
    carries no detection at all.
    """
    if node is None:
        return None

    attributes = node.attributes
    technologies: list[DetectedTechnology] = []

    details = _load_json_attribute(attributes, "technologyDetails")
    if isinstance(details, list):
        for item in details:
            if not isinstance(item, dict) or not item.get("name"):
                continue
            try:
                technologies.append(DetectedTechnology.from_dict(item))
            except (TypeError, ValueError) as e:
                log.debug(f"Skipping unreadable technology detail {item!r}: {e}")
    else:
        names = split_technologies(attributes.get("technologies"))
        confidences = _load_json_attribute(attributes, "confidence")
        if not isinstance(confidences, dict):
            confidences = {}
        for name in names:
            try:
                confidence = float(confidences.get(name, 0.0))
                technologies.append(DetectedTechnology(name=name, confidence=confidence, source="unknown"))
            except (TypeError, ValueError):
                technologies.append(DetectedTechnology(name=name, confidence=0.0, source="unknown"))

    if not technologies and "technologies" not in attributes:
        return None

    overall = attributes.get("overallConfidence")
    try:
        overall_confidence = float(overall) if overall is not None else 0.0
    except (TypeError, ValueError):
        overall_confidence = 0.0

    detected_at = attributes.get("detectedAt") or attributes.get("lastUpdated") or ""
    return TechnologyDetectionResult(
        technologies=technologies,
        overall_confidence=overall_confidence,
        detected_at=str(detected_at),
        project_path=attributes.get("path"),
    )
