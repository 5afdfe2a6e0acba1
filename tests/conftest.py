"""Shared pytest fixtures for TemporalBridge tests."""

from __future__ import annotations

import json
from datetime import timedelta
from typing import Any

import pytest

from temporal_bridge.config import Config
from temporal_bridge.graph_client import GraphEdge, GraphNode, GraphSearchResults, ServiceError
from temporal_bridge.models import DetectedTechnology, ProjectContext, TechnologyDetectionResult
from temporal_bridge.time_utils import to_iso, utc_now


class FakeGraphStore:
    """In-memory GraphStore recording every call.

    Search results come from ``responses[(scope, query)]`` when present,
    otherwise from ``nodes`` / ``edges``. ``fail_add`` is a predicate over
    (type, data) selecting writes that raise ServiceError.
    """

    def __init__(self):
        self.nodes: list[GraphNode] = []
        self.edges: list[GraphEdge] = []
        self.responses: dict[tuple[str, str], GraphSearchResults] = {}
        self.search_error: Exception | None = None
        self.fail_add = None
        self.searches: list[dict[str, Any]] = []
        self.attempts: list[tuple[str, str]] = []
        self.added: list[tuple[str, str]] = []

    async def search(self, user_id, query, scope="edges", search_filters=None, limit=10):
        self.searches.append({"user_id": user_id, "query": query, "scope": scope, "limit": limit})
        if self.search_error is not None:
            raise self.search_error
        if (scope, query) in self.responses:
            return self.responses[(scope, query)]
        if scope == "nodes":
            return GraphSearchResults(nodes=self.nodes[:limit])
        return GraphSearchResults(edges=self.edges[:limit])

    async def add(self, user_id, type, data):
        self.attempts.append((type, data))
        if self.fail_add is not None and self.fail_add(type, data):
            raise ServiceError(500, "write rejected")
        self.added.append((type, data))

    @property
    def entities(self) -> list[dict[str, Any]]:
        return [json.loads(data) for type_, data in self.added if type_ == "json"]

    @property
    def facts(self) -> list[str]:
        return [data for type_, data in self.added if type_ == "text"]


class StubDetector:
    """TechnologyDetector returning a fixed list, or raising ``error``."""

    def __init__(self):
        self.technologies: list[DetectedTechnology] = []
        self.error: Exception | None = None
        self.calls: list[tuple[str, float]] = []

    async def detect_technologies(self, path, confidence_threshold):
        self.calls.append((str(path), confidence_threshold))
        if self.error is not None:
            raise self.error
        return TechnologyDetectionResult(
            technologies=list(self.technologies),
            overall_confidence=0.8,
            detected_at="2025-01-05T10:00:00.000Z",
            project_path=str(path),
        )


class StaticProvider:
    """ProjectContextProvider returning one fixed context."""

    def __init__(self, context: ProjectContext):
        self.context = context
        self.error: Exception | None = None
        self.calls = 0

    async def detect(self, path=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.context


@pytest.fixture
def config() -> Config:
    """Deterministic configuration independent of the environment."""
    return Config(
        api_key="test-key",
        user_id="dev-1",
        graph_url="http://zep.test/api/v2",
        group_id=None,
        freshness_hours=24.0,
        confidence_threshold=0.6,
        session_file_name="temporal-bridge.json",
    )


@pytest.fixture
def project_context(tmp_path) -> ProjectContext:
    """Project without an organization."""
    return ProjectContext(
        project_id="widget",
        project_name="widget",
        project_path=str(tmp_path),
        project_type="directory",
        group_id="project-widget",
    )


@pytest.fixture
def org_context(tmp_path) -> ProjectContext:
    """Git project owned by an organization."""
    return ProjectContext(
        project_id="acme-widget",
        project_name="widget",
        project_path=str(tmp_path),
        project_type="git",
        group_id="project-acme-widget",
        organization="acme",
        git_remote="git@github.com:acme/widget.git",
    )


@pytest.fixture
def graph_store() -> FakeGraphStore:
    return FakeGraphStore()


@pytest.fixture
def detector() -> StubDetector:
    detector = StubDetector()
    detector.technologies = [
        DetectedTechnology(name="TypeScript", confidence=0.9, source="package.json", version="5.3.0"),
        DetectedTechnology(name="React", confidence=0.7, source="package.json"),
    ]
    return detector


@pytest.fixture
def make_provider():
    """Factory for StaticProvider instances."""
    return StaticProvider


@pytest.fixture
def make_project_node():
    """Factory for stored project nodes aged ``hours_ago``."""

    def _make(
        name: str = "widget",
        hours_ago: float | None = 1.0,
        technologies: list[DetectedTechnology] | None = None,
        **extra_attributes: Any,
    ) -> GraphNode:
        technologies = technologies or []
        attributes: dict[str, Any] = {
            "displayName": name,
            "technologies": ", ".join(tech.name for tech in technologies),
            "technologyDetails": json.dumps([tech.to_dict() for tech in technologies]),
            "confidence": json.dumps({tech.name: tech.confidence for tech in technologies}),
            "overallConfidence": 0.75,
            "created": "2024-06-01T08:00:00.000Z",
        }
        if hours_ago is not None:
            attributes["lastUpdated"] = to_iso(utc_now() - timedelta(hours=hours_ago))
        attributes.update(extra_attributes)
        return GraphNode(name=name, summary=f"Project: {name}", labels=["Location", "git"], attributes=attributes)

    return _make
