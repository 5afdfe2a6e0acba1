"""Read-side lookups over project state in the knowledge graph.

ProjectGraphReader answers questions about projects that the reconciler
wrote: the project node, its technologies, the facts around it, and simple
usage statistics. Facts are parsed back from their "<subject> <PREDICATE>
<object>" text. Every public method returns a result object and never
raises.
"""

import asyncio
import re
from collections import Counter
from dataclasses import dataclass, field

from temporal_bridge.config import Config
from temporal_bridge.entities import LABEL_PROJECT
from temporal_bridge.graph_client import GraphEdge, GraphNode, GraphStore
from temporal_bridge.log_config import get_logger
from temporal_bridge.staleness import split_technologies

log = get_logger("project_queries")

PROJECT_LABELS = ("project", LABEL_PROJECT)

ENTITY_NODE_LIMIT = 5
ENTITY_EDGE_LIMIT = 20
LIST_LIMIT = 50
FACT_LIMIT = 100
GLOBAL_PROJECT_LIMIT = 100
GLOBAL_FACT_LIMIT = 200
TOP_TECHNOLOGIES = 10

_WORKS_ON = re.compile(r"(.+)\s+WORKS_ON\s+")
_USES = re.compile(r"\s+USES\s+(.+)")
_BELONGS_TO = re.compile(r"\s+BELONGS_TO\s+(.+)")
_SESSION = re.compile(r"session-([^\s]+)")


@dataclass
class ProjectEntityLookup:
    success: bool
    project_id: str
    entity: GraphNode | None = None
    technologies: list[str] = field(default_factory=list)
    relationships: list[GraphEdge] = field(default_factory=list)
    error: str | None = None


@dataclass
class ProjectList:
    success: bool
    projects: list[GraphNode] = field(default_factory=list)
    error: str | None = None

    @property
    def count(self) -> int:
        return len(self.projects)


@dataclass
class ProjectTechnology:
    """A technology linked to a project by a USES fact."""

    name: str
    confidence: float
    usage_context: str
    detected_via: list[str] = field(default_factory=list)


@dataclass
class ProjectTechnologies:
    success: bool
    project_id: str
    technologies: list[ProjectTechnology] = field(default_factory=list)
    error: str | None = None

    @property
    def total_technologies(self) -> int:
        return len(self.technologies)


@dataclass
class ProjectConnections:
    """Parties connected to a project, de-duplicated in first-seen order."""

    developers: list[str] = field(default_factory=list)
    technologies: list[str] = field(default_factory=list)
    organization: str | None = None
    sessions: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return (
            len(self.developers)
            + len(self.technologies)
            + len(self.sessions)
            + (1 if self.organization else 0)
        )


@dataclass
class ProjectRelationships:
    success: bool
    project_id: str
    relationships: ProjectConnections | None = None
    error: str | None = None


@dataclass
class TechnologyUsage:
    name: str
    count: int
    confidence: float


@dataclass
class ProjectStatistics:
    """Statistics for one project."""

    project_id: str
    technologies: int
    conversations: int
    relationships: int
    expertise_score: float


@dataclass
class GraphStatistics:
    """Statistics across all of the user's projects."""

    total_projects: int = 0
    total_technologies: int = 0
    total_conversations: int = 0
    most_used_technologies: list[TechnologyUsage] = field(default_factory=list)
    organization_breakdown: dict[str, int] = field(default_factory=dict)


@dataclass
class StatisticsResult:
    success: bool
    statistics: GraphStatistics | None = None
    project_specific: ProjectStatistics | None = None
    error: str | None = None


def expertise_score(technologies: int, conversations: int, relationships: int) -> float:
    """Weighted activity score: technologies count most, then sessions."""
    return round(technologies * 2 + conversations * 0.5 + relationships * 0.1, 2)


def parse_connections(edges: list[GraphEdge]) -> ProjectConnections:
    """Classify fact edges by predicate."""
    connections = ProjectConnections()

    for edge in edges:
        fact = edge.fact
        if " WORKS_ON " in fact:
            match = _WORKS_ON.search(fact)
            if match:
                connections.developers.append(match.group(1))
        elif " USES " in fact:
            match = _USES.search(fact)
            if match:
                connections.technologies.append(match.group(1))
        elif " BELONGS_TO " in fact:
            match = _BELONGS_TO.search(fact)
            if match:
                connections.organization = match.group(1)
        elif " OCCURS_IN " in fact:
            match = _SESSION.search(fact)
            if match:
                connections.sessions.append(match.group(1))

    connections.developers = list(dict.fromkeys(connections.developers))
    connections.technologies = list(dict.fromkeys(connections.technologies))
    connections.sessions = list(dict.fromkeys(connections.sessions))
    return connections


class ProjectGraphReader:
    """Queries project entities and facts for one graph user."""

    def __init__(self, store: GraphStore, config: Config | None = None, user_id: str | None = None):
        self.config = config or Config()
        self.store = store
        self.user_id = user_id or self.config.user_id

    async def get_project_entity(self, project_id: str) -> ProjectEntityLookup:
        """Find the project node and the facts mentioning it."""
        try:
            nodes, edges = await asyncio.gather(
                self.store.search(
                    user_id=self.user_id, query=project_id, scope="nodes", limit=ENTITY_NODE_LIMIT
                ),
                self.store.search(
                    user_id=self.user_id, query=project_id, scope="edges", limit=ENTITY_EDGE_LIMIT
                ),
            )
        except Exception as e:
            log.error(f"Failed to get project entity {project_id}: {e}")
            return ProjectEntityLookup(
                success=False, project_id=project_id, error=f"Failed to get project entity: {e}"
            )

        entity = next(
            (
                node
                for node in nodes.nodes
                if node.name == project_id or node.attributes.get("name") == project_id
            ),
            None,
        )
        if entity is None:
            return ProjectEntityLookup(
                success=False, project_id=project_id, error=f"Project entity not found: {project_id}"
            )

        return ProjectEntityLookup(
            success=True,
            project_id=project_id,
            entity=entity,
            technologies=split_technologies(entity.attributes.get("technologies")),
            relationships=edges.edges,
        )

    async def list_projects(self) -> ProjectList:
        try:
            results = await self.store.search(
                user_id=self.user_id, query="Project", scope="nodes", limit=LIST_LIMIT
            )
        except Exception as e:
            log.error(f"Failed to list projects: {e}")
            return ProjectList(success=False, error=f"Failed to list project entities: {e}")

        projects = [node for node in results.nodes if node.has_label(*PROJECT_LABELS)]
        log.debug(f"Listed {len(projects)} of {len(results.nodes)} nodes as projects")
        return ProjectList(success=True, projects=projects)

    async def get_project_technologies(self, project_id: str) -> ProjectTechnologies:
        """Technologies from "<project_id> USES <tech>" facts, scored by the store."""
        try:
            results = await self.store.search(
                user_id=self.user_id, query=f"{project_id} USES", scope="edges", limit=FACT_LIMIT
            )
        except Exception as e:
            log.error(f"Failed to get technologies for {project_id}: {e}")
            return ProjectTechnologies(
                success=False, project_id=project_id, error=f"Failed to get project technologies: {e}"
            )

        pattern = re.compile(rf"{re.escape(project_id)}\s+USES\s+(.+)")
        technologies = []
        for edge in results.edges:
            match = pattern.search(edge.fact)
            if not match:
                continue
            technologies.append(
                ProjectTechnology(
                    name=match.group(1),
                    confidence=edge.score or 0.0,
                    usage_context=(
                        f"{len(edge.episodes)} conversations" if edge.episodes else "Direct usage"
                    ),
                    detected_via=list(edge.episodes),
                )
            )

        return ProjectTechnologies(success=True, project_id=project_id, technologies=technologies)

    async def get_project_relationships(self, project_id: str) -> ProjectRelationships:
        try:
            results = await self.store.search(
                user_id=self.user_id, query=project_id, scope="edges", limit=FACT_LIMIT
            )
        except Exception as e:
            log.error(f"Failed to get relationships for {project_id}: {e}")
            return ProjectRelationships(
                success=False, project_id=project_id, error=f"Failed to get project relationships: {e}"
            )

        return ProjectRelationships(
            success=True, project_id=project_id, relationships=parse_connections(results.edges)
        )

    async def get_project_statistics(self, project_id: str | None = None) -> StatisticsResult:
        """Project-specific statistics when project_id is given, otherwise global ones."""
        if project_id:
            return await self._project_statistics(project_id)

        try:
            projects, uses, sessions = await asyncio.gather(
                self.store.search(
                    user_id=self.user_id, query="Project", scope="nodes", limit=GLOBAL_PROJECT_LIMIT
                ),
                self.store.search(
                    user_id=self.user_id, query="USES", scope="edges", limit=GLOBAL_FACT_LIMIT
                ),
                self.store.search(
                    user_id=self.user_id, query="OCCURS_IN", scope="edges", limit=GLOBAL_FACT_LIMIT
                ),
            )
        except Exception as e:
            log.error(f"Failed to get project statistics: {e}")
            return StatisticsResult(success=False, error=f"Failed to get project statistics: {e}")

        stats = GraphStatistics()

        project_nodes = [node for node in projects.nodes if node.has_label(*PROJECT_LABELS)]
        stats.total_projects = len(project_nodes)
        for node in project_nodes:
            organization = node.attributes.get("organization")
            key = organization if isinstance(organization, str) and organization else "Unknown"
            stats.organization_breakdown[key] = stats.organization_breakdown.get(key, 0) + 1

        counts: Counter[str] = Counter()
        scores: dict[str, float] = {}
        for edge in uses.edges:
            match = _USES.search(edge.fact)
            if not match:
                continue
            name = match.group(1)
            counts[name] += 1
            scores[name] = scores.get(name, 0.0) + (edge.score or 0.0)

        stats.most_used_technologies = [
            TechnologyUsage(name=name, count=count, confidence=round(scores[name] / count, 2))
            for name, count in counts.most_common(TOP_TECHNOLOGIES)
        ]
        stats.total_technologies = len(counts)
        stats.total_conversations = len(sessions.edges)

        return StatisticsResult(success=True, statistics=stats)

    async def _project_statistics(self, project_id: str) -> StatisticsResult:
        entity, relationships = await asyncio.gather(
            self.get_project_entity(project_id),
            self.get_project_relationships(project_id),
        )
        if not entity.success:
            return StatisticsResult(success=False, error=f"Project not found: {project_id}")

        connections = relationships.relationships or ProjectConnections()
        technologies = len(entity.technologies)
        conversations = len(connections.sessions)
        total = connections.total

        return StatisticsResult(
            success=True,
            project_specific=ProjectStatistics(
                project_id=project_id,
                technologies=technologies,
                conversations=conversations,
                relationships=total,
                expertise_score=expertise_score(technologies, conversations, total),
            ),
        )
