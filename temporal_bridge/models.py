"""Domain types shared by the reconciliation engine.

Plain dataclasses for values produced and consumed inside the engine. The
graph service's response shapes live in graph_client as pydantic models.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class RelationshipType(str, Enum):
    """Predicates used in relationship facts."""

    WORKS_ON = "WORKS_ON"  # developer WORKS_ON project
    USES = "USES"  # project USES technology
    BELONGS_TO = "BELONGS_TO"  # project BELONGS_TO organization
    OCCURS_IN = "OCCURS_IN"  # session OCCURS_IN project


PROJECT_TYPES = ("git", "directory", "unknown")


@dataclass(frozen=True)
class ProjectContext:
    """Stable identity of a project root.

    Attributes:
        project_id: Deterministic key derived from organization and name
        project_name: Human-readable name
        project_path: Absolute project root
        project_type: One of git, directory, unknown
        group_id: Graph group scoping key
        organization: Owner/namespace if detected
        git_remote: Raw origin URL if the project is a git checkout
    """

    project_id: str
    project_name: str
    project_path: str
    project_type: str
    group_id: str
    organization: str | None = None
    git_remote: str | None = None

    def summary(self) -> dict[str, Any]:
        """Camel-cased summary as recorded in the session document."""
        return {
            "projectId": self.project_id,
            "projectName": self.project_name,
            "displayName": self.project_name,
            "organization": self.organization,
            "projectPath": self.project_path,
            "projectType": self.project_type,
            "repository": self.git_remote,
        }


@dataclass
class DetectedTechnology:
    """A single technology reported by a detector."""

    name: str
    confidence: float
    source: str
    version: str | None = None
    context: str | None = None

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence for {self.name} must be within [0, 1], got {self.confidence}")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "confidence": self.confidence,
            "source": self.source,
        }
        if self.version is not None:
            data["version"] = self.version
        if self.context is not None:
            data["context"] = self.context
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DetectedTechnology":
        return cls(
            name=str(data["name"]),
            confidence=float(data.get("confidence", 0.0)),
            source=str(data.get("source") or "unknown"),
            version=data.get("version"),
            context=data.get("context"),
        )


@dataclass
class TechnologyDetectionResult:
    """Output of a TechnologyDetector run.

    The detector is expected to de-duplicate by name; the engine does not.
    """

    technologies: list[DetectedTechnology]
    overall_confidence: float
    detected_at: str
    project_path: str | None = None

    @property
    def names(self) -> list[str]:
        return [tech.name for tech in self.technologies]


@dataclass
class GraphEntity:
    """Named, labeled node submitted to the graph store.

    ``name`` is the store's dedup key. Attributes are replaced wholesale on
    re-add, so an entity must always carry its complete attribute map.
    """

    name: str
    summary: str
    labels: list[str]
    attributes: dict[str, str | int | float | bool]

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "summary": self.summary,
            "labels": list(self.labels),
            "attributes": dict(self.attributes),
        }


@dataclass
class ProjectRelationship:
    """Subject-predicate-object fact about a project."""

    subject: str
    predicate: RelationshipType
    object: str
    confidence: float = 1.0
    context: str = ""

    @property
    def fact(self) -> str:
        """Fact sentence submitted to the store. Identical on every reassertion."""
        return f"{self.subject} {self.predicate.value} {self.object}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "predicate": self.predicate.value,
            "object": self.object,
            "confidence": self.confidence,
            "context": self.context,
        }


@dataclass
class SyncOptions:
    """Options for EntityReconciler.sync.

    Attributes:
        skip_tech_detection: Never run the detector; reuse stored technologies
        force_update: Always run the detector, ignoring freshness
        confidence_threshold: Detector threshold (None uses the configured default)
    """

    skip_tech_detection: bool = False
    force_update: bool = False
    confidence_threshold: float | None = None


@dataclass
class PerformanceMetrics:
    """Phase timings of one sync, in milliseconds."""

    detection_time_ms: float = 0.0
    creation_time_ms: float = 0.0
    total_time_ms: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "detectionTimeMs": round(self.detection_time_ms, 1),
            "creationTimeMs": round(self.creation_time_ms, 1),
            "totalTimeMs": round(self.total_time_ms, 1),
        }


@dataclass
class EntityCreationResult:
    """Outcome of a sync or refresh. Failures never carry partial success."""

    success: bool
    project: ProjectContext | None = None
    project_entity: GraphEntity | None = None
    relationships: list[ProjectRelationship] = field(default_factory=list)
    technologies: list[DetectedTechnology] = field(default_factory=list)
    detection_skipped: bool = False
    message: str | None = None
    error: str | None = None
    performance: PerformanceMetrics | None = None

    @property
    def technologies_detected(self) -> int:
        return len(self.technologies)

    @classmethod
    def failure(cls, error: str, performance: PerformanceMetrics | None = None) -> "EntityCreationResult":
        return cls(success=False, error=error, performance=performance)

    def to_cache_outcome(self) -> dict[str, Any]:
        """Fields recorded under projectEntityCache by SessionCache.mark_processed."""
        outcome: dict[str, Any] = {"success": self.success}
        if self.success:
            outcome["technologiesDetected"] = self.technologies_detected
            outcome["technologies"] = [tech.to_dict() for tech in self.technologies]
            outcome["relationships"] = [rel.to_dict() for rel in self.relationships]
        if self.project is not None:
            outcome["projectEntity"] = self.project.summary()
        if self.performance is not None:
            outcome["performance"] = self.performance.to_dict()
        if self.error:
            outcome["errors"] = [self.error]
        return outcome


@dataclass
class OperationResult:
    """Generic success/failure result for small graph operations."""

    success: bool
    message: str | None = None
    error: str | None = None
