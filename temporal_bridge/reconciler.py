"""Entity reconciliation for TemporalBridge.

EntityReconciler keeps a project's node, its technologies and organization,
and the facts linking them in sync with the knowledge graph:

    resolve project -> staleness check -> (optional) technology detection
    -> build entities and facts -> two-phase upsert

Public operations never raise: failures come back as results with
success=False and a readable error.
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from time import perf_counter

from temporal_bridge.config import Config
from temporal_bridge.entities import build_entities, build_relationships, build_session_relationship
from temporal_bridge.graph_client import GraphStore, ServiceError
from temporal_bridge.log_config import get_logger, log_timing
from temporal_bridge.models import (
    EntityCreationResult,
    GraphEntity,
    OperationResult,
    PerformanceMetrics,
    ProjectContext,
    ProjectRelationship,
    SyncOptions,
    TechnologyDetectionResult,
)
from temporal_bridge.project_context import (
    DetectionError,
    GitProjectContextProvider,
    ProjectContextProvider,
    ProjectContextScope,
    TechnologyDetector,
)
from temporal_bridge.staleness import (
    carried_over_detection,
    check_project_node,
    split_technologies,
    technologies_changed,
)

log = get_logger("reconciler")


@dataclass
class UpsertReport:
    """What an UpsertBatch managed to write."""

    entities_written: int = 0
    facts_written: int = 0
    errors: list[str] = field(default_factory=list)


class UpsertBatch:
    """Two-phase write: every entity first, then every fact.

    Facts reference entity names, so entities go first to give the store's
    fact extraction resolvable names. Each phase attempts all of its items
    even if some fail; failures are collected and raised together once both
    phases have run.
    """

    def __init__(self, store: GraphStore, user_id: str):
        self.store = store
        self.user_id = user_id
        self.entities: list[GraphEntity] = []
        self.facts: list[str] = []

    def add_entities(self, entities: list[GraphEntity]) -> None:
        self.entities.extend(entities)

    def add_relationships(self, relationships: list[ProjectRelationship]) -> None:
        self.facts.extend(rel.fact for rel in relationships)

    async def submit_entities(self, report: UpsertReport) -> None:
        """Phase 1: structured entity payloads."""
        for entity in self.entities:
            try:
                await self.store.add(
                    user_id=self.user_id,
                    type="json",
                    data=json.dumps(entity.to_payload()),
                )
                report.entities_written += 1
            except Exception as e:
                log.warning(f"Entity {entity.name} not written: {e}")
                report.errors.append(f"entity {entity.name}: {e}")

    async def submit_facts(self, report: UpsertReport) -> None:
        """Phase 2: free-text relationship facts."""
        for fact in self.facts:
            try:
                await self.store.add(user_id=self.user_id, type="text", data=fact)
                report.facts_written += 1
            except Exception as e:
                log.warning(f"Fact {fact!r} not written: {e}")
                report.errors.append(f"fact {fact!r}: {e}")

    async def submit(self) -> UpsertReport:
        """Run both phases.

        Raises:
            ServiceError: If any item failed, after every item was attempted
        """
        report = UpsertReport()
        await self.submit_entities(report)
        await self.submit_facts(report)

        if report.errors:
            raise ServiceError(
                0,
                f"{len(report.errors)} graph write(s) failed: " + "; ".join(report.errors),
            )
        return report


class EntityReconciler:
    """Synchronizes project state into the knowledge graph.

    Uses dependency injection for the graph store, project provider and
    technology detector, so any of them can be swapped out in tests.
    """

    def __init__(
        self,
        store: GraphStore,
        detector: TechnologyDetector | None = None,
        provider: ProjectContextProvider | None = None,
        config: Config | None = None,
        user_id: str | None = None,
    ):
        """Initialize the reconciler.

        Args:
            store: Graph store implementation
            detector: Technology detector (required unless detection is always skipped)
            provider: Project context provider (defaults to GitProjectContextProvider)
            config: Configuration (defaults to an env-driven Config)
            user_id: Graph user (defaults to config.user_id)
        """
        self.config = config or Config()
        self.store = store
        self.detector = detector
        self.provider = provider or GitProjectContextProvider(self.config)
        self.user_id = user_id or self.config.user_id

    @property
    def freshness_window(self) -> timedelta:
        return timedelta(hours=self.config.freshness_hours)

    def new_scope(self) -> ProjectContextScope:
        """Context cache for one logical operation spanning several calls."""
        return ProjectContextScope(self.provider)

    # =========================================================================
    # Sync
    # =========================================================================

    async def sync(
        self,
        path: str | Path | None = None,
        options: SyncOptions | None = None,
        scope: ProjectContextScope | None = None,
    ) -> EntityCreationResult:
        """Create or update the project's entities and relationships.

        Args:
            path: Project directory (defaults to the working directory)
            options: Detection options
            scope: Shared context cache when the caller groups several operations

        Returns:
            EntityCreationResult; never raises
        """
        options = options or SyncOptions()
        scope = scope or self.new_scope()
        perf = PerformanceMetrics()
        start = perf_counter()

        try:
            context = await scope.get(path)
            with log_timing(f"detection for {context.project_id}", log) as timing:
                detection, skipped, created = await self._resolve_detection(context, options)
            perf.detection_time_ms = timing["elapsed_ms"]

            result = await self._write(context, detection, created, perf)
            result.detection_skipped = skipped
            result.performance.total_time_ms = (perf_counter() - start) * 1000
            return result
        except Exception as e:
            perf.total_time_ms = (perf_counter() - start) * 1000
            log.error(f"Failed to sync project entity for {path or '.'}: {e}")
            return EntityCreationResult.failure(f"Failed to sync project entity: {e}", perf)

    async def _resolve_detection(
        self,
        context: ProjectContext,
        options: SyncOptions,
    ) -> tuple[TechnologyDetectionResult | None, bool, str | None]:
        """Decide between fresh detection and carrying the stored one over.

        Returns:
            (detection, skipped, created) where created is the stored
            creation timestamp of an existing node, if known
        """
        threshold = (
            options.confidence_threshold
            if options.confidence_threshold is not None
            else self.config.confidence_threshold
        )

        if options.force_update and not options.skip_tech_detection:
            return await self._detect(context, threshold), False, None

        check = await check_project_node(
            self.store, self.user_id, context, window=self.freshness_window
        )
        created = check.node.attributes.get("created") if check.node else None
        if not isinstance(created, str):
            created = None

        if options.skip_tech_detection:
            if check.failed:
                raise ServiceError(
                    0, f"Cannot load stored technologies for {context.project_id}: {check.error}"
                )
            log.debug(f"Technology detection skipped by caller for {context.project_id}")
            return carried_over_detection(check.node), True, created

        if check.stale:
            log.debug(f"Project {context.project_id} is stale ({check.reason}), detecting")
            return await self._detect(context, threshold), False, created

        log.info(f"Skipping technology detection for {context.project_id} - {check.reason}")
        return carried_over_detection(check.node), True, created

    async def _detect(self, context: ProjectContext, threshold: float) -> TechnologyDetectionResult:
        """Run the detector, mapping every failure to DetectionError."""
        if self.detector is None:
            raise DetectionError("No technology detector configured")

        try:
            result = await self.detector.detect_technologies(context.project_path, threshold)
        except DetectionError:
            raise
        except Exception as e:
            raise DetectionError(f"Technology detection failed for {context.project_path}: {e}") from e

        if not isinstance(result, TechnologyDetectionResult):
            raise DetectionError(
                f"Technology detector returned {type(result).__name__}, expected TechnologyDetectionResult"
            )
        log.debug(f"Detected {len(result.technologies)} technologies for {context.project_id}")
        return result

    async def _write(
        self,
        context: ProjectContext,
        detection: TechnologyDetectionResult | None,
        created: str | None,
        perf: PerformanceMetrics,
    ) -> EntityCreationResult:
        """Build and upsert entities and facts for a resolved detection."""
        entities = build_entities(context, detection, created=created)
        relationships = build_relationships(self.user_id, context, detection)

        batch = UpsertBatch(self.store, self.user_id)
        batch.add_entities(entities)
        batch.add_relationships(relationships)

        with log_timing(f"graph upsert for {context.project_id}", log) as timing:
            # Once started, the batch runs to completion even if the caller is cancelled
            report = await asyncio.shield(batch.submit())
        perf.creation_time_ms = timing["elapsed_ms"]

        technologies = list(detection.technologies) if detection else []
        log.info(
            f"Synced project {context.project_id}: {len(technologies)} technologies, "
            f"{report.entities_written} entities, {report.facts_written} facts"
        )
        return EntityCreationResult(
            success=True,
            project=context,
            project_entity=entities[0],
            relationships=relationships,
            technologies=technologies,
            message=f"Project entity synced with {len(relationships)} relationships",
            performance=perf,
        )

    # =========================================================================
    # Refresh and session links
    # =========================================================================

    async def refresh(
        self,
        path: str | Path | None = None,
        force_update: bool = False,
        confidence_threshold: float | None = None,
    ) -> EntityCreationResult:
        """Re-detect technologies and write only if the stored list differs.

        Unlike sync, the detector always runs; the graph lookup decides
        whether anything needs writing.
        """
        if force_update:
            return await self.sync(
                path, SyncOptions(force_update=True, confidence_threshold=confidence_threshold)
            )

        perf = PerformanceMetrics()
        start = perf_counter()
        try:
            context = await self.new_scope().get(path)
            threshold = (
                confidence_threshold
                if confidence_threshold is not None
                else self.config.confidence_threshold
            )
            with log_timing(f"detection for {context.project_id}", log) as timing:
                detection = await self._detect(context, threshold)
            perf.detection_time_ms = timing["elapsed_ms"]

            check = await check_project_node(
                self.store, self.user_id, context, window=self.freshness_window
            )
            node = check.node
            if node is not None:
                stored = split_technologies(node.attributes.get("technologies"))
                if not technologies_changed(stored, detection.names):
                    perf.total_time_ms = (perf_counter() - start) * 1000
                    return EntityCreationResult(
                        success=True,
                        project=context,
                        technologies=list(detection.technologies),
                        message="Project entity is already up to date",
                        performance=perf,
                    )

            created = node.attributes.get("created") if node else None
            result = await self._write(
                context, detection, created if isinstance(created, str) else None, perf
            )
            result.performance.total_time_ms = (perf_counter() - start) * 1000
            return result
        except Exception as e:
            perf.total_time_ms = (perf_counter() - start) * 1000
            log.error(f"Failed to refresh project entity for {path or '.'}: {e}")
            return EntityCreationResult.failure(f"Failed to refresh project entity: {e}", perf)

    async def link_session(self, session_id: str, project_id: str) -> OperationResult:
        """Record that a session took place in a project (OCCURS_IN fact)."""
        relationship = build_session_relationship(session_id, project_id)
        try:
            await self.store.add(user_id=self.user_id, type="text", data=relationship.fact)
        except Exception as e:
            log.error(f"Failed to link session {session_id} to {project_id}: {e}")
            return OperationResult(
                success=False,
                error=f"Failed to create session-project relationship: {e}",
            )
        return OperationResult(
            success=True,
            message=f"Session {session_id} linked to project {project_id}",
        )
