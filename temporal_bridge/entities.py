"""Entity and relationship construction for project state.

Turns a ProjectContext plus a technology detection into the graph entities
and relationship facts submitted by the reconciler. Pure functions: no I/O.

Every entity is built with its complete attribute map. The store replaces
attributes on re-add, so a partial map would silently drop stored fields.
"""

import json
from datetime import datetime

from temporal_bridge.models import (
    DetectedTechnology,
    GraphEntity,
    ProjectContext,
    ProjectRelationship,
    RelationshipType,
    TechnologyDetectionResult,
)
from temporal_bridge.staleness import join_technologies
from temporal_bridge.time_utils import to_iso, utc_now

# Node labels
LABEL_PROJECT = "Location"
LABEL_TECHNOLOGY = "Technology"
LABEL_ORGANIZATION = "Organization"

WORKS_ON_CONFIDENCE = 1.0
BELONGS_TO_CONFIDENCE = 0.95


def session_subject(session_id: str) -> str:
    return f"session-{session_id}"


def build_project_entity(
    context: ProjectContext,
    detection: TechnologyDetectionResult | None,
    now: datetime | None = None,
    created: str | None = None,
) -> GraphEntity:
    """Build the Project entity with its full attribute set.

    Args:
        context: Resolved project identity
        detection: Technologies to record (None records an empty list)
        now: Timestamp for lastUpdated (defaults to the current time)
        created: Original creation timestamp to preserve, if known
    """
    stamp = to_iso(now or utc_now())
    technologies = detection.technologies if detection else []

    attributes: dict[str, str | int | float | bool] = {
        "displayName": context.project_name,
        "projectType": context.project_type,
        "technologies": join_technologies([tech.name for tech in technologies]),
        "technologyDetails": json.dumps([tech.to_dict() for tech in technologies]),
        "confidence": json.dumps({tech.name: tech.confidence for tech in technologies}),
        "detectionSources": join_technologies([tech.source for tech in technologies]),
        "overallConfidence": detection.overall_confidence if detection else 0.0,
        "groupId": context.group_id,
        "path": context.project_path,
        "created": created or stamp,
        "lastUpdated": stamp,
    }
    if context.organization:
        attributes["organization"] = context.organization
    if context.git_remote:
        attributes["repository"] = context.git_remote
    if detection and detection.detected_at:
        attributes["detectedAt"] = detection.detected_at

    return GraphEntity(
        name=context.project_id,
        summary=f"Project: {context.project_name}",
        labels=[LABEL_PROJECT, context.project_type],
        attributes=attributes,
    )


def build_technology_entity(tech: DetectedTechnology) -> GraphEntity:
    return GraphEntity(
        name=tech.name,
        summary=f"Technology: {tech.name}",
        labels=[LABEL_TECHNOLOGY, tech.source],
        attributes={
            "name": tech.name,
            "confidence": tech.confidence,
            "source": tech.source,
            "version": tech.version or "unknown",
            "context": tech.context or "",
        },
    )


def build_organization_entity(organization: str) -> GraphEntity:
    return GraphEntity(
        name=organization,
        summary=f"Organization: {organization}",
        labels=[LABEL_ORGANIZATION],
        attributes={"name": organization, "type": "organization"},
    )


def build_entities(
    context: ProjectContext,
    detection: TechnologyDetectionResult | None,
    now: datetime | None = None,
    created: str | None = None,
) -> list[GraphEntity]:
    """Project first, then one entity per technology, then the organization if any."""
    entities = [build_project_entity(context, detection, now=now, created=created)]
    if detection:
        entities.extend(build_technology_entity(tech) for tech in detection.technologies)
    if context.organization:
        entities.append(build_organization_entity(context.organization))
    return entities


def build_relationships(
    user_id: str,
    context: ProjectContext,
    detection: TechnologyDetectionResult | None,
) -> list[ProjectRelationship]:
    """WORKS_ON always, USES per technology, BELONGS_TO only with an organization."""
    relationships = [
        ProjectRelationship(
            subject=user_id,
            predicate=RelationshipType.WORKS_ON,
            object=context.project_id,
            confidence=WORKS_ON_CONFIDENCE,
            context="Project developer relationship",
        )
    ]

    if detection:
        for tech in detection.technologies:
            relationships.append(
                ProjectRelationship(
                    subject=context.project_id,
                    predicate=RelationshipType.USES,
                    object=tech.name,
                    confidence=tech.confidence,
                    context=tech.context or f"Detected via {tech.source}",
                )
            )

    if context.organization:
        relationships.append(
            ProjectRelationship(
                subject=context.project_id,
                predicate=RelationshipType.BELONGS_TO,
                object=context.organization,
                confidence=BELONGS_TO_CONFIDENCE,
                context="Organization ownership",
            )
        )

    return relationships


def build_session_relationship(session_id: str, project_id: str) -> ProjectRelationship:
    return ProjectRelationship(
        subject=session_subject(session_id),
        predicate=RelationshipType.OCCURS_IN,
        object=project_id,
        confidence=1.0,
        context="Session activity",
    )
