"""Per-project session document for TemporalBridge.

Gates reconciliation to once per assistant session. Each project directory
holds one JSON document (temporal-bridge.json by default):

    {
        "sessionId": "...",
        "lastUpdated": "2025-01-05T10:00:00.000Z",
        "projectEntityCache": {"lastProcessed": "...", "success": true, ...},
        "metadata": {...}
    }

The document is overwritten in place on every update and never deleted
here. A missing or unreadable document reads as "no record".
"""

import asyncio
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from temporal_bridge.config import Config
from temporal_bridge.log_config import get_logger
from temporal_bridge.models import EntityCreationResult
from temporal_bridge.time_utils import to_iso, utc_now

log = get_logger("session_cache")

MERGED_SECTIONS = ("projectEntityCache", "metadata")

# Outcome keys cleared by mark_processed unless the new outcome sets them
OUTCOME_KEYS = (
    "technologiesDetected",
    "projectEntity",
    "technologies",
    "relationships",
    "performance",
    "errors",
)

_MISSING = object()


class CacheReadError(Exception):
    """Session document is missing, malformed, or lacks required fields."""


@dataclass
class SessionRecord:
    """In-memory form of the session document."""

    session_id: str
    last_updated: str
    project_entity_cache: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None

    @property
    def last_processed(self) -> str | None:
        if not self.project_entity_cache:
            return None
        return self.project_entity_cache.get("lastProcessed") or None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "lastUpdated": self.last_updated,
            "projectEntityCache": self.project_entity_cache,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "SessionRecord":
        """Build a record from a decoded document.

        Raises:
            CacheReadError: If the document is not an object or misses
                sessionId / lastUpdated
        """
        if not isinstance(data, dict):
            raise CacheReadError(f"Session document must be an object, got {type(data).__name__}")

        session_id = data.get("sessionId")
        last_updated = data.get("lastUpdated")
        if not session_id or not isinstance(session_id, str):
            raise CacheReadError("Session document has no sessionId")
        if not last_updated or not isinstance(last_updated, str):
            raise CacheReadError("Session document has no lastUpdated")

        cache = data.get("projectEntityCache")
        metadata = data.get("metadata")
        return cls(
            session_id=session_id,
            last_updated=last_updated,
            project_entity_cache=cache if isinstance(cache, dict) else None,
            metadata=metadata if isinstance(metadata, dict) else None,
        )


def _strip(value: Any) -> Any:
    if value is None:
        return _MISSING
    if isinstance(value, dict):
        cleaned = {}
        for key, item in value.items():
            item = _strip(item)
            if item is not _MISSING:
                cleaned[key] = item
        return cleaned if cleaned else _MISSING
    if isinstance(value, (list, tuple)):
        return [item for item in (_strip(v) for v in value) if item is not _MISSING]
    return value


def strip_absent(document: dict[str, Any]) -> dict[str, Any]:
    """Recursively drop None values so the stored form has no null markers.

    Maps left empty by stripping are dropped as well; lists are kept.

    Example:
        >>> strip_absent({"a": 1, "b": None, "c": {"d": None}, "e": [None, 2]})
        {'a': 1, 'e': [2]}
    """
    cleaned = _strip(document)
    return {} if cleaned is _MISSING else cleaned


class SessionCache:
    """Reads and writes the per-project session document.

    All public methods are coroutines; file I/O runs in a worker thread.
    Callers are expected to serialize operations on the same project path.
    """

    def __init__(self, file_name: str | None = None, config: Config | None = None):
        """Initialize the session cache.

        Args:
            file_name: Document name inside each project directory
            config: Configuration supplying the default file name
        """
        if file_name is None:
            file_name = (config or Config()).session_file_name
        self.file_name = file_name

    def path_for(self, project_path: str | Path) -> Path:
        return Path(project_path).expanduser() / self.file_name

    # =========================================================================
    # Read / write
    # =========================================================================

    def _load(self, project_path: str | Path) -> SessionRecord:
        session_file = self.path_for(project_path)
        try:
            raw = session_file.read_text()
        except FileNotFoundError as e:
            raise CacheReadError(f"No session file at {session_file}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise CacheReadError(f"Cannot read {session_file}: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CacheReadError(f"Malformed session file {session_file}: {e}") from e

        return SessionRecord.from_dict(data)

    def _read_sync(self, project_path: str | Path) -> SessionRecord | None:
        try:
            return self._load(project_path)
        except CacheReadError as e:
            log.debug(f"No usable session record: {e}")
            return None

    def _write_sync(self, project_path: str | Path, document: dict[str, Any]) -> None:
        """Write JSON atomically using temp file + rename."""
        session_file = self.path_for(project_path)
        tmp_path = session_file.with_name(session_file.name + ".tmp")
        try:
            tmp_path.write_text(json.dumps(document, indent=2))
            os.replace(tmp_path, session_file)  # Atomic on POSIX
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise

    async def read(self, project_path: str | Path) -> SessionRecord | None:
        """Return the stored record, or None if absent or unusable. Never raises."""
        return await asyncio.to_thread(self._read_sync, project_path)

    async def write(self, project_path: str | Path, record: SessionRecord) -> SessionRecord:
        """Persist a record, stamping lastUpdated with the current time.

        Returns:
            The record as stored (None fields removed)

        Raises:
            ValueError: If the record has no session id
            OSError: If the document cannot be written
        """
        if not record.session_id:
            raise ValueError("sessionId is required to write a session record")

        document = record.to_dict()
        document["lastUpdated"] = to_iso(utc_now())
        document = strip_absent(document)

        await asyncio.to_thread(self._write_sync, project_path, document)
        log.debug(f"Session record written for {project_path} (session {record.session_id[:8]}...)")
        return SessionRecord.from_dict(document)

    async def update(
        self,
        project_path: str | Path,
        partial: Mapping[str, Any] | SessionRecord,
    ) -> SessionRecord:
        """Merge a partial document into the stored record and write it.

        Scalar fields from the partial override stored ones (None means not
        provided). projectEntityCache and metadata are shallow-merged: the
        partial's keys override, other stored keys survive, and a None value
        removes its key.

        Args:
            project_path: Project directory
            partial: Document-shaped mapping (sessionId, projectEntityCache, metadata, ...)
                or a SessionRecord

        Returns:
            The record as stored
        """
        if isinstance(partial, SessionRecord):
            partial = partial.to_dict()

        existing = await self.read(project_path)
        merged: dict[str, Any] = existing.to_dict() if existing else {}

        for key, value in partial.items():
            if key == "lastUpdated":
                continue
            if key in MERGED_SECTIONS:
                if value is None:
                    continue
                if not isinstance(value, Mapping):
                    raise TypeError(f"{key} must be a mapping, got {type(value).__name__}")
                section = dict(merged.get(key) or {})
                section.update(value)
                merged[key] = section
            elif value is not None:
                merged[key] = value

        record = SessionRecord(
            session_id=merged.get("sessionId") or "",
            last_updated=merged.get("lastUpdated") or "",
            project_entity_cache=merged.get("projectEntityCache"),
            metadata=merged.get("metadata"),
        )
        return await self.write(project_path, record)

    # =========================================================================
    # Session gate
    # =========================================================================

    async def should_process(self, project_path: str | Path, session_id: str) -> bool:
        """Whether reconciliation should run for this session.

        True when there is no record, the stored session differs, or nothing
        was processed yet for the session. A recorded attempt closes the gate
        whatever its outcome; retrying a failure is the caller's decision.
        """
        record = await self.read(project_path)
        if record is None:
            return True
        if record.session_id != session_id:
            return True
        return not record.last_processed

    async def mark_processed(
        self,
        project_path: str | Path,
        session_id: str,
        outcome: Mapping[str, Any] | EntityCreationResult,
    ) -> SessionRecord:
        """Record a reconciliation outcome for the session.

        Args:
            project_path: Project directory
            session_id: Current session id
            outcome: Outcome fields (success, technologiesDetected, projectEntity,
                technologies, relationships, performance, errors) or a sync result
        """
        if isinstance(outcome, EntityCreationResult):
            outcome = outcome.to_cache_outcome()

        cache: dict[str, Any] = {key: None for key in OUTCOME_KEYS}
        cache.update(outcome)
        cache["lastProcessed"] = to_iso(utc_now())
        cache["success"] = bool(outcome.get("success", False))

        record = await self.update(
            project_path,
            {"sessionId": session_id, "projectEntityCache": cache},
        )
        log.info(
            f"Marked session {session_id[:8]}... processed for {project_path} "
            f"(success={cache['success']})"
        )
        return record

    async def get_session_id(self, project_path: str | Path) -> str | None:
        record = await self.read(project_path)
        return record.session_id if record else None
