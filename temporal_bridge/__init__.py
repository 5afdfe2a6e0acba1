"""TemporalBridge - project memory for coding assistants.

Keeps a temporal knowledge graph in sync with the projects a developer
works on:
- Staleness check deciding when technology detection must re-run
- Full-overwrite entity and relationship upsert (entities, then facts)
- Per-project session document gating work to once per session
"""

__version__ = "0.1.0"

from temporal_bridge.config import Config
from temporal_bridge.graph_client import GraphStoreClient, ServiceError
from temporal_bridge.models import EntityCreationResult, ProjectContext, SyncOptions
from temporal_bridge.project_context import DetectionError, GitProjectContextProvider
from temporal_bridge.project_queries import ProjectGraphReader
from temporal_bridge.reconciler import EntityReconciler
from temporal_bridge.session_cache import CacheReadError, SessionCache, SessionRecord

__all__ = [
    "Config",
    "GraphStoreClient",
    "ServiceError",
    "EntityCreationResult",
    "ProjectContext",
    "SyncOptions",
    "DetectionError",
    "GitProjectContextProvider",
    "ProjectGraphReader",
    "EntityReconciler",
    "CacheReadError",
    "SessionCache",
    "SessionRecord",
]
