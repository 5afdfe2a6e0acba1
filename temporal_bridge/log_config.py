"""loguru setup shared by every TemporalBridge component.

Two sinks: stderr, filtered per component, and a daily file under
TEMPORAL_BRIDGE_LOG_DIR (default ~/.temporal_bridge/logs) that keeps DEBUG.

TEMPORAL_BRIDGE_LOG_LEVEL sets the stderr level (INFO by default). A
component bound through get_logger can be tuned on its own with
TEMPORAL_BRIDGE_LOG_<COMPONENT>, e.g. TEMPORAL_BRIDGE_LOG_RECONCILER=DEBUG.
"""

import os
import sys
from contextlib import contextmanager
from pathlib import Path
from time import perf_counter

from loguru import logger

ENV_PREFIX = "TEMPORAL_BRIDGE_LOG_"
COMPONENTS = (
    "config",
    "graph_client",
    "project_context",
    "staleness",
    "reconciler",
    "project_queries",
    "session_cache",
)

_default_level = os.getenv(f"{ENV_PREFIX}LEVEL", "INFO").upper()
_component_levels = {
    component: os.getenv(f"{ENV_PREFIX}{component.upper()}", "").upper()
    for component in COMPONENTS
}


def _level_no(level: str) -> int | None:
    try:
        return logger.level(level).no
    except ValueError:
        return None


def _stderr_filter(record) -> bool:
    component = record["extra"].get("name", "")
    threshold = _level_no(_component_levels.get(component) or _default_level)
    return threshold is None or record["level"].no >= threshold


logger.remove()

_log_dir = Path(os.getenv(f"{ENV_PREFIX}DIR", str(Path.home() / ".temporal_bridge" / "logs")))
_log_dir.mkdir(parents=True, exist_ok=True)

logger.add(
    sys.stderr,
    level=0,
    filter=_stderr_filter,
    format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{extra[name]}</cyan> - <level>{message}</level>",
    colorize=True,
)

logger.add(
    _log_dir / "temporal_bridge_{time:YYYY-MM-DD}.log",
    level="DEBUG",
    format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]} | {name}:{function}:{line} | {message}",
    rotation="10 MB",
    retention="7 days",
    compression="zip",
    enqueue=True,
)

logger.configure(extra={"name": "temporal_bridge"})


def get_logger(name: str):
    """Logger bound to a component name (one of COMPONENTS)."""
    return logger.bind(name=name)


@contextmanager
def log_timing(operation: str, log_instance=None, level: str = "debug"):
    """Time a block and log its duration.

    Yields a dict whose ``elapsed_ms`` is filled in when the block exits.
    A block that raises is logged as failed at WARNING, and the exception
    propagates.
    """
    target = log_instance or logger
    timing = {"elapsed_ms": 0.0}
    start = perf_counter()
    try:
        yield timing
    except BaseException:
        timing["elapsed_ms"] = (perf_counter() - start) * 1000
        target.warning(f"{operation} failed after {timing['elapsed_ms']:.1f}ms")
        raise
    timing["elapsed_ms"] = (perf_counter() - start) * 1000
    getattr(target, level)(f"{operation} took {timing['elapsed_ms']:.1f}ms")


__all__ = ["logger", "get_logger", "log_timing"]
