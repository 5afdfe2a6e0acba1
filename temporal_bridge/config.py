"""Configuration for TemporalBridge.

Simple dataclass-based configuration with sensible defaults.
Override via environment variables with TEMPORAL_BRIDGE_ prefix. The graph
service credential and developer identity also honour the plain
ZEP_API_KEY / DEVELOPER_ID / GROUP_ID variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from temporal_bridge.log_config import get_logger

log = get_logger("config")

# Load .env file if present
try:
    from dotenv import load_dotenv
    _pkg_dir = Path(__file__).parent.parent
    _env_loaded = load_dotenv(_pkg_dir / ".env") or load_dotenv(Path.cwd() / ".env")
    log.debug(f"Loaded .env file: {_env_loaded}")
except ImportError:
    log.debug("python-dotenv not installed, using environment variables directly")

DEFAULT_GRAPH_URL = "https://api.getzep.com/api/v2"
DEFAULT_SESSION_FILE = "temporal-bridge.json"


def _get_env(key: str, default: str) -> str:
    """Get environment variable with TEMPORAL_BRIDGE_ prefix."""
    return os.getenv(f"TEMPORAL_BRIDGE_{key}", default)


def _get_env_float(key: str, default: float) -> float:
    """Get float environment variable, falling back on unparseable values."""
    val = os.getenv(f"TEMPORAL_BRIDGE_{key}")
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        log.warning(f"Ignoring invalid TEMPORAL_BRIDGE_{key}={val!r}, using {default}")
        return default


@dataclass
class Config:
    """TemporalBridge configuration.

    Attributes:
        api_key: Graph service API key (ZEP_API_KEY)
        user_id: Developer identity used as graph user (DEVELOPER_ID, default: developer)
        graph_url: Base URL of the graph service REST API
        request_timeout: HTTP timeout in seconds for graph calls
        group_id: Optional group override applied to every project context (GROUP_ID)
        freshness_hours: Age after which a project node is considered stale (default: 24)
        confidence_threshold: Minimum technology confidence kept by detection (default: 0.6)
        session_file_name: Session document name inside each project directory
    """

    api_key: str | None = field(
        default_factory=lambda: _get_env("API_KEY", "") or os.getenv("ZEP_API_KEY") or None
    )
    user_id: str = field(
        default_factory=lambda: _get_env("USER_ID", "") or os.getenv("DEVELOPER_ID") or "developer"
    )
    graph_url: str = field(
        default_factory=lambda: _get_env("GRAPH_URL", DEFAULT_GRAPH_URL)
    )
    request_timeout: float = field(
        default_factory=lambda: _get_env_float("REQUEST_TIMEOUT", 30.0)
    )
    group_id: str | None = field(
        default_factory=lambda: _get_env("GROUP_ID", "") or os.getenv("GROUP_ID") or None
    )
    freshness_hours: float = field(
        default_factory=lambda: _get_env_float("FRESHNESS_HOURS", 24.0)
    )
    confidence_threshold: float = field(
        default_factory=lambda: _get_env_float("CONFIDENCE_THRESHOLD", 0.6)
    )
    session_file_name: str = field(
        default_factory=lambda: _get_env("SESSION_FILE", DEFAULT_SESSION_FILE)
    )

    def __post_init__(self):
        """Validate ranges and log the effective configuration."""
        log.trace("Initializing Config")

        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError(
                f"confidence_threshold must be within [0, 1], got {self.confidence_threshold}"
            )
        if self.freshness_hours < 0:
            raise ValueError(f"freshness_hours must be >= 0, got {self.freshness_hours}")

        log.debug(f"user_id={self.user_id}")
        log.debug(f"graph_url={self.graph_url}")
        log.debug(f"api_key set={bool(self.api_key)}")
        log.debug(f"group_id={self.group_id}")
        log.debug(f"freshness_hours={self.freshness_hours}")
        log.debug(f"confidence_threshold={self.confidence_threshold}")
        log.debug(f"session_file_name={self.session_file_name}")
