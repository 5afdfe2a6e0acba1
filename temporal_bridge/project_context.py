"""Project identity resolution for TemporalBridge.

Resolves a filesystem path to a stable ProjectContext. Sources, most
authoritative first:
1. Git remote URL (organization and repository name)
2. Project config files (package.json, deno.json) - scoped names give the organization
3. Path structure (.../Projects/<org>/<repo>, .../github.com/<org>/<repo>)
4. Directory name

Technology detection is an external collaborator; only its interface
(TechnologyDetector) is defined here.
"""

import asyncio
import json
import os
import re
import subprocess
from pathlib import Path
from typing import Protocol, runtime_checkable

from temporal_bridge.config import Config
from temporal_bridge.log_config import get_logger
from temporal_bridge.models import ProjectContext, TechnologyDetectionResult

log = get_logger("project_context")

# Git command timeout in seconds
GIT_TIMEOUT = 2

PROJECT_CONFIG_FILES = ["package.json", "deno.json", "deno.jsonc"]


class DetectionError(Exception):
    """Project or technology detection failed (unreadable or unrecognized path)."""


@runtime_checkable
class ProjectContextProvider(Protocol):
    """Resolves a path to a ProjectContext."""

    async def detect(self, path: str | Path | None = None) -> ProjectContext:
        ...


@runtime_checkable
class TechnologyDetector(Protocol):
    """Reports the technologies used by a project with per-item confidence."""

    async def detect_technologies(
        self, path: str | Path, confidence_threshold: float
    ) -> TechnologyDetectionResult:
        ...


# scheme://[user@]host[:port]/path and scp-style [user@]host:path
_URL_REMOTE = re.compile(r"^[a-z][a-z+]*://(?:[^@/]+@)?(?P<host>[^/]+)/(?P<path>.+)$")
_SCP_REMOTE = re.compile(r"^(?:[^@/]+@)?(?P<host>[^:/]+):(?P<path>[^/].*)$")


def normalize_git_url(url: str) -> str:
    """Reduce a remote URL to host/owner/.../repo.

    Examples:
        >>> normalize_git_url("git@github.com:zabaca/temporal-bridge.git")
        'github.com/zabaca/temporal-bridge'
    """
    url = url.strip().removesuffix(".git")
    for pattern in (_URL_REMOTE, _SCP_REMOTE):
        match = pattern.match(url)
        if match:
            return f"{match['host']}/{match['path'].strip('/')}"
    return url


def parse_git_remote(url: str) -> tuple[str | None, str | None]:
    """Extract (organization, repository name) from a remote URL.

    Nested groups (gitlab.com/group/subgroup/repo) use the innermost group
    as organization.
    """
    normalized = normalize_git_url(url)
    parts = [p for p in normalized.split("/") if p]
    if len(parts) < 3:
        return None, None
    return parts[-2], parts[-1]


def find_git_root(start: Path) -> Path | None:
    """Walk up from start until a directory containing .git is found."""
    current = start.resolve()
    for candidate in (current, *current.parents):
        if (candidate / ".git").exists():
            return candidate
    return None


def get_git_remote_url(path: Path) -> str | None:
    """Return the raw origin URL of the repository at path, if any."""
    try:
        result = subprocess.run(
            ["git", "-C", str(path), "config", "--get", "remote.origin.url"],
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT,
        )
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout.strip()
    except subprocess.TimeoutExpired:
        log.warning(f"Git command timed out for {path}")
    except FileNotFoundError:
        log.debug("Git not installed")
    except OSError as e:
        log.debug(f"Git remote detection failed: {e}")

    return None


def parse_project_config(path: Path) -> tuple[str | None, str | None]:
    """Read (organization, name) from package.json / deno.json.

    Scoped names (@org/package) yield the organization. Malformed files are
    skipped.
    """
    for config_file in PROJECT_CONFIG_FILES:
        config_path = path / config_file
        if not config_path.is_file():
            continue
        try:
            data = json.loads(config_path.read_text())
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            log.debug(f"Skipping unreadable {config_path}: {e}")
            continue

        name = data.get("name") if isinstance(data, dict) else None
        if isinstance(name, str) and name:
            match = re.match(r"^(?:@([^/]+)/)?(.+)$", name)
            if match:
                return match.group(1), match.group(2)

    return None, None


def parse_path_structure(path: Path) -> tuple[str | None, str]:
    """Infer (organization, name) from conventional checkout layouts."""
    parts = path.parts

    lowered = [part.lower() for part in parts]
    if "projects" in lowered:
        idx = lowered.index("projects")
        if len(parts) > idx + 2:
            return parts[idx + 1], parts[idx + 2]

    if "github.com" in parts:
        idx = parts.index("github.com")
        if len(parts) > idx + 2:
            return parts[idx + 1], parts[idx + 2]

    return None, path.name


def generate_project_id(organization: str | None, project_name: str | None) -> str:
    """Build the deterministic project key.

    Examples:
        >>> generate_project_id("Zabaca", "Temporal_Bridge")
        'zabaca-temporal-bridge'
        >>> generate_project_id(None, None)
        'default'
    """
    parts = [p for p in (organization, project_name) if p]
    if not parts:
        parts = ["default"]

    project_id = "-".join(parts).lower()
    project_id = re.sub(r"[^a-z0-9-]", "-", project_id)
    project_id = re.sub(r"-+", "-", project_id)
    return project_id.strip("-") or "default"


class GitProjectContextProvider:
    """Default ProjectContextProvider backed by git metadata and config files."""

    def __init__(self, config: Config | None = None):
        self.config = config or Config()

    async def detect(self, path: str | Path | None = None) -> ProjectContext:
        """Resolve the project containing path (defaults to the working directory).

        Raises:
            DetectionError: If the path does not exist or is not a directory
        """
        return await asyncio.to_thread(self.detect_sync, path)

    def detect_sync(self, path: str | Path | None = None) -> ProjectContext:
        resolved = Path(path if path is not None else os.getcwd()).expanduser().resolve()
        if not resolved.exists():
            raise DetectionError(f"Project path does not exist: {resolved}")
        if not resolved.is_dir():
            raise DetectionError(f"Project path is not a directory: {resolved}")

        git_root = find_git_root(resolved)
        root = git_root or resolved

        config_org, config_name = parse_project_config(root)
        path_org, path_name = parse_path_structure(root)

        remote_url = get_git_remote_url(root) if git_root else None
        remote_org, remote_name = parse_git_remote(remote_url) if remote_url else (None, None)

        project_name = remote_name or config_name or path_name
        organization = remote_org or config_org or path_org

        project_id = generate_project_id(organization, project_name)
        context = ProjectContext(
            project_id=project_id,
            project_name=project_name,
            project_path=str(root),
            project_type="git" if git_root else "directory",
            group_id=self.config.group_id or f"project-{project_id}",
            organization=organization,
            git_remote=remote_url,
        )
        log.debug(f"Detected project {context.project_id} ({context.project_type}) at {root}")
        return context


class ProjectContextScope:
    """Short-lived cache of resolved project contexts for one logical operation.

    Keyed by resolved path. Held by the caller (or a reconciler) and
    invalidated explicitly; nothing is cached at module level.
    """

    def __init__(self, provider: ProjectContextProvider):
        self.provider = provider
        self._contexts: dict[str, ProjectContext] = {}

    @staticmethod
    def _key(path: str | Path | None) -> str:
        return str(Path(path if path is not None else os.getcwd()).expanduser().resolve())

    async def get(self, path: str | Path | None = None) -> ProjectContext:
        """Return the cached context for path, resolving it on first use."""
        key = self._key(path)
        cached = self._contexts.get(key)
        if cached is not None:
            return cached

        try:
            context = await self.provider.detect(key)
        except DetectionError:
            raise
        except Exception as e:
            raise DetectionError(f"Project detection failed for {key}: {e}") from e

        self._contexts[key] = context
        return context

    def invalidate(self, path: str | Path | None = None) -> None:
        """Drop one cached path, or everything when path is None."""
        if path is None:
            self._contexts.clear()
        else:
            self._contexts.pop(self._key(path), None)

    def __len__(self) -> int:
        return len(self._contexts)
