"""Configuration for savepoint.

Settings come from a JSON file (``.savepoint.json`` in the workspace, falling
back to ``~/.config/savepoint/config.json``) and ``SAVEPOINT_*`` environment
variables, in that order of precedence from lowest to highest.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from savepoint.exceptions import InvalidParameters

logger = logging.getLogger(__name__)

WORKSPACE_CONFIG_NAME = ".savepoint.json"
USER_CONFIG_PATH = Path.home() / ".config" / "savepoint" / "config.json"
ENV_PREFIX = "SAVEPOINT_"


class SavepointConfig(BaseModel):
    """Tunable settings shared by every engine component."""

    # Caches
    cache_timeout_seconds: float = 5 * 60
    locator_cache_seconds: float = 5
    message_cache_size: int = 50

    # Repository discovery
    scan_depth: int = 2
    host_poll_attempts: int = 5
    host_poll_interval: float = 0.1

    # Command execution
    max_retries: int = 2
    retry_delay_ms: int = 100

    # History listing
    max_snapshots: int = 30
    page_size: int = 20
    quickpick_size: int = 20

    # Backups
    backup_before_restore: bool = True
    backup_prefix: str = "savepoint/backup/"
    backup_retention_days: int = 7

    # Identity used when a new repository is created
    default_user_name: str = "Savepoint User"
    default_user_email: str = "savepoint@localhost"

    # Remote mirror
    github_token: Optional[str] = None
    github_api_url: str = "https://api.github.com"
    github_push_branches: List[str] = ["main", "master"]


def _env_overrides() -> Dict[str, Any]:
    """Collect ``SAVEPOINT_<FIELD>`` variables that name a known setting."""
    overrides: Dict[str, Any] = {}
    for field_name in SavepointConfig.model_fields:
        value = os.environ.get(ENV_PREFIX + field_name.upper())
        if value is None:
            continue
        if field_name == "github_push_branches":
            overrides[field_name] = [b.strip() for b in value.split(",") if b.strip()]
        else:
            overrides[field_name] = value
    return overrides


def find_config_file(workspace: Optional[Path] = None) -> Optional[Path]:
    """Return the config file that applies to ``workspace``, if any."""
    if workspace is not None:
        candidate = Path(workspace) / WORKSPACE_CONFIG_NAME
        if candidate.is_file():
            return candidate
    if USER_CONFIG_PATH.is_file():
        return USER_CONFIG_PATH
    return None


def load_config(
    workspace: Optional[Path] = None, config_file: Optional[Path] = None
) -> SavepointConfig:
    """Load settings from disk and the environment."""
    data: Dict[str, Any] = {}
    path = Path(config_file) if config_file else find_config_file(workspace)
    if path is not None:
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise InvalidParameters(f"Invalid config file {path}: {e}") from e
        logger.debug("Loaded config from %s", path)
    data.update(_env_overrides())

    try:
        return SavepointConfig(**data)
    except ValidationError as e:
        raise InvalidParameters(f"Invalid configuration: {e}") from e


def save_config(config: SavepointConfig, path: Optional[Path] = None) -> Path:
    """Persist ``config`` as JSON, returning the file written."""
    target = Path(path) if path else USER_CONFIG_PATH
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(config.model_dump(), indent=2))
    return target
