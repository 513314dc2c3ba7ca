"""Configuration and credential loading for cmdvault.

Settings priority (later wins):
1. Built-in defaults
2. ``<data dir>/config.json``
3. Environment variables

The GitHub token is read from ``<data dir>/credentials.json`` first and
falls back to ``CMDVAULT_GITHUB_TOKEN`` / ``GITHUB_TOKEN``.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from cmdvault.types import VALID_RESOLUTION_VALUES
from cmdvault.utils import get_cmdvault_home

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_GIST_FILENAME = "cmdvault-commands.json"
ASK = "ask"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class SyncSettings:
    """User-tunable sync behaviour."""

    enabled: bool = False
    conflict_resolution: str = ASK  # "ask" or a Resolution value applied to every conflict
    gist_filename: str = DEFAULT_GIST_FILENAME
    api_url: str = DEFAULT_API_URL
    timeout: float = 30.0

    @property
    def default_resolution(self) -> Optional[str]:
        """The pre-configured choice, or None when the user should be asked."""
        if self.conflict_resolution == ASK:
            return None
        return self.conflict_resolution


def get_config_path() -> Path:
    return get_cmdvault_home() / "config.json"


def get_credentials_path() -> Path:
    return get_cmdvault_home() / "credentials.json"


def _read_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Ignoring unreadable %s: %s", path.name, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: expected a JSON object", path.name)
        return {}
    return data


def load_settings() -> SyncSettings:
    """Load sync settings from config.json and the environment."""
    settings = SyncSettings()
    sync_section = _read_json(get_config_path()).get("sync", {})
    if isinstance(sync_section, dict):
        if "enabled" in sync_section:
            settings.enabled = bool(sync_section["enabled"])
        if sync_section.get("conflict_resolution"):
            settings.conflict_resolution = str(sync_section["conflict_resolution"])
        if sync_section.get("gist_filename"):
            settings.gist_filename = str(sync_section["gist_filename"])
        if sync_section.get("api_url"):
            settings.api_url = str(sync_section["api_url"])
        if sync_section.get("timeout"):
            try:
                settings.timeout = float(sync_section["timeout"])
            except (TypeError, ValueError):
                logger.warning("Invalid sync.timeout %r, using default", sync_section["timeout"])

    env_enabled = os.environ.get("CMDVAULT_SYNC_ENABLED")
    if env_enabled is not None:
        settings.enabled = env_enabled.strip().lower() in _TRUTHY
    settings.conflict_resolution = (
        os.environ.get("CMDVAULT_CONFLICT_RESOLUTION") or settings.conflict_resolution
    )
    settings.api_url = (os.environ.get("CMDVAULT_GITHUB_API_URL") or settings.api_url).rstrip("/")

    if (
        settings.conflict_resolution != ASK
        and settings.conflict_resolution not in VALID_RESOLUTION_VALUES
    ):
        logger.warning(
            "Unknown conflict_resolution %r, falling back to %r",
            settings.conflict_resolution,
            ASK,
        )
        settings.conflict_resolution = ASK

    return settings


def save_settings(settings: SyncSettings) -> Path:
    """Persist settings under the ``sync`` key of config.json, keeping other keys."""
    path = get_config_path()
    config = _read_json(path)
    config["sync"] = asdict(settings)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)
    return path


def load_github_token() -> Optional[str]:
    """Return the GitHub token used for gist access, if any is configured."""
    creds = _read_json(get_credentials_path())
    token = creds.get("github_token") or creds.get("token")
    token = token or os.environ.get("CMDVAULT_GITHUB_TOKEN") or os.environ.get("GITHUB_TOKEN")
    if token:
        return str(token).strip() or None
    return None
