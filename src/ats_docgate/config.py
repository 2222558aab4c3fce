"""
Application settings loaded from settings.yaml.

Layout::

    workspace: ./ats_workspace.json     # JSON record store used by the CLI
    drive:
      api: {...}                        # see gdrive.config.ApiConfig
      connection: {...}                 # written by the OAuth flow
      folders: {...}
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, cast

import structlog
import yaml  # type: ignore[import-untyped]

from ats_docgate.gdrive.auth import TokenSession
from ats_docgate.gdrive.config import DriveConfig

logger = structlog.get_logger()

DEFAULT_WORKSPACE = "ats_workspace.json"


class Settings:
    """Configuration container for the application."""

    def __init__(self, config_path: Path | None = None):
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to settings.yaml
        """
        self.config_path = config_path
        self.config: dict[str, Any] = {}

        if config_path and config_path.exists():
            with open(config_path) as f:
                self.config = yaml.safe_load(f) or {}
            logger.info("config_loaded", path=str(config_path))
        else:
            logger.warning("using_default_config")

        self.drive = DriveConfig.from_dict(self.drive_section)

    @property
    def drive_section(self) -> dict[str, Any]:
        """Raw ``drive`` section of the settings file."""
        result = self.config.get("drive") or {}
        return cast(dict[str, Any], result)

    @property
    def workspace_path(self) -> Path:
        """JSON workspace file, relative paths resolved against the settings file."""
        path = Path(self.config.get("workspace") or DEFAULT_WORKSPACE)
        if not path.is_absolute() and self.config_path is not None:
            path = self.config_path.parent / path
        return path

    def save_connection(self, session: TokenSession | None = None) -> None:
        """Write the connection section back to settings.yaml.

        Args:
            session: When given, its current tokens are copied into the
                connection config first (use as a TokenSession on_refresh hook).
        """
        conn = self.drive.connection
        if session is not None:
            conn.access_token = session.access_token or ""
            conn.refresh_token = session.refresh_token
            conn.token_expiry = session.expiry
            conn.connected = session.is_connected

        if self.config_path is None:
            logger.warning("connection_not_saved", reason="no settings file")
            return

        drive = dict(self.drive_section)
        drive["connection"] = conn.to_dict()
        self.config["drive"] = drive

        with open(self.config_path, "w") as f:
            yaml.safe_dump(self.config, f, sort_keys=False)
        logger.info("connection_saved", path=str(self.config_path), connected=conn.connected)
