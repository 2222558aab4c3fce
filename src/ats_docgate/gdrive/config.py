"""Configuration dataclasses for the Google Drive integration.

This module defines the configuration structure for the Drive connection:
API endpoints, the persisted connection state written by the OAuth flow,
and the folder names used when laying out the Drive tree.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class ApiConfig:
    """Drive REST endpoints and transport settings."""

    api_base_url: str = "https://www.googleapis.com/drive/v3"
    upload_base_url: str = "https://www.googleapis.com/upload/drive/v3"
    userinfo_url: str = "https://www.googleapis.com/oauth2/v2/userinfo"
    token_endpoint: str = "http://localhost:5000/api/auth/google/refresh"
    timeout_seconds: float = 30.0
    expiry_skew_seconds: int = 60


@dataclass
class ConnectionConfig:
    """Connection state persisted after the OAuth exchange.

    Written by the authorization flow (an external collaborator) and read
    at session start to seed the TokenSession and the root folder id.
    """

    connected: bool = False
    access_token: str = ""
    refresh_token: Optional[str] = None
    token_expiry: Optional[datetime] = None
    root_folder_id: Optional[str] = None
    root_folder_name: str = "ATS Pro"
    account_email: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for YAML/JSON serialization."""
        return {
            "connected": self.connected,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_expiry": self.token_expiry.isoformat() if self.token_expiry else None,
            "root_folder_id": self.root_folder_id,
            "root_folder_name": self.root_folder_name,
            "account_email": self.account_email,
        }


@dataclass
class FolderConfig:
    """Names of the section folders created under the root folder."""

    letters_section: str = "Letters"
    forms_section: str = "Forms"


@dataclass
class DriveConfig:
    """Main configuration for the Google Drive integration.

    Example:
        config = DriveConfig.from_dict(yaml.safe_load(f)["drive"])
        config.connection.root_folder_name = "Recruiting"
    """

    api: ApiConfig = field(default_factory=ApiConfig)
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    folders: FolderConfig = field(default_factory=FolderConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DriveConfig":
        """Create a DriveConfig from a dictionary (e.g., from YAML).

        Args:
            data: Dictionary with configuration values.

        Returns:
            DriveConfig instance with values from the dictionary.
        """
        config = cls()

        if "api" in data:
            api_data = data["api"] or {}
            config.api.api_base_url = api_data.get("api_base_url", config.api.api_base_url)
            config.api.upload_base_url = api_data.get(
                "upload_base_url", config.api.upload_base_url
            )
            config.api.userinfo_url = api_data.get("userinfo_url", config.api.userinfo_url)
            config.api.token_endpoint = api_data.get("token_endpoint", config.api.token_endpoint)
            config.api.timeout_seconds = float(
                api_data.get("timeout_seconds", config.api.timeout_seconds)
            )
            config.api.expiry_skew_seconds = int(
                api_data.get("expiry_skew_seconds", config.api.expiry_skew_seconds)
            )

        if "connection" in data:
            conn_data = data["connection"] or {}
            config.connection.connected = bool(conn_data.get("connected", False))
            config.connection.access_token = conn_data.get("access_token") or ""
            config.connection.refresh_token = conn_data.get("refresh_token") or None
            config.connection.token_expiry = _parse_expiry(conn_data.get("token_expiry"))
            config.connection.root_folder_id = conn_data.get("root_folder_id") or None
            config.connection.root_folder_name = conn_data.get(
                "root_folder_name", config.connection.root_folder_name
            )
            config.connection.account_email = conn_data.get("account_email") or None

        if "folders" in data:
            folder_data = data["folders"] or {}
            config.folders.letters_section = folder_data.get(
                "letters_section", config.folders.letters_section
            )
            config.folders.forms_section = folder_data.get(
                "forms_section", config.folders.forms_section
            )

        return config


def _parse_expiry(value: Any) -> Optional[datetime]:
    """Accept a datetime (PyYAML parses timestamps) or an ISO 8601 string."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
