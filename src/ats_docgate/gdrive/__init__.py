"""Google Drive integration for the candidate document workflow.

This module keeps the Drive folder tree in step with the application's
processes and candidates:
- Holding the bearer-token session and refreshing it on expiry
- Calling the Drive REST API with a single refresh-and-retry on 401
- Resolving root, section and per-entity folders without creating duplicates
- Uploading candidate documents and finding them again by name

Example:
    from ats_docgate.gdrive import (
        DriveConfig,
        RemoteFileRegistry,
        RemoteFolderRegistry,
        RemoteObjectClient,
        TokenSession,
    )

    session = TokenSession.from_config(drive_config)
    async with RemoteObjectClient(session, api_config=drive_config.api) as client:
        folders = RemoteFolderRegistry(client)
        files = RemoteFileRegistry(client)

        root = await folders.get_or_create_root_folder("ATS Pro")
        uploaded = await files.upload(content, root.id, "CV.pdf")
"""

# Authentication
from ats_docgate.gdrive.auth import TokenSession

# Client
from ats_docgate.gdrive.client import RemoteObjectClient

# Configuration
from ats_docgate.gdrive.config import (
    ApiConfig,
    ConnectionConfig,
    DriveConfig,
    FolderConfig,
)

# Errors
from ats_docgate.gdrive.errors import (
    AuthenticationError,
    AuthExpired,
    DriveAccessError,
    DriveError,
    NoRefreshToken,
    RefreshRejected,
    RemoteNotFound,
    RemoteRequestError,
    RemoteUnavailable,
    UploadFailed,
)

# Files
from ats_docgate.gdrive.files import (
    DuplicatePolicy,
    RemoteFile,
    RemoteFileRegistry,
)

# Folders
from ats_docgate.gdrive.folders import (
    FolderKind,
    RemoteFolder,
    RemoteFolderRegistry,
    sanitize_folder_name,
)

__all__ = [
    # Authentication
    "TokenSession",
    # Client
    "RemoteObjectClient",
    # Configuration
    "DriveConfig",
    "ApiConfig",
    "ConnectionConfig",
    "FolderConfig",
    # Folders
    "RemoteFolderRegistry",
    "RemoteFolder",
    "FolderKind",
    "sanitize_folder_name",
    # Files
    "RemoteFileRegistry",
    "RemoteFile",
    "DuplicatePolicy",
    # Errors
    "DriveError",
    "AuthenticationError",
    "AuthExpired",
    "NoRefreshToken",
    "RefreshRejected",
    "RemoteUnavailable",
    "RemoteRequestError",
    "RemoteNotFound",
    "DriveAccessError",
    "UploadFailed",
]
