"""Google Drive file registry: upload, lookup by name, URL synthesis.

Creating a file is strict: a non-2xx answer raises UploadFailed with the
status and body. Looking a file up is lenient: find_by_name never raises and
reports a failed lookup as "no existing file". Losing an upload is worse than
an occasional duplicate file.

Example:
    from ats_docgate.gdrive.files import RemoteFileRegistry

    files = RemoteFileRegistry(client)
    uploaded = await files.upload(pdf_bytes, folder.id, "CV.pdf")
    print(files.view_url(uploaded.id))
"""

import logging
import mimetypes
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, BinaryIO, Dict, List, Optional, Union

from ats_docgate.gdrive.client import RemoteObjectClient, escape_query_value
from ats_docgate.gdrive.errors import UploadFailed
from ats_docgate.gdrive.folders import FOLDER_MIME

# Set up structured logging
logger = logging.getLogger(__name__)


class DuplicatePolicy(Enum):
    """How to handle an existing file with the same name in the folder.

    Attributes:
        KEEP_BOTH: Upload anyway; the folder ends up with two files.
        REUSE: Skip the upload and return the most recent existing file.
        VERSION: Append a timestamp to the new file's name.
    """

    KEEP_BOTH = "keep_both"
    REUSE = "reuse"
    VERSION = "version"


@dataclass
class RemoteFile:
    """A file stored in Google Drive.

    Attributes:
        id: Google Drive file ID.
        name: File name.
        mime_type: MIME type of the content.
        parent_id: ID of the containing folder.
        modified_at: Last modification time (timezone aware).
        size: Size in bytes, when Drive reports it.
        web_view_link: Drive's own viewer link, when requested.
    """

    id: str
    name: str
    mime_type: str
    parent_id: str
    modified_at: datetime
    size: Optional[int] = None
    web_view_link: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "mime_type": self.mime_type,
            "parent_id": self.parent_id,
            "modified_at": self.modified_at.isoformat(),
            "size": self.size,
            "web_view_link": self.web_view_link,
        }

    @classmethod
    def from_api(cls, data: Dict[str, Any], parent_id: Optional[str] = None) -> "RemoteFile":
        """Create from a Drive file resource."""
        parents = data.get("parents") or []
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            mime_type=data.get("mimeType", ""),
            parent_id=parent_id or (parents[0] if parents else ""),
            modified_at=parse_drive_time(data.get("modifiedTime")),
            size=int(data["size"]) if data.get("size") else None,
            web_view_link=data.get("webViewLink"),
        )


def parse_drive_time(value: Optional[str]) -> datetime:
    """Parse Drive's RFC 3339 timestamps (``2024-06-01T10:00:00.000Z``)."""
    if not value:
        return datetime.now(timezone.utc)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class RemoteFileRegistry:
    """Uploads files to Drive folders and finds them again by name."""

    # Fallback MIME type when none is given and none can be guessed
    DEFAULT_MIME = "application/octet-stream"

    FILE_FIELDS = "id,name,mimeType,parents,modifiedTime,size,webViewLink"

    VIEW_URL = "https://drive.google.com/file/d/{file_id}/view"
    DOWNLOAD_URL = "https://drive.google.com/uc?export=download&id={file_id}"

    def __init__(self, client: RemoteObjectClient) -> None:
        """Initialize the registry.

        Args:
            client: Authorized Drive client.
        """
        self._client = client

    async def upload(
        self,
        content: Union[bytes, BinaryIO],
        parent_id: str,
        name: str,
        mime_type: Optional[str] = None,
    ) -> RemoteFile:
        """Upload a file in a single multipart request.

        A 401 goes through the client's one refresh-and-retry; any other
        non-2xx answer is terminal.

        Args:
            content: File bytes or a binary stream.
            parent_id: Target folder ID.
            name: File name in Drive.
            mime_type: Content type. Guessed from the name when omitted.

        Returns:
            The created file.

        Raises:
            UploadFailed: If Drive answers with a non-2xx status.
        """
        data = content if isinstance(content, bytes) else content.read()
        mime = mime_type or mimetypes.guess_type(name)[0] or self.DEFAULT_MIME
        metadata = {"name": name, "parents": [parent_id]}

        response = await self._client.upload(metadata, data, mime, fields=self.FILE_FIELDS)

        if not response.is_success:
            body = response.text
            logger.error(
                "Failed to upload file",
                extra={
                    "file_name": name,
                    "folder_id": parent_id,
                    "status_code": response.status_code,
                    "body": body[:500],
                },
            )
            raise UploadFailed(
                f"Failed to upload '{name}': HTTP {response.status_code} - {body}",
                status_code=response.status_code,
                body=body,
                folder_id=parent_id,
                file_name=name,
            )

        uploaded = RemoteFile.from_api(response.json(), parent_id=parent_id)
        logger.info(
            "Uploaded file to Drive",
            extra={"file_id": uploaded.id, "file_name": name, "folder_id": parent_id},
        )
        return uploaded

    async def upload_with_policy(
        self,
        content: Union[bytes, BinaryIO],
        parent_id: str,
        name: str,
        policy: DuplicatePolicy = DuplicatePolicy.KEEP_BOTH,
        mime_type: Optional[str] = None,
    ) -> RemoteFile:
        """Upload a file, applying a duplicate-name policy first.

        The duplicate check goes through find_by_name, so a failed lookup
        falls back to a plain upload.
        """
        if policy is DuplicatePolicy.KEEP_BOTH:
            return await self.upload(content, parent_id, name, mime_type)

        existing = await self.find_by_name(name, parent_id)
        if existing is None:
            return await self.upload(content, parent_id, name, mime_type)

        if policy is DuplicatePolicy.REUSE:
            logger.info(
                "File already exists, reusing it",
                extra={"file_id": existing.id, "file_name": name, "folder_id": parent_id},
            )
            return existing

        return await self.upload(content, parent_id, versioned_name(name), mime_type)

    async def find_by_name(self, name: str, parent_id: str) -> Optional[RemoteFile]:
        """Find the most recently modified file with a given name in a folder.

        Never raises: any failure is logged and reported as None.

        Args:
            name: Exact file name.
            parent_id: Folder to search in.

        Returns:
            The newest matching file, or None.
        """
        try:
            query = (
                f"name = '{escape_query_value(name)}' and "
                f"'{escape_query_value(parent_id)}' in parents and "
                "trashed = false"
            )
            items = await self._client.list_files(query, fields=self.FILE_FIELDS)

            matches = [
                RemoteFile.from_api(item, parent_id=parent_id)
                for item in items
                if item.get("mimeType") != FOLDER_MIME
            ]
            if not matches:
                return None
            return max(matches, key=lambda f: f.modified_at)

        except Exception as e:
            # Log but don't fail - if search fails, assume file doesn't exist
            logger.warning(
                "Failed to search for existing file",
                extra={
                    "file_name": name,
                    "folder_id": parent_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return None

    async def list_files(self, parent_id: str) -> List[RemoteFile]:
        """List the non-trashed files (not subfolders) of a folder."""
        query = (
            f"'{escape_query_value(parent_id)}' in parents and "
            f"mimeType != '{FOLDER_MIME}' and "
            "trashed = false"
        )
        items = await self._client.list_files(query, fields=self.FILE_FIELDS)
        return [RemoteFile.from_api(item, parent_id=parent_id) for item in items]

    async def get_file(self, file_id: str) -> RemoteFile:
        """Fetch one file's metadata by id."""
        data = await self._client.get(file_id, fields=self.FILE_FIELDS)
        return RemoteFile.from_api(data)

    async def delete_file(self, file_id: str) -> None:
        """Delete a file permanently."""
        await self._client.delete(file_id)
        logger.info("Deleted Drive file", extra={"file_id": file_id})

    def view_url(self, file_id: str) -> str:
        """URL that opens the file in Drive's viewer."""
        return self.VIEW_URL.format(file_id=file_id)

    def download_url(self, file_id: str) -> str:
        """URL that downloads the file content directly."""
        return self.DOWNLOAD_URL.format(file_id=file_id)


def versioned_name(name: str, now: Optional[datetime] = None) -> str:
    """Append a timestamp before the extension: ``CV.pdf`` -> ``CV_20240601_103000.pdf``."""
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    if "." in name:
        base, ext = name.rsplit(".", 1)
        return f"{base}_{stamp}.{ext}"
    return f"{name}_{stamp}"
