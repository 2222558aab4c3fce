"""Get-or-create resolution of the Drive folder tree.

Drive has no create-if-absent primitive: every create is a blind insert, and
two folders with the same name can live side by side under one parent. Every
client session therefore runs the same resolve-then-create sequence, and
duplicate folders created by concurrent sessions are an expected outcome.
The registry's job is to converge on one folder per entity across repeated
calls, not to guarantee global uniqueness.

Tree layout used by the application:

    <root folder>                  get_or_create_root_folder("ATS Pro")
        Letters/                   get_or_create_section_folder("Letters", root)
        <process>/                 get_or_create_entity_folder(process.title, root, known_id)
            <candidate>/           get_or_create_entity_folder(candidate.name, process_folder, known_id)

Example:
    from ats_docgate.gdrive.folders import RemoteFolderRegistry

    folders = RemoteFolderRegistry(client)
    root = await folders.get_or_create_root_folder("ATS Pro")
    folder = await folders.get_or_create_entity_folder("Ana Pérez", root.id, candidate.drive_folder_id)
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from ats_docgate.gdrive.client import RemoteObjectClient, escape_query_value
from ats_docgate.gdrive.errors import RemoteRequestError

# Set up structured logging
logger = logging.getLogger(__name__)

# MIME type for folders
FOLDER_MIME = "application/vnd.google-apps.folder"

# Parent alias Drive uses for the top of "My Drive"
ROOT_ALIAS = "root"

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_\- ]")


class FolderKind(str, Enum):
    """Which level of the tree a folder resolution targets."""

    ROOT = "root"
    SECTION = "section"
    ENTITY = "entity"


@dataclass
class RemoteFolder:
    """A folder node in the Drive tree.

    Attributes:
        id: Google Drive folder ID.
        name: Folder name.
        parent_id: ID of the first parent folder (None at the store root or
            when Drive did not return parents).
    """

    id: str
    name: str
    parent_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"id": self.id, "name": self.name, "parent_id": self.parent_id}

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RemoteFolder":
        """Create from a Drive file resource."""
        parents = data.get("parents") or []
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            parent_id=parents[0] if parents else None,
        )


def sanitize_folder_name(name: str) -> str:
    """Replace every character outside ``[A-Za-z0-9_- ]`` with ``_``.

    Examples:
        >>> sanitize_folder_name("José O'Neil")
        'Jos_ O_Neil'
    """
    sanitized = _UNSAFE_NAME_CHARS.sub("_", name).strip()
    return sanitized or "_"


class RemoteFolderRegistry:
    """Resolves root, section and entity folders, creating them when absent.

    None of the get_or_create operations are atomic against a second actor
    doing the same thing at the same time. That race is accepted and not
    retried; later calls converge on whichever folder they find first.
    """

    FOLDER_FIELDS = "id,name,mimeType,parents"

    def __init__(self, client: RemoteObjectClient) -> None:
        """Initialize the registry.

        Args:
            client: Authorized Drive client.
        """
        self._client = client

    async def resolve_folder(
        self,
        kind: FolderKind,
        name: str,
        parent_id: Optional[str] = None,
        previously_known_id: Optional[str] = None,
    ) -> RemoteFolder:
        """Resolve a folder of any kind.

        Args:
            kind: ROOT, SECTION or ENTITY.
            name: Folder (or entity) name.
            parent_id: Required for SECTION and ENTITY.
            previously_known_id: Only used for ENTITY.

        Raises:
            ValueError: If a SECTION or ENTITY folder is requested without a parent.
        """
        kind = FolderKind(kind)
        if kind is FolderKind.ROOT:
            return await self.get_or_create_root_folder(name)
        if not parent_id:
            raise ValueError(f"A parent folder id is required to resolve a {kind.value} folder")
        if kind is FolderKind.SECTION:
            return await self.get_or_create_section_folder(name, parent_id)
        return await self.get_or_create_entity_folder(name, parent_id, previously_known_id)

    async def get_or_create_root_folder(self, name: str) -> RemoteFolder:
        """Find the application's root folder at the top of the store, or create it.

        Args:
            name: Root folder name (e.g., "ATS Pro").

        Returns:
            The first matching folder, or a newly created one.
        """
        existing = await self._search_folders(name, ROOT_ALIAS)
        if existing:
            if len(existing) > 1:
                logger.warning(
                    "Multiple root folders share a name, using the first",
                    extra={"folder_name": name, "count": len(existing)},
                )
            return existing[0]

        return await self._create_folder(name, parent_id=None)

    async def get_or_create_section_folder(self, name: str, parent_id: str) -> RemoteFolder:
        """Find a section folder (Letters, Forms, ...) under a parent, or create it.

        Args:
            name: Section folder name.
            parent_id: Parent folder ID, normally the root folder.

        Returns:
            The first matching folder, or a newly created one.
        """
        existing = await self._search_folders(name, parent_id)
        if existing:
            return existing[0]

        return await self._create_folder(name, parent_id=parent_id)

    async def get_or_create_entity_folder(
        self,
        entity_name: str,
        parent_id: str,
        previously_known_id: Optional[str] = None,
    ) -> RemoteFolder:
        """Resolve the folder dedicated to one entity (a process or a candidate).

        Resolution order:
        1. If a previously known id is given, fetch it and accept it only if
           it is not trashed and still has ``parent_id`` among its parents.
           A stale id pointing at a moved or deleted folder falls through.
        2. Search the parent for folders with the sanitized entity name.
           Among several matches, the one whose id equals the previously
           known id wins; otherwise the first in Drive's list order.
        3. Create a folder with the sanitized entity name.

        Args:
            entity_name: Display name of the entity.
            parent_id: Folder the entity folder must live in.
            previously_known_id: Folder id remembered from an earlier call.

        Returns:
            The resolved or created folder.
        """
        if previously_known_id:
            known = await self._verify_known_folder(previously_known_id, parent_id)
            if known is not None:
                return known

        folder_name = sanitize_folder_name(entity_name)
        matches = await self._search_folders(folder_name, parent_id)
        if matches:
            for match in matches:
                if previously_known_id and match.id == previously_known_id:
                    return match
            if len(matches) > 1:
                logger.warning(
                    "Duplicate entity folders found, using the first",
                    extra={
                        "folder_name": folder_name,
                        "parent_id": parent_id,
                        "folder_ids": [m.id for m in matches],
                    },
                )
            return matches[0]

        return await self._create_folder(folder_name, parent_id=parent_id)

    async def list_folders(self, parent_id: Optional[str] = None) -> List[RemoteFolder]:
        """List non-trashed folders, optionally restricted to one parent."""
        query = f"mimeType = '{FOLDER_MIME}' and trashed = false"
        if parent_id:
            query = f"'{escape_query_value(parent_id)}' in parents and {query}"

        items = await self._client.list_files(query, fields=self.FOLDER_FIELDS)
        return [RemoteFolder.from_api(item) for item in items]

    async def delete_folder(self, folder_id: str) -> None:
        """Delete a folder and everything in it."""
        await self._client.delete(folder_id)
        logger.info("Deleted Drive folder", extra={"folder_id": folder_id})

    async def _verify_known_folder(self, folder_id: str, parent_id: str) -> Optional[RemoteFolder]:
        """Fetch a remembered folder id and check it is still usable.

        Returns None when the folder is gone, trashed, not a folder, or no
        longer inside ``parent_id``. Auth and transport errors propagate.
        """
        try:
            data = await self._client.get(
                folder_id, fields="id,name,mimeType,parents,trashed"
            )
        except RemoteRequestError as e:
            logger.info(
                "Previously known folder is not accessible, resolving by name",
                extra={"folder_id": folder_id, "status_code": e.status_code},
            )
            return None

        if data.get("trashed"):
            logger.info("Previously known folder is trashed", extra={"folder_id": folder_id})
            return None
        if data.get("mimeType", FOLDER_MIME) != FOLDER_MIME:
            return None
        if parent_id not in (data.get("parents") or []):
            logger.info(
                "Previously known folder was moved out of its parent",
                extra={"folder_id": folder_id, "parent_id": parent_id},
            )
            return None

        return RemoteFolder(id=data["id"], name=data.get("name", ""), parent_id=parent_id)

    async def _search_folders(self, name: str, parent_id: str) -> List[RemoteFolder]:
        """Find non-trashed folders with an exact name under a parent."""
        query = (
            f"name = '{escape_query_value(name)}' and "
            f"'{escape_query_value(parent_id)}' in parents and "
            f"mimeType = '{FOLDER_MIME}' and "
            "trashed = false"
        )
        items = await self._client.list_files(query, fields=self.FOLDER_FIELDS)
        return [RemoteFolder.from_api(item) for item in items]

    async def _create_folder(self, name: str, parent_id: Optional[str]) -> RemoteFolder:
        """Create a folder. Blind insert: the caller has already searched."""
        metadata: Dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME}
        if parent_id:
            metadata["parents"] = [parent_id]

        data = await self._client.create(metadata, fields=self.FOLDER_FIELDS)
        folder = RemoteFolder.from_api(data)
        if folder.parent_id is None:
            folder.parent_id = parent_id

        logger.info(
            "Created Drive folder",
            extra={"folder_id": folder.id, "folder_name": name, "parent_id": parent_id},
        )
        return folder
