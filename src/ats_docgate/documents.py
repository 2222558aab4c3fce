"""
Candidate documents in Google Drive.

DocumentService ties the record store to the Drive registries. Uploading a
candidate document resolves the folder chain

    <root> / <process title> / <candidate name>

remembering each entity folder id on its record, so the next upload starts
from the known id instead of a name search. The uploaded file is recorded
as a categorized Attachment on the candidate.

Example:
    service = DocumentService(store, folders, files, drive_config)
    attachment = await service.attach_document(
        "cand-1", pdf_bytes, "contract.pdf", category="signed-contract"
    )
"""

from __future__ import annotations

import uuid
from typing import BinaryIO

import structlog

from ats_docgate.gdrive.config import DriveConfig
from ats_docgate.gdrive.files import DuplicatePolicy, RemoteFile, RemoteFileRegistry
from ats_docgate.gdrive.folders import RemoteFolder, RemoteFolderRegistry
from ats_docgate.models import Attachment, Candidate, Process
from ats_docgate.store import CandidateStore, RecordNotFoundError
from ats_docgate.transitions import AttachmentSource

logger = structlog.get_logger()


class DocumentService:
    """Uploads candidate and section documents into the Drive folder tree."""

    def __init__(
        self,
        store: CandidateStore,
        folders: RemoteFolderRegistry,
        files: RemoteFileRegistry,
        drive_config: DriveConfig,
    ):
        self.store = store
        self.folders = folders
        self.files = files
        self.drive_config = drive_config

    # -------------------------------------------------------------------------
    # Folder resolution
    # -------------------------------------------------------------------------

    async def resolve_root_folder(self) -> RemoteFolder:
        """Return the configured root folder, resolving it by name when no id is stored.

        A root resolved by name is written back into the connection config so
        it can be persisted with the rest of the connection settings.
        """
        conn = self.drive_config.connection
        if conn.root_folder_id:
            return RemoteFolder(id=conn.root_folder_id, name=conn.root_folder_name)

        root = await self.folders.get_or_create_root_folder(conn.root_folder_name)
        conn.root_folder_id = root.id
        logger.info("root_folder_resolved", folder_id=root.id, folder_name=root.name)
        return root

    async def resolve_process_folder(self, process: Process) -> RemoteFolder:
        root = await self.resolve_root_folder()
        folder = await self.folders.get_or_create_entity_folder(
            process.title, root.id, process.drive_folder_id
        )
        if folder.id != process.drive_folder_id or folder.name != process.drive_folder_name:
            await self.store.set_process_folder(process.id, folder.id, folder.name)
        return folder

    async def resolve_candidate_folder(
        self, candidate: Candidate, process: Process
    ) -> RemoteFolder:
        process_folder = await self.resolve_process_folder(process)
        folder = await self.folders.get_or_create_entity_folder(
            candidate.name, process_folder.id, candidate.drive_folder_id
        )
        if folder.id != candidate.drive_folder_id or folder.name != candidate.drive_folder_name:
            await self.store.set_candidate_folder(candidate.id, folder.id, folder.name)
        return folder

    # -------------------------------------------------------------------------
    # Uploads
    # -------------------------------------------------------------------------

    async def attach_document(
        self,
        candidate_id: str,
        content: bytes | BinaryIO,
        name: str,
        category: str | None = None,
        mime_type: str | None = None,
        policy: DuplicatePolicy = DuplicatePolicy.KEEP_BOTH,
    ) -> Attachment:
        """Upload a document into the candidate's folder and record it.

        Args:
            candidate_id: Candidate receiving the document.
            content: File bytes or a binary stream.
            name: File name in Drive.
            category: Document category id to tag the attachment with.
            mime_type: Content type; guessed from the name when omitted.
            policy: What to do when the folder already has a file of that name.

        Returns:
            The recorded Attachment.

        Raises:
            RecordNotFoundError: If the candidate or its process is unknown.
            ValueError: If the category is not defined on the process.
            UploadFailed: If Drive refuses the upload.
        """
        candidate = await self.store.get_candidate(candidate_id)
        if candidate is None:
            raise RecordNotFoundError(f"Candidate '{candidate_id}' not found")
        process = await self.store.get_process(candidate.process_id)
        if process is None:
            raise RecordNotFoundError(f"Process '{candidate.process_id}' not found")
        if category and process.get_category(category) is None:
            raise ValueError(
                f"Document category '{category}' is not defined on process '{process.title}'"
            )

        data = content if isinstance(content, bytes) else content.read()
        folder = await self.resolve_candidate_folder(candidate, process)
        uploaded = await self.files.upload_with_policy(
            data, folder.id, name, policy=policy, mime_type=mime_type
        )

        # A reused file may already be recorded on the candidate
        for existing in await self.store.list_attachments(candidate_id):
            if existing.drive_file_id == uploaded.id:
                logger.info(
                    "document_already_attached",
                    candidate_id=candidate_id,
                    drive_file_id=uploaded.id,
                )
                return existing

        attachment = Attachment(
            id=uuid.uuid4().hex,
            name=uploaded.name,
            url=self.files.view_url(uploaded.id),
            category=category,
            mime_type=uploaded.mime_type or mime_type or RemoteFileRegistry.DEFAULT_MIME,
            size=uploaded.size if uploaded.size is not None else len(data),
            uploaded_at=uploaded.modified_at,
            drive_file_id=uploaded.id,
        )
        await self.store.add_attachment(candidate_id, attachment)

        logger.info(
            "document_attached",
            candidate_id=candidate_id,
            attachment_id=attachment.id,
            drive_file_id=uploaded.id,
            category=category,
            folder_id=folder.id,
        )
        return attachment

    async def store_section_file(
        self,
        section: str,
        content: bytes | BinaryIO,
        name: str,
        mime_type: str | None = None,
        policy: DuplicatePolicy = DuplicatePolicy.KEEP_BOTH,
    ) -> RemoteFile:
        """Upload a file into a section folder (Letters, Forms, ...) under the root."""
        root = await self.resolve_root_folder()
        folder = await self.folders.get_or_create_section_folder(section, root.id)
        uploaded = await self.files.upload_with_policy(
            content, folder.id, name, policy=policy, mime_type=mime_type
        )
        logger.info(
            "section_file_stored",
            section=section,
            folder_id=folder.id,
            drive_file_id=uploaded.id,
        )
        return uploaded

    # -------------------------------------------------------------------------
    # Validation source
    # -------------------------------------------------------------------------

    def drive_attachment_source(self) -> AttachmentSource:
        """Attachment source that treats the candidate's Drive folder as authoritative.

        Recorded attachments backed by a Drive file count only while that file
        is still in the candidate's folder. Attachments without a Drive file
        (external links) always count. Listing errors propagate, so the
        coordinator blocks the candidate with a validation error.
        """

        async def source(candidate: Candidate) -> list[Attachment]:
            present: set[str] = set()
            if candidate.drive_folder_id:
                listed = await self.files.list_files(candidate.drive_folder_id)
                present = {f.id for f in listed}

            attachments = await self.store.list_attachments(candidate.id)
            return [
                a for a in attachments
                if a.drive_file_id is None or a.drive_file_id in present
            ]

        return source
