"""Unit tests for Google Drive folder resolution.

Tests get-or-create for root, section and entity folders, name
sanitization and convergence on one folder per entity.
"""

import pytest

from ats_docgate.gdrive.errors import RemoteUnavailable
from ats_docgate.gdrive.folders import (
    FOLDER_MIME,
    FolderKind,
    RemoteFolderRegistry,
    sanitize_folder_name,
)

from drive_fakes import FakeDrive

# -----------------------------------------------------------------------------
# Test sanitize_folder_name
# -----------------------------------------------------------------------------


class TestSanitizeFolderName:
    """Tests for folder name sanitization."""

    def test_keeps_safe_characters(self) -> None:
        assert sanitize_folder_name("Ana Perez-Lopez_2") == "Ana Perez-Lopez_2"

    def test_replaces_unsafe_characters(self) -> None:
        assert sanitize_folder_name("José O'Neil") == "Jos_ O_Neil"
        assert sanitize_folder_name("R&D / Ops") == "R_D _ Ops"

    def test_empty_name_gets_placeholder(self) -> None:
        assert sanitize_folder_name("   ") == "_"


# -----------------------------------------------------------------------------
# Test root and section folders
# -----------------------------------------------------------------------------


class TestRootAndSectionFolders:
    """Tests for get_or_create_root_folder and get_or_create_section_folder."""

    @pytest.mark.asyncio
    async def test_root_created_when_absent(
        self, folders: RemoteFolderRegistry, fake_drive: FakeDrive
    ) -> None:
        root = await folders.get_or_create_root_folder("ATS Pro")

        assert root.name == "ATS Pro"
        assert fake_drive.files[root.id]["mimeType"] == FOLDER_MIME
        assert fake_drive.files[root.id]["parents"] == ["root"]

    @pytest.mark.asyncio
    async def test_root_reused_when_present(
        self, folders: RemoteFolderRegistry, fake_drive: FakeDrive
    ) -> None:
        existing = fake_drive.add_folder("ATS Pro")

        root = await folders.get_or_create_root_folder("ATS Pro")

        assert root.id == existing["id"]
        assert len(fake_drive.files) == 1

    @pytest.mark.asyncio
    async def test_trashed_root_is_ignored(
        self, folders: RemoteFolderRegistry, fake_drive: FakeDrive
    ) -> None:
        trashed = fake_drive.add_folder("ATS Pro", trashed=True)

        root = await folders.get_or_create_root_folder("ATS Pro")

        assert root.id != trashed["id"]

    @pytest.mark.asyncio
    async def test_same_named_file_is_not_a_folder(
        self, folders: RemoteFolderRegistry, fake_drive: FakeDrive
    ) -> None:
        """A file sharing the root's name does not count as the root folder."""
        fake_drive.add_file("ATS Pro", mime_type="application/pdf")

        root = await folders.get_or_create_root_folder("ATS Pro")

        assert fake_drive.files[root.id]["mimeType"] == FOLDER_MIME

    @pytest.mark.asyncio
    async def test_section_folder_scoped_to_parent(
        self, folders: RemoteFolderRegistry, fake_drive: FakeDrive
    ) -> None:
        """A Letters folder elsewhere does not satisfy the root's Letters section."""
        root = fake_drive.add_folder("ATS Pro")
        fake_drive.add_folder("Letters", parent="elsewhere")

        section = await folders.get_or_create_section_folder("Letters", root["id"])
        again = await folders.get_or_create_section_folder("Letters", root["id"])

        assert section.parent_id == root["id"]
        assert again.id == section.id
        assert len(fake_drive.children(root["id"], folders=True)) == 1


# -----------------------------------------------------------------------------
# Test entity folders
# -----------------------------------------------------------------------------


class TestEntityFolders:
    """Tests for get_or_create_entity_folder."""

    @pytest.mark.asyncio
    async def test_repeated_calls_converge(
        self, folders: RemoteFolderRegistry, fake_drive: FakeDrive
    ) -> None:
        """Two resolutions without a known id end on the same single folder."""
        root = fake_drive.add_folder("ATS Pro")

        first = await folders.get_or_create_entity_folder("Ana O'Neil", root["id"])
        second = await folders.get_or_create_entity_folder("Ana O'Neil", root["id"])

        assert first.id == second.id
        assert first.name == "Ana O_Neil"
        assert len(fake_drive.children(root["id"], folders=True)) == 1

    @pytest.mark.asyncio
    async def test_known_id_used_without_search(
        self, folders: RemoteFolderRegistry, fake_drive: FakeDrive
    ) -> None:
        """A valid previously known id is accepted even if the folder was renamed."""
        root = fake_drive.add_folder("ATS Pro")
        renamed = fake_drive.add_folder("Ana (renamed)", parent=root["id"])

        folder = await folders.get_or_create_entity_folder("Ana", root["id"], renamed["id"])

        assert folder.id == renamed["id"]
        assert len(fake_drive.drive_requests("GET")) == 1

    @pytest.mark.asyncio
    async def test_stale_known_id_falls_back_to_search(
        self, folders: RemoteFolderRegistry, fake_drive: FakeDrive
    ) -> None:
        """A deleted known folder falls through to the name search."""
        root = fake_drive.add_folder("ATS Pro")
        by_name = fake_drive.add_folder("Ana", parent=root["id"])

        folder = await folders.get_or_create_entity_folder("Ana", root["id"], "deleted-id")

        assert folder.id == by_name["id"]

    @pytest.mark.asyncio
    async def test_known_id_in_other_parent_is_rejected(
        self, folders: RemoteFolderRegistry, fake_drive: FakeDrive
    ) -> None:
        """A known folder moved out of the parent is not reused."""
        root = fake_drive.add_folder("ATS Pro")
        moved = fake_drive.add_folder("Ana", parent="somewhere-else")

        folder = await folders.get_or_create_entity_folder("Ana", root["id"], moved["id"])

        assert folder.id != moved["id"]
        assert folder.parent_id == root["id"]

    @pytest.mark.asyncio
    async def test_trashed_known_id_is_rejected(
        self, folders: RemoteFolderRegistry, fake_drive: FakeDrive
    ) -> None:
        root = fake_drive.add_folder("ATS Pro")
        trashed = fake_drive.add_folder("Ana", parent=root["id"], trashed=True)

        folder = await folders.get_or_create_entity_folder("Ana", root["id"], trashed["id"])

        assert folder.id != trashed["id"]
        assert not fake_drive.files[folder.id]["trashed"]

    @pytest.mark.asyncio
    async def test_duplicates_prefer_known_id(
        self, folders: RemoteFolderRegistry, fake_drive: FakeDrive
    ) -> None:
        """Among same-named folders, the one matching the known id wins."""
        root = fake_drive.add_folder("ATS Pro")
        fake_drive.add_folder("Ana", parent=root["id"])
        second = fake_drive.add_folder("Ana", parent=root["id"])

        matches = await folders._search_folders("Ana", root["id"])
        assert len(matches) == 2

        folder = await folders.get_or_create_entity_folder("Ana", root["id"], second["id"])

        assert folder.id == second["id"]

    @pytest.mark.asyncio
    async def test_duplicates_without_known_id_take_first(
        self, folders: RemoteFolderRegistry, fake_drive: FakeDrive
    ) -> None:
        root = fake_drive.add_folder("ATS Pro")
        first = fake_drive.add_folder("Ana", parent=root["id"])
        fake_drive.add_folder("Ana", parent=root["id"])

        folder = await folders.get_or_create_entity_folder("Ana", root["id"])

        assert folder.id == first["id"]

    @pytest.mark.asyncio
    async def test_transport_error_propagates(
        self, folders: RemoteFolderRegistry, fake_drive: FakeDrive
    ) -> None:
        """Only 'not usable' answers fall through; outages are raised."""
        fake_drive.offline = True

        with pytest.raises(RemoteUnavailable):
            await folders.get_or_create_entity_folder("Ana", "root-id", "known-id")


# -----------------------------------------------------------------------------
# Test resolve_folder, list and delete
# -----------------------------------------------------------------------------


class TestResolveListDelete:
    """Tests for the kind dispatcher and folder listing/removal."""

    @pytest.mark.asyncio
    async def test_resolve_folder_dispatches_on_kind(
        self, folders: RemoteFolderRegistry, fake_drive: FakeDrive
    ) -> None:
        root = await folders.resolve_folder(FolderKind.ROOT, "ATS Pro")
        section = await folders.resolve_folder("section", "Forms", parent_id=root.id)
        entity = await folders.resolve_folder(FolderKind.ENTITY, "Engineering", parent_id=root.id)

        assert section.parent_id == root.id
        assert entity.parent_id == root.id
        assert {f["name"] for f in fake_drive.children(root.id)} == {"Forms", "Engineering"}

    @pytest.mark.asyncio
    async def test_resolve_folder_requires_parent(self, folders: RemoteFolderRegistry) -> None:
        with pytest.raises(ValueError):
            await folders.resolve_folder(FolderKind.ENTITY, "Ana")

    @pytest.mark.asyncio
    async def test_list_folders_excludes_files(
        self, folders: RemoteFolderRegistry, fake_drive: FakeDrive
    ) -> None:
        root = fake_drive.add_folder("ATS Pro")
        fake_drive.add_folder("Letters", parent=root["id"])
        fake_drive.add_file("notes.txt", parent=root["id"])

        listed = await folders.list_folders(root["id"])

        assert [f.name for f in listed] == ["Letters"]

    @pytest.mark.asyncio
    async def test_delete_folder(
        self, folders: RemoteFolderRegistry, fake_drive: FakeDrive
    ) -> None:
        folder = fake_drive.add_folder("Old")

        await folders.delete_folder(folder["id"])

        assert folder["id"] not in fake_drive.files
