"""Tests for the derived folder view."""
import pytest

from quillnote_mcp.exceptions import ConflictError, ErrorCode, ValidationError
from quillnote_mcp.models.schema import DEFAULT_FOLDER, EditorType, FolderDeleteResult
from quillnote_mcp.services.folder_service import FolderService
from quillnote_mcp.storage.note_repository import NoteRepository
from tests.fakes import InMemoryNoteStore

pytestmark = pytest.mark.anyio


async def fill(repo, principal, folder, count):
    for i in range(count):
        await repo.create(principal, {"title": f"{folder} {i}", "folder": folder})


class TestListing:
    async def test_list_and_count(self, folder_service, note_repository, owner, other):
        await fill(note_repository, owner, "Work", 2)
        await fill(note_repository, owner, "Home", 1)
        await fill(note_repository, other, "Secret", 1)

        assert await folder_service.list_folders(owner) == ["Home", "Work"]
        assert await folder_service.folder_counts(owner) == {"Work": 2, "Home": 1}

    async def test_empty(self, folder_service, owner):
        assert await folder_service.list_folders(owner) == []
        assert await folder_service.folder_counts(owner) == {}


class TestCreateFolder:
    async def test_creates_placeholder_note(self, folder_service, owner):
        note = await folder_service.create_folder(owner, "Recipes")

        assert note.folder == "Recipes"
        assert note.title == "Recipes - Getting Started"
        assert note.content == (
            'Welcome to your new folder "Recipes". This is your first note in this folder.'
        )
        assert note.editor_type == EditorType.RICH
        assert note.owner_id == owner.id
        assert await folder_service.list_folders(owner) == ["Recipes"]

    async def test_longest_name_keeps_full_title(self, folder_service, owner):
        name = "f" * 30
        note = await folder_service.create_folder(owner, name)
        assert note.title == f"{name} - Getting Started"

    async def test_existing_folder_conflicts(self, folder_service, owner):
        await folder_service.create_folder(owner, "Recipes")
        with pytest.raises(ConflictError) as exc_info:
            await folder_service.create_folder(owner, "Recipes")
        assert exc_info.value.code == ErrorCode.FOLDER_ALREADY_EXISTS

    async def test_same_name_for_other_user_is_fine(self, folder_service, owner, other):
        await folder_service.create_folder(owner, "Recipes")
        note = await folder_service.create_folder(other, "Recipes")
        assert note.owner_id == other.id

    @pytest.mark.parametrize("name", ["", "   ", None])
    async def test_blank_name(self, folder_service, owner, name):
        with pytest.raises(ValidationError) as exc_info:
            await folder_service.create_folder(owner, name)
        assert exc_info.value.code == ErrorCode.FOLDER_NAME_REQUIRED

    async def test_long_name(self, folder_service, owner):
        with pytest.raises(ValidationError) as exc_info:
            await folder_service.create_folder(owner, "f" * 31)
        assert exc_info.value.code == ErrorCode.FOLDER_NAME_INVALID


class TestRenameFolder:
    async def test_rename_moves_all_notes(self, folder_service, note_repository, owner, other):
        await fill(note_repository, owner, "Old", 3)
        await fill(note_repository, other, "Old", 2)

        modified = await folder_service.rename_folder(owner, "Old", "New")

        assert modified == 3
        assert await folder_service.folder_counts(owner) == {"New": 3}
        assert await folder_service.folder_counts(other) == {"Old": 2}

    async def test_rename_missing_folder(self, folder_service, owner):
        assert await folder_service.rename_folder(owner, "Nope", "Other") == 0

    async def test_rename_conflict_touches_nothing(self, folder_service, note_repository, owner):
        await fill(note_repository, owner, "A", 2)
        await fill(note_repository, owner, "B", 1)

        with pytest.raises(ConflictError):
            await folder_service.rename_folder(owner, "A", "B")
        assert await folder_service.folder_counts(owner) == {"A": 2, "B": 1}

    @pytest.mark.parametrize(
        "old, new",
        [("", "New"), ("Old", ""), ("Old", "   "), ("Same", "Same"), ("Old", "n" * 31)],
    )
    async def test_rename_invalid(self, folder_service, owner, old, new):
        with pytest.raises(ValidationError):
            await folder_service.rename_folder(owner, old, new)


class TestDeleteFolder:
    async def test_delete_moves_notes_to_default(self, folder_service, note_repository, owner):
        await fill(note_repository, owner, "Trash", 2)

        result = await folder_service.delete_folder(owner, "Trash")

        assert result == FolderDeleteResult(deleted_count=0, modified_count=2)
        assert await folder_service.folder_counts(owner) == {DEFAULT_FOLDER: 2}

    async def test_delete_with_notes(self, folder_service, note_repository, owner, other):
        await fill(note_repository, owner, "Trash", 2)
        await fill(note_repository, other, "Trash", 1)

        result = await folder_service.delete_folder(owner, "Trash", delete_notes=True)

        assert result == FolderDeleteResult(deleted_count=2, modified_count=0)
        assert await folder_service.list_folders(owner) == []
        assert await folder_service.folder_counts(other) == {"Trash": 1}

    async def test_delete_default_without_notes_is_noop(
        self, folder_service, note_repository, owner
    ):
        await fill(note_repository, owner, DEFAULT_FOLDER, 2)
        result = await folder_service.delete_folder(owner, DEFAULT_FOLDER)
        assert result == FolderDeleteResult()
        assert await folder_service.folder_counts(owner) == {DEFAULT_FOLDER: 2}

    async def test_delete_blank_name(self, folder_service, owner):
        with pytest.raises(ValidationError):
            await folder_service.delete_folder(owner, "  ")


async def test_folder_service_is_store_agnostic(owner):
    repo = NoteRepository(InMemoryNoteStore())
    service = FolderService(repo)
    await service.create_folder(owner, "Ideas")
    assert await service.rename_folder(owner, "Ideas", "Plans") == 1
    assert await service.list_folders(owner) == ["Plans"]
