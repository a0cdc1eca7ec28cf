"""Service for the derived folder view over a principal's notes."""

import logging
from typing import Dict, List, Optional

from quillnote_mcp.exceptions import ConflictError, ErrorCode, ValidationError
from quillnote_mcp.models.schema import (
    DEFAULT_FOLDER,
    MAX_FOLDER_LENGTH,
    EditorType,
    FolderDeleteResult,
    Note,
    NoteCreate,
    Principal,
)
from quillnote_mcp.observability import traced
from quillnote_mcp.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)


def _require_name(value: Optional[str], field: str = "name") -> str:
    """Trim a folder name, rejecting blank or over-long values."""
    name = value.strip() if isinstance(value, str) else ""
    if not name:
        raise ValidationError(
            "Folder name is required", field=field, code=ErrorCode.FOLDER_NAME_REQUIRED
        )
    if len(name) > MAX_FOLDER_LENGTH:
        raise ValidationError(
            f"Folder name cannot be more than {MAX_FOLDER_LENGTH} characters",
            field=field,
            value=name,
            code=ErrorCode.FOLDER_NAME_INVALID,
        )
    return name


class FolderService:
    """Folder operations for notes.

    There is no folder table: a folder exists while at least one of the
    principal's notes carries its name. Creating a folder therefore means
    creating a placeholder note in it, and renaming or deleting one is a
    bulk update over the notes it contains.

    Bulk operations are not atomic across the whole match set.
    """

    def __init__(self, repository: NoteRepository):
        self.repository = repository

    async def list_folders(self, principal: Principal) -> List[str]:
        """Sorted distinct folder names in use by the principal's notes."""
        return await self.repository.distinct_folders(principal)

    async def folder_counts(self, principal: Principal) -> Dict[str, int]:
        """Folder name -> number of the principal's notes in it."""
        return await self.repository.folder_counts(principal)

    @traced("folder.create")
    async def create_folder(self, principal: Principal, name: str) -> Note:
        """Create a folder by adding a "Getting Started" note to it.

        Raises:
            ValidationError: If the name is blank or too long.
            ConflictError: If the folder already exists.
        """
        name = _require_name(name)
        if await self.repository.exists_in_folder(principal, name):
            raise ConflictError(
                "Folder already exists",
                code=ErrorCode.FOLDER_ALREADY_EXISTS,
                details={"folder": name},
            )
        note = await self.repository.create(
            principal,
            NoteCreate(
                title=f"{name} - Getting Started",
                content=(
                    f'Welcome to your new folder "{name}". '
                    "This is your first note in this folder."
                ),
                folder=name,
                editor_type=EditorType.RICH,
            ),
        )
        logger.info(f"Created folder '{name}' for {principal.id}")
        return note

    @traced("folder.rename")
    async def rename_folder(
        self, principal: Principal, old_name: str, new_name: str
    ) -> int:
        """Move every note in old_name to new_name.

        Returns:
            Number of notes moved (0 when old_name is not in use).

        Raises:
            ValidationError: If a name is blank, new_name is too long, or
                the two names are equal.
            ConflictError: If new_name is already in use. Nothing is moved.
        """
        if not isinstance(old_name, str) or not old_name.strip():
            raise ValidationError(
                "Old and new folder names are required",
                field="old_name",
                code=ErrorCode.FOLDER_NAME_REQUIRED,
            )
        old_name = old_name.strip()
        new_name = _require_name(new_name, field="new_name")
        if old_name == new_name:
            raise ValidationError(
                "New folder name must be different from the old name",
                field="new_name",
                value=new_name,
                code=ErrorCode.FOLDER_NAME_INVALID,
            )
        if await self.repository.exists_in_folder(principal, new_name):
            raise ConflictError(
                "A folder with this name already exists",
                code=ErrorCode.FOLDER_ALREADY_EXISTS,
                details={"folder": new_name},
            )
        modified = await self.repository.bulk_set_folder(principal, old_name, new_name)
        logger.info(f"Renamed folder '{old_name}' -> '{new_name}' ({modified} notes)")
        return modified

    @traced("folder.delete")
    async def delete_folder(
        self, principal: Principal, name: str, delete_notes: bool = False
    ) -> FolderDeleteResult:
        """Delete a folder, either with its notes or by moving them to Default.

        Raises:
            ValidationError: If the name is blank.
        """
        if not isinstance(name, str) or not name.strip():
            raise ValidationError(
                "Folder name is required", field="name", code=ErrorCode.FOLDER_NAME_REQUIRED
            )
        name = name.strip()
        if delete_notes:
            deleted = await self.repository.bulk_delete_in_folder(principal, name)
            logger.info(f"Deleted folder '{name}' and {deleted} notes")
            return FolderDeleteResult(deleted_count=deleted)
        if name == DEFAULT_FOLDER:
            return FolderDeleteResult()
        moved = await self.repository.bulk_set_folder(principal, name, DEFAULT_FOLDER)
        logger.info(f"Deleted folder '{name}', moved {moved} notes to {DEFAULT_FOLDER}")
        return FolderDeleteResult(modified_count=moved)
