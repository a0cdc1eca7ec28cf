"""Persistence interface consumed by the note repository."""
import datetime
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from quillnote_mcp.models.schema import EditorType, Note, User

# Text fields a free-text query can match against
TEXT_FIELDS: Tuple[str, ...] = ("title", "content", "tags")


@dataclass(frozen=True)
class NoteCriteria:
    """Predicate over notes; every field that is set must match.

    Attributes:
        owner_id: Exact owner match.
        folder: Exact folder match.
        tag: Note carries this tag.
        editor_type: Exact editor type match.
        is_favorite / is_pinned / is_public: Exact flag match.
        has_shares: True for a non-empty shared_with, False for an empty one.
        text: Case-insensitive literal substring, matched against any of text_fields.
        text_fields: Subset of TEXT_FIELDS searched by text.
    """

    owner_id: Optional[str] = None
    folder: Optional[str] = None
    tag: Optional[str] = None
    editor_type: Optional[EditorType] = None
    is_favorite: Optional[bool] = None
    is_pinned: Optional[bool] = None
    is_public: Optional[bool] = None
    has_shares: Optional[bool] = None
    text: Optional[str] = None
    text_fields: Tuple[str, ...] = TEXT_FIELDS

    def matches(self, note: Note) -> bool:
        """Evaluate the predicate against a note in memory."""
        if self.owner_id is not None and note.owner_id != self.owner_id:
            return False
        if self.folder is not None and note.folder != self.folder:
            return False
        if self.tag is not None and self.tag not in note.tags:
            return False
        if self.editor_type is not None and note.editor_type != self.editor_type:
            return False
        for flag in ("is_favorite", "is_pinned", "is_public"):
            wanted = getattr(self, flag)
            if wanted is not None and getattr(note, flag) != wanted:
                return False
        if self.has_shares is not None and bool(note.shared_with) != self.has_shares:
            return False
        if self.text:
            needle = self.text.casefold()
            haystacks: List[str] = []
            if "title" in self.text_fields:
                haystacks.append(note.title)
            if "content" in self.text_fields:
                haystacks.append(note.content)
            if "tags" in self.text_fields:
                haystacks.extend(note.tags)
            if not any(needle in h.casefold() for h in haystacks):
                return False
        return True


class NoteStore(ABC):
    """Async document store for notes.

    Implementations own connection handling and must be safe for use by
    overlapping requests. Bulk operations are not required to be atomic
    across the whole match set.
    """

    @abstractmethod
    async def get(self, note_id: str) -> Optional[Note]:
        """Fetch a note by ID, or None."""

    @abstractmethod
    async def insert(self, note: Note) -> Note:
        """Persist a new note."""

    @abstractmethod
    async def replace(self, note: Note) -> Note:
        """Overwrite every stored field of an existing note."""

    @abstractmethod
    async def delete(self, note_id: str) -> bool:
        """Delete a note. Returns False if it did not exist."""

    @abstractmethod
    async def find(
        self,
        criteria: NoteCriteria,
        sort_field: str = "updated_at",
        descending: bool = True,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Note]:
        """Find matching notes in sort order."""

    @abstractmethod
    async def count(self, criteria: NoteCriteria) -> int:
        """Count matching notes."""

    @abstractmethod
    async def distinct_folders(self, criteria: NoteCriteria) -> List[str]:
        """Distinct folder values among matching notes, sorted."""

    @abstractmethod
    async def folder_counts(self, criteria: NoteCriteria) -> Dict[str, int]:
        """Folder -> number of matching notes."""

    @abstractmethod
    async def distinct_tags(self, criteria: NoteCriteria) -> List[str]:
        """Distinct non-empty tags among matching notes, sorted."""

    @abstractmethod
    async def tag_counts(self, criteria: NoteCriteria) -> Dict[str, int]:
        """Tag -> number of matching notes carrying it."""

    @abstractmethod
    async def update_folder_many(self, criteria: NoteCriteria, folder: str) -> int:
        """Move every matching note to folder. Returns the modified count."""

    @abstractmethod
    async def delete_many(self, criteria: NoteCriteria) -> int:
        """Delete every matching note. Returns the deleted count."""

    @abstractmethod
    async def touch(self, note_id: str, when: datetime.datetime) -> None:
        """Set last_accessed on a note without changing anything else."""

    async def exists(self, criteria: NoteCriteria) -> bool:
        """Whether at least one note matches."""
        return bool(await self.find(criteria, limit=1))

    async def close(self) -> None:
        """Release resources held by the store."""


@runtime_checkable
class UserLookup(Protocol):
    """Resolves collaborator emails to registered users."""

    async def find_by_emails(self, emails: Sequence[str]) -> List[User]:
        ...
