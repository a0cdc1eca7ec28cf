"""Fake stores and user lookups for testing.

InMemoryNoteStore evaluates NoteCriteria in Python, so repository and
service behavior can be checked without a database. The variants below
subclass it and override a few methods:

- FailingTouchStore: touch() always raises, reads must still succeed
- SlowStore: get()/find()/count() sleep, to trigger the list timeout
- BrokenStore: get()/find() raise PersistenceUnavailableError
"""
import asyncio
import datetime
from collections import Counter
from typing import Dict, List, Optional, Sequence

from quillnote_mcp.exceptions import PersistenceUnavailableError
from quillnote_mcp.models.schema import Note, User, normalize_email
from quillnote_mcp.storage.base import NoteCriteria, NoteStore


class InMemoryNoteStore(NoteStore):
    """Dict-backed NoteStore."""

    def __init__(self) -> None:
        self.notes: Dict[str, Note] = {}
        self.touch_count = 0

    async def get(self, note_id: str) -> Optional[Note]:
        return self.notes.get(note_id)

    async def insert(self, note: Note) -> Note:
        self.notes[note.id] = note
        return note

    async def replace(self, note: Note) -> Note:
        if note.id not in self.notes:
            raise PersistenceUnavailableError("missing", operation="replace")
        self.notes[note.id] = note
        return note

    async def delete(self, note_id: str) -> bool:
        return self.notes.pop(note_id, None) is not None

    def _matching(self, criteria: NoteCriteria) -> List[Note]:
        return [n for n in self.notes.values() if criteria.matches(n)]

    async def find(
        self,
        criteria: NoteCriteria,
        sort_field: str = "updated_at",
        descending: bool = True,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Note]:
        notes = sorted(
            self._matching(criteria),
            key=lambda n: (getattr(n, sort_field), n.id),
            reverse=descending,
        )
        end = None if limit is None else skip + limit
        return notes[skip:end]

    async def count(self, criteria: NoteCriteria) -> int:
        return len(self._matching(criteria))

    async def distinct_folders(self, criteria: NoteCriteria) -> List[str]:
        return sorted({n.folder for n in self._matching(criteria)})

    async def folder_counts(self, criteria: NoteCriteria) -> Dict[str, int]:
        return dict(Counter(n.folder for n in self._matching(criteria)))

    async def distinct_tags(self, criteria: NoteCriteria) -> List[str]:
        return sorted({t for n in self._matching(criteria) for t in n.tags if t})

    async def tag_counts(self, criteria: NoteCriteria) -> Dict[str, int]:
        return dict(Counter(t for n in self._matching(criteria) for t in set(n.tags)))

    async def update_folder_many(self, criteria: NoteCriteria, folder: str) -> int:
        matched = self._matching(criteria)
        for note in matched:
            self.notes[note.id] = note.model_copy(update={"folder": folder})
        return len(matched)

    async def delete_many(self, criteria: NoteCriteria) -> int:
        matched = self._matching(criteria)
        for note in matched:
            del self.notes[note.id]
        return len(matched)

    async def touch(self, note_id: str, when: datetime.datetime) -> None:
        self.touch_count += 1
        if note_id in self.notes:
            self.notes[note_id] = self.notes[note_id].model_copy(
                update={"last_accessed": when}
            )


class FailingTouchStore(InMemoryNoteStore):
    """Store whose last_accessed update always fails."""

    async def touch(self, note_id: str, when: datetime.datetime) -> None:
        self.touch_count += 1
        raise PersistenceUnavailableError("touch failed", operation="touch")


class SlowStore(InMemoryNoteStore):
    """Store whose reads take `delay` seconds."""

    def __init__(self, delay: float = 0.5) -> None:
        super().__init__()
        self.delay = delay

    async def get(self, note_id: str) -> Optional[Note]:
        await asyncio.sleep(self.delay)
        return await super().get(note_id)

    async def find(self, criteria: NoteCriteria, *args, **kwargs) -> List[Note]:
        await asyncio.sleep(self.delay)
        return await super().find(criteria, *args, **kwargs)

    async def count(self, criteria: NoteCriteria) -> int:
        await asyncio.sleep(self.delay)
        return await super().count(criteria)


class BrokenStore(InMemoryNoteStore):
    """Store that is unreachable for reads."""

    async def get(self, note_id: str) -> Optional[Note]:
        raise PersistenceUnavailableError("store down", operation="get")

    async def find(self, criteria: NoteCriteria, *args, **kwargs) -> List[Note]:
        raise PersistenceUnavailableError("store down", operation="find")


class FakeUserLookup:
    """UserLookup over a fixed set of registered emails."""

    def __init__(self, emails: Sequence[str] = ()) -> None:
        self.users = {
            normalize_email(e): User(id=f"user-{i}", email=e) for i, e in enumerate(emails)
        }
        self.calls: List[List[str]] = []

    async def find_by_emails(self, emails: Sequence[str]) -> List[User]:
        self.calls.append(list(emails))
        found = []
        for email in emails:
            user = self.users.get(email.lower())
            if user and user not in found:
                found.append(user)
        return found
