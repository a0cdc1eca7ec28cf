"""Repository for note storage and retrieval with visibility checks."""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Awaitable, Dict, List, Optional, Set, Tuple, TypeVar, Union

from pydantic import ValidationError as PydanticValidationError

from quillnote_mcp.config import config
from quillnote_mcp.exceptions import (
    ErrorCode,
    InvalidIdentifierError,
    NotFoundOrForbiddenError,
    QueryTimeoutError,
    ValidationError,
)
from quillnote_mcp.models.schema import (
    Note,
    NoteCreate,
    NoteFilter,
    NotePage,
    NoteUpdate,
    Pagination,
    Principal,
    is_valid_note_id,
    parse_sort,
    utc_now,
)
from quillnote_mcp.observability import traced
from quillnote_mcp.storage.base import TEXT_FIELDS, NoteCriteria, NoteStore
from quillnote_mcp.visibility import can_read, can_write

logger = logging.getLogger(__name__)

T = TypeVar("T")

Payload = Union[Dict[str, Any], NoteCreate, NoteUpdate]


def _validated(model: type, payload: Any) -> Any:
    """Coerce a dict payload into a pydantic model, translating failures."""
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload or {})
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e


def _build_note(**fields: Any) -> Note:
    try:
        return Note(**fields)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e


class NoteRepository:
    """Note access for a principal, built on a NoteStore.

    Every single-note read or write is checked against the visibility
    policy before data is returned or changed. Listings only ever cover
    the principal's own notes.

    Reads schedule a last_accessed update as a detached task: the read
    never waits for it, and a failed update is logged and dropped.
    """

    def __init__(
        self,
        store: NoteStore,
        list_timeout: Optional[float] = None,
        default_limit: Optional[int] = None,
        max_limit: Optional[int] = None,
    ):
        """Initialize the repository.

        Args:
            store: Persistence driver.
            list_timeout: Seconds allowed for list/search queries.
                          Defaults to config.list_query_timeout.
            default_limit: Page size when none (or a non-positive one) is given.
            max_limit: Hard cap on page size; larger requests are clamped.
        """
        self.store = store
        self.list_timeout = list_timeout or config.list_query_timeout
        self.default_limit = default_limit or config.default_page_size
        self.max_limit = max_limit or config.max_page_size
        self._pending: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def resolve_pagination(self, pagination: Optional[Pagination]) -> Tuple[int, int]:
        """Clamp a pagination request to (limit, skip)."""
        limit = pagination.limit if pagination else None
        skip = pagination.skip if pagination else None
        if limit is None or limit <= 0:
            limit = self.default_limit
        limit = min(limit, self.max_limit)
        skip = max(skip or 0, 0)
        return limit, skip

    async def with_timeout(self, awaitable: Awaitable[T], operation: str) -> T:
        """Await a query, failing with QueryTimeoutError past list_timeout."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.list_timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"{operation} timed out after {self.list_timeout}s")
            raise QueryTimeoutError(operation, self.list_timeout) from e

    async def _load(self, note_id: str) -> Optional[Note]:
        if not is_valid_note_id(note_id):
            raise InvalidIdentifierError(note_id)
        return await self.store.get(note_id)

    def _schedule_touch(self, note_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self._touch(note_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _touch(self, note_id: str) -> None:
        try:
            await self.store.touch(note_id, utc_now())
        except Exception as e:
            logger.warning(f"Failed to update last_accessed for note {note_id}: {e}")

    async def wait_for_pending(self) -> None:
        """Wait for outstanding last_accessed updates to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        """Drain background work and close the store."""
        await self.wait_for_pending()
        await self.store.close()

    @staticmethod
    def owner_criteria(principal: Principal, **filters: Any) -> NoteCriteria:
        """Criteria restricted to the principal's own notes."""
        return NoteCriteria(owner_id=principal.id, **filters)

    async def get_for_write(self, principal: Principal, note_id: str) -> Note:
        """Fetch a note the principal is allowed to modify.

        Raises:
            InvalidIdentifierError: If note_id is malformed.
            NotFoundOrForbiddenError: If absent or not owned by the principal.
        """
        note = await self._load(note_id)
        if note is None or not can_write(principal, note):
            raise NotFoundOrForbiddenError(note_id)
        return note

    # ------------------------------------------------------------------
    # Single-note operations
    # ------------------------------------------------------------------

    @traced("note.get")
    async def get_by_id(self, principal: Principal, note_id: str) -> Note:
        """Fetch a note the principal may read.

        Raises:
            InvalidIdentifierError: If note_id is malformed.
            NotFoundOrForbiddenError: If absent or not readable; the two
                cases are indistinguishable.
        """
        note = await self._load(note_id)
        if note is None or not can_read(principal, note):
            raise NotFoundOrForbiddenError(note_id)
        self._schedule_touch(note.id)
        return note

    @traced("note.create")
    async def create(self, principal: Principal, payload: Payload) -> Note:
        """Create a note owned by the principal.

        Raises:
            ValidationError: If the payload fails field constraints.
        """
        data = _validated(NoteCreate, payload)
        now = utc_now()
        note = _build_note(
            **data.model_dump(),
            owner_id=principal.id,
            created_at=now,
            updated_at=now,
            last_accessed=now,
        )
        await self.store.insert(note)
        logger.info(f"Created note {note.id} in folder '{note.folder}' for {principal.id}")
        return note

    @traced("note.update")
    async def update(self, principal: Principal, note_id: str, payload: Payload) -> Note:
        """Apply a partial update to a note the principal owns.

        Only supplied fields change. An owner_id in the payload is ignored.

        Raises:
            NotFoundOrForbiddenError: If absent or not owned by the principal.
            ValidationError: If a supplied title is blank or any field is invalid.
        """
        note = await self.get_for_write(principal, note_id)
        changes = _validated(NoteUpdate, payload).changes()
        # Explicit nulls only mean something for title (rejected) and folder (reset)
        changes = {
            k: v for k, v in changes.items() if v is not None or k in ("title", "folder")
        }
        if "title" in changes and (changes["title"] is None or not changes["title"].strip()):
            raise ValidationError(
                "Title cannot be empty", field="title", code=ErrorCode.NOTE_TITLE_REQUIRED
            )
        now = utc_now()
        merged = note.model_dump()
        merged.update(changes)
        merged.update(owner_id=note.owner_id, updated_at=now, last_accessed=now)
        updated = _build_note(**merged)
        await self.store.replace(updated)
        logger.info(f"Updated note {note_id} ({', '.join(sorted(changes)) or 'touch'})")
        return updated

    async def save(self, principal: Principal, note: Note) -> Note:
        """Persist a modified copy of a note the principal owns."""
        if not can_write(principal, note):
            raise NotFoundOrForbiddenError(note.id)
        return await self.store.replace(note)

    @traced("note.delete")
    async def delete(self, principal: Principal, note_id: str) -> None:
        """Permanently delete a note the principal owns.

        Raises:
            NotFoundOrForbiddenError: If absent (including already deleted)
                or not owned by the principal.
        """
        await self.get_for_write(principal, note_id)
        if not await self.store.delete(note_id):
            raise NotFoundOrForbiddenError(note_id)
        logger.info(f"Deleted note {note_id}")

    # ------------------------------------------------------------------
    # Listing and aggregation (owner-scoped)
    # ------------------------------------------------------------------

    @traced("note.list")
    async def list_notes(
        self,
        principal: Principal,
        filter: Optional[Union[NoteFilter, Dict[str, Any]]] = None,
        pagination: Optional[Pagination] = None,
        sort: Optional[str] = None,
    ) -> NotePage:
        """List the principal's own notes.

        Args:
            principal: Acting user.
            filter: Field filters and an optional free-text query.
            pagination: limit (default 50, capped at 100) and skip (>= 0).
            sort: One of updated_at, created_at, title, last_accessed,
                  optionally prefixed with "-" for descending. Anything
                  else sorts by -updated_at.

        Raises:
            QueryTimeoutError: If the query exceeds list_timeout.
        """
        note_filter = _validated(NoteFilter, filter) if filter is not None else NoteFilter()
        criteria = self.owner_criteria(
            principal,
            folder=note_filter.folder,
            tag=note_filter.tag,
            editor_type=note_filter.editor_type,
            is_favorite=note_filter.is_favorite,
            is_pinned=note_filter.is_pinned,
            is_public=note_filter.is_public,
            has_shares=note_filter.has_shares,
            text=note_filter.query or None,
            text_fields=TEXT_FIELDS,
        )
        limit, skip = self.resolve_pagination(pagination)
        sort_field, descending = parse_sort(sort)

        async def run() -> Tuple[List[Note], int]:
            items = await self.store.find(
                criteria, sort_field=sort_field, descending=descending, skip=skip, limit=limit
            )
            total = await self.store.count(criteria)
            return items, total

        items, total = await self.with_timeout(run(), "list_notes")
        return NotePage(items=items, total=total, limit=limit, skip=skip)

    async def find_owned(
        self,
        principal: Principal,
        criteria: Optional[NoteCriteria] = None,
        sort_field: str = "updated_at",
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Note]:
        """Query the principal's notes under the list timeout.

        Any owner_id on criteria is replaced by the principal's.
        """
        criteria = replace(criteria or NoteCriteria(), owner_id=principal.id)
        return await self.with_timeout(
            self.store.find(criteria, sort_field=sort_field, descending=descending, limit=limit),
            "find_owned",
        )

    async def count_owned(self, principal: Principal, **filters: Any) -> int:
        return await self.store.count(self.owner_criteria(principal, **filters))

    @traced("note.tags")
    async def search_tags(self, principal: Principal) -> List[str]:
        """Distinct non-empty tags across the principal's notes."""
        return await self.store.distinct_tags(self.owner_criteria(principal))

    async def tag_counts(self, principal: Principal) -> Dict[str, int]:
        """Tag -> number of the principal's notes carrying it."""
        return await self.store.tag_counts(self.owner_criteria(principal))

    async def distinct_folders(self, principal: Principal) -> List[str]:
        return await self.store.distinct_folders(self.owner_criteria(principal))

    async def folder_counts(self, principal: Principal) -> Dict[str, int]:
        return await self.store.folder_counts(self.owner_criteria(principal))

    async def exists_in_folder(self, principal: Principal, folder: str) -> bool:
        return await self.store.exists(self.owner_criteria(principal, folder=folder))

    async def bulk_set_folder(self, principal: Principal, folder: str, new_folder: str) -> int:
        """Move all of the principal's notes in folder to new_folder."""
        return await self.store.update_folder_many(
            self.owner_criteria(principal, folder=folder), new_folder
        )

    async def bulk_delete_in_folder(self, principal: Principal, folder: str) -> int:
        """Delete all of the principal's notes in folder."""
        return await self.store.delete_many(self.owner_criteria(principal, folder=folder))
