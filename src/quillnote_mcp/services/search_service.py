"""Service for free-text search over a principal's notes."""

import logging
from typing import List, Optional

from quillnote_mcp.models.schema import Principal, SearchHit
from quillnote_mcp.observability import traced
from quillnote_mcp.storage.base import TEXT_FIELDS, NoteCriteria
from quillnote_mcp.storage.note_repository import NoteRepository
from quillnote_mcp.utils import make_snippet

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("all", "title", "content", "tags")
DEFAULT_SEARCH_LIMIT = 10
MAX_SEARCH_LIMIT = 100


class SearchService:
    """Service for searching notes by title, content or tags."""

    def __init__(self, repository: NoteRepository):
        """Initialize the search service.

        Args:
            repository: Note repository used for owner-scoped queries.
        """
        self.repository = repository

    @traced("note.search")
    async def search(
        self,
        principal: Principal,
        query: str,
        field: str = "all",
        folder: Optional[str] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> List[SearchHit]:
        """Search the principal's notes, newest first.

        Args:
            principal: Acting user.
            query: Case-insensitive literal substring.
            field: One of all, title, content, tags. Unknown values mean all.
            folder: Restrict to one folder.
            limit: Maximum hits, clamped to 1..100.

        Returns:
            Hits with a plain-text snippet around the first match in content.

        Raises:
            QueryTimeoutError: If the query exceeds the list timeout.
        """
        query = (query or "").strip()
        if not query:
            return []
        if field not in SEARCH_FIELDS:
            field = "all"
        limit = min(max(1, limit or DEFAULT_SEARCH_LIMIT), MAX_SEARCH_LIMIT)

        criteria = NoteCriteria(
            folder=folder or None,
            text=query,
            text_fields=TEXT_FIELDS if field == "all" else (field,),
        )
        notes = await self.repository.find_owned(
            principal, criteria, sort_field="updated_at", descending=True, limit=limit
        )
        logger.debug(f"Search '{query}' ({field}) matched {len(notes)} notes")
        return [SearchHit(note=note, snippet=make_snippet(note.content, query)) for note in notes]
