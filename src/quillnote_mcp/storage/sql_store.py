"""SQLAlchemy-backed note store."""
import datetime
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from sqlalchemy import delete, distinct, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from quillnote_mcp.exceptions import ErrorCode, PersistenceUnavailableError
from quillnote_mcp.models.db_models import (
    CASEFOLD_FUNCTION,
    DBNote,
    DBNoteShare,
    DBNoteTag,
    get_engine,
    get_session_factory,
)
from quillnote_mcp.models.schema import Note, utc_now
from quillnote_mcp.storage.base import NoteCriteria, NoteStore
from quillnote_mcp.utils import escape_like_pattern

logger = logging.getLogger(__name__)

_SORT_COLUMNS = {
    "updated_at": DBNote.updated_at,
    "created_at": DBNote.created_at,
    "title": DBNote.title,
    "last_accessed": DBNote.last_accessed,
}


def _where(criteria: NoteCriteria, fold=func.lower) -> list:
    """Translate criteria into SQLAlchemy WHERE clauses.

    fold is the SQL function applied to text columns before matching.
    """
    clauses = []
    if criteria.owner_id is not None:
        clauses.append(DBNote.owner_id == criteria.owner_id)
    if criteria.folder is not None:
        clauses.append(DBNote.folder == criteria.folder)
    if criteria.tag is not None:
        clauses.append(DBNote.tags.any(DBNoteTag.name == criteria.tag))
    if criteria.editor_type is not None:
        clauses.append(DBNote.editor_type == criteria.editor_type.value)
    if criteria.is_favorite is not None:
        clauses.append(DBNote.is_favorite == criteria.is_favorite)
    if criteria.is_pinned is not None:
        clauses.append(DBNote.is_pinned == criteria.is_pinned)
    if criteria.is_public is not None:
        clauses.append(DBNote.is_public == criteria.is_public)
    if criteria.has_shares is True:
        clauses.append(DBNote.shares.any())
    elif criteria.has_shares is False:
        clauses.append(~DBNote.shares.any())
    if criteria.text:
        pattern = f"%{escape_like_pattern(criteria.text.casefold())}%"
        alternatives = []
        if "title" in criteria.text_fields:
            alternatives.append(fold(DBNote.title).like(pattern, escape="\\"))
        if "content" in criteria.text_fields:
            alternatives.append(fold(DBNote.content).like(pattern, escape="\\"))
        if "tags" in criteria.text_fields:
            alternatives.append(
                DBNote.tags.any(fold(DBNoteTag.name).like(pattern, escape="\\"))
            )
        if alternatives:
            clauses.append(or_(*alternatives))
    return clauses


def _to_model(db_note: DBNote) -> Note:
    """Convert a database row into a Note."""
    return Note(
        id=db_note.id,
        title=db_note.title,
        content=db_note.content or "",
        tags=[t.name for t in db_note.tags],
        folder=db_note.folder,
        color=db_note.color,
        is_pinned=db_note.is_pinned,
        is_favorite=db_note.is_favorite,
        is_public=db_note.is_public,
        editor_type=db_note.editor_type,
        owner_id=db_note.owner_id,
        shared_with=[s.email for s in db_note.shares],
        last_accessed=db_note.last_accessed,
        created_at=db_note.created_at,
        updated_at=db_note.updated_at,
    )


def _apply(db_note: DBNote, note: Note) -> None:
    """Copy every mutable field of a Note onto a database row."""
    db_note.title = note.title
    db_note.content = note.content
    db_note.folder = note.folder
    db_note.color = note.color
    db_note.is_pinned = note.is_pinned
    db_note.is_favorite = note.is_favorite
    db_note.is_public = note.is_public
    db_note.editor_type = note.editor_type.value
    db_note.last_accessed = note.last_accessed
    db_note.updated_at = note.updated_at
    db_note.tags = [DBNoteTag(position=i, name=name) for i, name in enumerate(note.tags)]
    db_note.shares = [
        DBNoteShare(position=i, email=email) for i, email in enumerate(note.shared_with)
    ]


class SqlNoteStore(NoteStore):
    """Note store on any SQLAlchemy async engine (SQLite via aiosqlite by default).

    Tags and collaborator emails live in child tables so that tag membership
    and "has shares" filters stay plain SQL. Every SQLAlchemy failure is
    surfaced as PersistenceUnavailableError.
    """

    def __init__(self, engine: Optional[AsyncEngine] = None):
        """Initialize the store.

        Args:
            engine: Pre-configured async engine. When None, the process-wide
                    engine from get_engine() is used.
        """
        self.engine = engine or get_engine()
        self.session_factory = get_session_factory(self.engine)
        if self.engine.dialect.name == "sqlite":
            self._fold = getattr(func, CASEFOLD_FUNCTION)
        else:
            self._fold = func.lower

    def _where(self, criteria: NoteCriteria) -> list:
        return _where(criteria, self._fold)

    @asynccontextmanager
    async def _session(self, operation: str, write: bool = False) -> AsyncIterator[AsyncSession]:
        """Open a session, committing writes and wrapping driver errors."""
        try:
            async with self.session_factory() as session:
                if write:
                    async with session.begin():
                        yield session
                else:
                    yield session
        except SQLAlchemyError as e:
            logger.error(f"Store operation '{operation}' failed: {e}")
            raise PersistenceUnavailableError(
                f"Note store unavailable during {operation}",
                operation=operation,
                code=ErrorCode.STORAGE_WRITE_FAILED if write else ErrorCode.STORAGE_UNAVAILABLE,
                original_error=e,
            ) from e

    async def get(self, note_id: str) -> Optional[Note]:
        async with self._session("get") as session:
            db_note = await session.get(DBNote, note_id)
            return _to_model(db_note) if db_note else None

    async def insert(self, note: Note) -> Note:
        async with self._session("insert", write=True) as session:
            db_note = DBNote(
                id=note.id,
                owner_id=note.owner_id,
                created_at=note.created_at,
            )
            _apply(db_note, note)
            session.add(db_note)
        logger.debug(f"Inserted note {note.id} for owner {note.owner_id}")
        return note

    async def replace(self, note: Note) -> Note:
        async with self._session("replace", write=True) as session:
            db_note = await session.get(DBNote, note.id)
            if db_note is None:
                raise PersistenceUnavailableError(
                    f"Note {note.id} vanished before it could be written",
                    operation="replace",
                    code=ErrorCode.STORAGE_WRITE_FAILED,
                )
            _apply(db_note, note)
        return note

    async def delete(self, note_id: str) -> bool:
        async with self._session("delete", write=True) as session:
            db_note = await session.get(DBNote, note_id)
            if db_note is None:
                return False
            await session.delete(db_note)
        return True

    async def find(
        self,
        criteria: NoteCriteria,
        sort_field: str = "updated_at",
        descending: bool = True,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Note]:
        column = _SORT_COLUMNS.get(sort_field, DBNote.updated_at)
        order = (column.desc(), DBNote.id.desc()) if descending else (column.asc(), DBNote.id.asc())
        query = select(DBNote).where(*self._where(criteria)).order_by(*order).offset(skip)
        if limit is not None:
            query = query.limit(limit)
        async with self._session("find") as session:
            result = await session.scalars(query)
            return [_to_model(row) for row in result.all()]

    async def count(self, criteria: NoteCriteria) -> int:
        query = select(func.count()).select_from(DBNote).where(*self._where(criteria))
        async with self._session("count") as session:
            return (await session.scalar(query)) or 0

    async def distinct_folders(self, criteria: NoteCriteria) -> List[str]:
        query = (
            select(distinct(DBNote.folder))
            .where(*self._where(criteria))
            .order_by(DBNote.folder)
        )
        async with self._session("distinct_folders") as session:
            result = await session.scalars(query)
            return list(result.all())

    async def folder_counts(self, criteria: NoteCriteria) -> Dict[str, int]:
        query = (
            select(DBNote.folder, func.count(DBNote.id))
            .where(*self._where(criteria))
            .group_by(DBNote.folder)
        )
        async with self._session("folder_counts") as session:
            result = await session.execute(query)
            return {folder: count for folder, count in result.all()}

    async def distinct_tags(self, criteria: NoteCriteria) -> List[str]:
        query = (
            select(distinct(DBNoteTag.name))
            .join(DBNote, DBNoteTag.note_id == DBNote.id)
            .where(*self._where(criteria))
            .where(DBNoteTag.name != "")
            .order_by(DBNoteTag.name)
        )
        async with self._session("distinct_tags") as session:
            result = await session.scalars(query)
            return list(result.all())

    async def tag_counts(self, criteria: NoteCriteria) -> Dict[str, int]:
        query = (
            select(DBNoteTag.name, func.count(distinct(DBNoteTag.note_id)))
            .join(DBNote, DBNoteTag.note_id == DBNote.id)
            .where(*self._where(criteria))
            .group_by(DBNoteTag.name)
        )
        async with self._session("tag_counts") as session:
            result = await session.execute(query)
            return {name: count for name, count in result.all()}

    async def update_folder_many(self, criteria: NoteCriteria, folder: str) -> int:
        statement = (
            update(DBNote)
            .where(*self._where(criteria))
            .values(folder=folder, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        async with self._session("update_folder_many", write=True) as session:
            result = await session.execute(statement)
            return result.rowcount or 0

    async def delete_many(self, criteria: NoteCriteria) -> int:
        async with self._session("delete_many", write=True) as session:
            ids = list((await session.scalars(select(DBNote.id).where(*self._where(criteria)))).all())
            if not ids:
                return 0
            await session.execute(delete(DBNoteTag).where(DBNoteTag.note_id.in_(ids)))
            await session.execute(delete(DBNoteShare).where(DBNoteShare.note_id.in_(ids)))
            result = await session.execute(
                delete(DBNote)
                .where(DBNote.id.in_(ids))
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

    async def touch(self, note_id: str, when: datetime.datetime) -> None:
        statement = (
            update(DBNote)
            .where(DBNote.id == note_id)
            .values(last_accessed=when)
            .execution_options(synchronize_session=False)
        )
        async with self._session("touch", write=True) as session:
            await session.execute(statement)

    async def exists(self, criteria: NoteCriteria) -> bool:
        query = select(DBNote.id).where(*self._where(criteria)).limit(1)
        async with self._session("exists") as session:
            return (await session.scalar(query)) is not None

    async def close(self) -> None:
        await self.engine.dispose()
