"""SQLAlchemy database models for the Quillnote MCP server."""
import datetime
from typing import Optional

from sqlalchemy import (Boolean, Column, DateTime, ForeignKey, Integer, String,
                        Text, event)
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base, relationship

from quillnote_mcp.config import config
from quillnote_mcp.models.schema import DEFAULT_COLOR, DEFAULT_FOLDER, EditorType


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


# SQL function registered on SQLite connections; SQLite's own lower() only
# folds ASCII letters
CASEFOLD_FUNCTION = "casefold"


def _casefold(value):
    return value.casefold() if isinstance(value, str) else value


# Create base class for SQLAlchemy models
Base = declarative_base()


class DBNote(Base):
    """Database model for a note.

    Folders have no table of their own: a folder exists while at least
    one row carries its name in the folder column.
    """
    __tablename__ = "notes"
    id = Column(String(24), primary_key=True)
    owner_id = Column(String(255), nullable=False, index=True)
    title = Column(String(100), nullable=False)
    content = Column(Text, nullable=False, default="")
    folder = Column(String(30), nullable=False, default=DEFAULT_FOLDER, index=True)
    color = Column(String(20), nullable=False, default=DEFAULT_COLOR)
    is_pinned = Column(Boolean, nullable=False, default=False)
    is_favorite = Column(Boolean, nullable=False, default=False)
    is_public = Column(Boolean, nullable=False, default=False, index=True)
    editor_type = Column(String(20), nullable=False, default=EditorType.RICH.value)
    last_accessed = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    # Relationships (eager "selectin" loading; lazy loads are unavailable under asyncio)
    tags = relationship(
        "DBNoteTag",
        back_populates="note",
        cascade="all, delete-orphan",
        order_by="DBNoteTag.position",
        lazy="selectin",
    )
    shares = relationship(
        "DBNoteShare",
        back_populates="note",
        cascade="all, delete-orphan",
        order_by="DBNoteShare.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id='{self.id}', title='{self.title}', owner='{self.owner_id}')>"


class DBNoteTag(Base):
    """A tag on a note; position keeps the note's tag order."""
    __tablename__ = "note_tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(
        String(24), ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False, default=0)
    name = Column(String(20), nullable=False, index=True)

    note = relationship("DBNote", back_populates="tags")

    def __repr__(self) -> str:
        return f"<NoteTag(note='{self.note_id}', name='{self.name}')>"


class DBNoteShare(Base):
    """A collaborator email with read access to a note."""
    __tablename__ = "note_shares"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(
        String(24), ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False, default=0)
    email = Column(String(255), nullable=False, index=True)

    note = relationship("DBNote", back_populates="shares")

    def __repr__(self) -> str:
        return f"<NoteShare(note='{self.note_id}', email='{self.email}')>"


class DBUser(Base):
    """Database model for a user, carrying an optimistic concurrency counter."""
    __tablename__ = "users"
    id = Column(String(255), primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    version = Column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return f"<User(id='{self.id}', email='{self.email}', version={self.version})>"


def create_db_engine(url: Optional[str] = None) -> AsyncEngine:
    """Create an async engine with SQLite hardening applied.

    Applies SQLite best practices when the URL points at SQLite:
    - WAL (Write-Ahead Logging) mode so readers don't block the writer
    - NORMAL synchronous mode (good balance of safety vs speed)
    - foreign_keys enforcement so tag/share rows follow their note
    - a Unicode-aware casefold() SQL function for case-insensitive matching

    Args:
        url: SQLAlchemy async URL. Defaults to config.get_db_url().
    """
    url = url or config.get_db_url()
    kwargs = {"pool_pre_ping": True}
    if ":memory:" not in url:
        kwargs["pool_size"] = config.pool_size
        kwargs["max_overflow"] = config.pool_size * 2
    engine = create_async_engine(url, **kwargs)

    if url.startswith("sqlite"):
        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            if ":memory:" not in url:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
            dbapi_connection.create_function(CASEFOLD_FUNCTION, 1, _casefold)

    return engine


# Process-wide engine, created on first use and shared by all repositories
_engine: Optional[AsyncEngine] = None


def get_engine() -> AsyncEngine:
    """Return the shared engine, creating it lazily on first call."""
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


async def dispose_engine() -> None:
    """Close the shared engine's pooled connections and forget it."""
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None


async def init_db(engine: Optional[AsyncEngine] = None) -> AsyncEngine:
    """Create all tables that don't exist yet.

    Returns:
        The engine the schema was created on.
    """
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


def get_session_factory(engine: Optional[AsyncEngine] = None) -> async_sessionmaker:
    """Get an async session factory for the database."""
    return async_sessionmaker(engine or get_engine(), expire_on_commit=False)
