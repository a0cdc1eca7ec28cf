"""Storage layer for the Quillnote MCP server."""

from quillnote_mcp.storage.base import NoteCriteria, NoteStore, UserLookup
from quillnote_mcp.storage.note_repository import NoteRepository
from quillnote_mcp.storage.sql_store import SqlNoteStore
from quillnote_mcp.storage.user_repository import UserRepository

__all__ = [
    "NoteCriteria",
    "NoteStore",
    "UserLookup",
    "NoteRepository",
    "SqlNoteStore",
    "UserRepository",
]
