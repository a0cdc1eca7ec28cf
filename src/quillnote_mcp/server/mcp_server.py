"""MCP server implementation for Quillnote."""

import json
import logging
import uuid
from typing import List, Optional

from mcp.server.fastmcp import FastMCP
from sqlalchemy.ext.asyncio import AsyncEngine

from quillnote_mcp.config import config
from quillnote_mcp.exceptions import QuillnoteError
from quillnote_mcp.models.schema import (
    EditorType,
    Note,
    NoteFilter,
    Pagination,
    Principal,
    ShareRequest,
)
from quillnote_mcp.observability import metrics, timed_operation
from quillnote_mcp.services.folder_service import FolderService
from quillnote_mcp.services.search_service import SearchService
from quillnote_mcp.services.sharing_service import SharingService
from quillnote_mcp.storage.note_repository import NoteRepository
from quillnote_mcp.storage.sql_store import SqlNoteStore
from quillnote_mcp.storage.user_repository import UserRepository
from quillnote_mcp.visibility import classify

logger = logging.getLogger(__name__)


def _split_csv(value: Optional[str]) -> Optional[List[str]]:
    """Turn "a, b,,c" into ["a", "b", "c"]; None stays None."""
    if value is None:
        return None
    return [part.strip() for part in value.split(",") if part.strip()]


def _format_summary(note: Note, index: Optional[int] = None) -> str:
    prefix = f"{index}. " if index is not None else "* "
    output = f"{prefix}{note.title} (ID: {note.id})\n"
    flags = [classify(note).value]
    if note.is_pinned:
        flags.append("pinned")
    if note.is_favorite:
        flags.append("favorite")
    output += f"   Folder: {note.folder} | {', '.join(flags)}\n"
    output += f"   Updated: {note.updated_at.strftime('%Y-%m-%d %H:%M')}\n"
    if note.tags:
        output += f"   Tags: {', '.join(note.tags)}\n"
    return output


class QuillnoteMcpServer:
    """MCP server for Quillnote.

    All tools act on behalf of a single principal fixed for the lifetime
    of the server process.
    """

    def __init__(
        self,
        principal: Optional[Principal] = None,
        engine: Optional[AsyncEngine] = None,
    ):
        """Initialize the MCP server.

        Args:
            principal: Acting user. Defaults to the one configured through
                       QUILLNOTE_USER_ID / QUILLNOTE_USER_EMAIL.
            engine: Pre-configured async engine shared by every repository.
                    When None, the process-wide engine is used.
        """
        self.principal = principal or config.get_principal()
        self.mcp = FastMCP(config.server_name)

        self.store = SqlNoteStore(engine=engine)
        self.repository = NoteRepository(self.store)
        self.user_repository = UserRepository(engine=engine)
        self.folder_service = FolderService(self.repository)
        self.sharing_service = SharingService(self.repository, self.user_repository)
        self.search_service = SearchService(self.repository)

        self._register_tools()
        logger.info(f"Quillnote MCP server initialized for {self.principal.id}")

    async def shutdown(self) -> None:
        """Drain background work, persist metrics and close the store."""
        await self.repository.aclose()
        metrics.save_metrics()

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Args:
            error: The exception that occurred

        Returns:
            The domain message for QuillnoteError; otherwise a generic
            message with a reference id that can be found in the logs.
        """
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, QuillnoteError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            logger.error(f"Validation error [{error_id}]: {str(error)}")
            return f"Error: Invalid input (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _register_tools(self) -> None:
        """Register MCP tools."""

        @self.mcp.tool(name="qn_create_note")
        async def qn_create_note(
            title: str,
            content: str = "",
            folder: str = "Default",
            tags: Optional[str] = None,
            color: str = "#ffffff",
            editor_type: str = "rich",
            is_pinned: bool = False,
            is_favorite: bool = False,
        ) -> str:
            """Create a new note.
            Args:
                title: Title of the note (max 100 characters)
                content: Body of the note, in the format given by editor_type
                folder: Folder to place the note in (max 30 characters)
                tags: Comma-separated list of tags (optional)
                color: Hex code (#abc or #aabbcc) or palette name
                editor_type: One of rich, markdown, simple
                is_pinned: Pin the note
                is_favorite: Mark the note as a favorite
            """
            with timed_operation("qn_create_note", title=title[:30]) as op:
                try:
                    note = await self.repository.create(
                        self.principal,
                        {
                            "title": title,
                            "content": content,
                            "folder": folder,
                            "tags": _split_csv(tags) or [],
                            "color": color,
                            "editor_type": editor_type,
                            "is_pinned": is_pinned,
                            "is_favorite": is_favorite,
                        },
                    )
                    op["note_id"] = note.id
                    return f"Note created successfully with ID: {note.id} (folder: {note.folder})"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="qn_get_note")
        async def qn_get_note(note_id: str) -> str:
            """Retrieve a note by ID.

            Works for your own notes, public notes, and notes shared with you.
            Args:
                note_id: The 24-character ID of the note
            """
            with timed_operation("qn_get_note", note_id=note_id) as op:
                try:
                    note = await self.repository.get_by_id(self.principal, note_id)
                    op["found"] = True
                    result = f"# {note.title}\n"
                    result += f"ID: {note.id}\n"
                    result += f"Folder: {note.folder}\n"
                    result += f"Visibility: {classify(note).value}\n"
                    result += f"Editor: {note.editor_type.value}\n"
                    result += f"Color: {note.color}\n"
                    if note.owner_id != self.principal.id:
                        result += f"Owner: {note.owner_id}\n"
                    if note.shared_with:
                        result += f"Shared with: {', '.join(note.shared_with)}\n"
                    result += f"Created: {note.created_at.isoformat()}\n"
                    result += f"Updated: {note.updated_at.isoformat()}\n"
                    if note.tags:
                        result += f"Tags: {', '.join(note.tags)}\n"
                    result += f"\n{note.content}\n"
                    return result
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="qn_update_note")
        async def qn_update_note(
            note_id: str,
            title: Optional[str] = None,
            content: Optional[str] = None,
            folder: Optional[str] = None,
            tags: Optional[str] = None,
            color: Optional[str] = None,
            editor_type: Optional[str] = None,
            is_pinned: Optional[bool] = None,
            is_favorite: Optional[bool] = None,
        ) -> str:
            """Update fields of a note you own. Omitted fields are left unchanged.
            Args:
                note_id: The ID of the note to update
                title: New title (optional)
                content: New content (optional)
                folder: Move to this folder (optional)
                tags: Comma-separated list replacing all tags (optional, "" clears)
                color: New color (optional)
                editor_type: New editor type (optional)
                is_pinned: Pin or unpin (optional)
                is_favorite: Favorite or unfavorite (optional)
            """
            with timed_operation("qn_update_note", note_id=note_id) as op:
                try:
                    payload = {
                        "title": title,
                        "content": content,
                        "folder": folder,
                        "tags": _split_csv(tags),
                        "color": color,
                        "editor_type": editor_type,
                        "is_pinned": is_pinned,
                        "is_favorite": is_favorite,
                    }
                    payload = {k: v for k, v in payload.items() if v is not None}
                    note = await self.repository.update(self.principal, note_id, payload)
                    op["fields"] = ",".join(sorted(payload))
                    return f"Note updated successfully: {note.id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="qn_delete_note")
        async def qn_delete_note(note_id: str) -> str:
            """Permanently delete a note you own.
            Args:
                note_id: The ID of the note to delete
            """
            with timed_operation("qn_delete_note", note_id=note_id):
                try:
                    await self.repository.delete(self.principal, note_id)
                    return f"Note deleted successfully: {note_id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="qn_list_notes")
        async def qn_list_notes(
            folder: Optional[str] = None,
            tag: Optional[str] = None,
            editor_type: Optional[str] = None,
            is_favorite: Optional[bool] = None,
            is_pinned: Optional[bool] = None,
            is_public: Optional[bool] = None,
            has_shares: Optional[bool] = None,
            query: Optional[str] = None,
            sort: str = "-updated_at",
            limit: int = 50,
            skip: int = 0,
        ) -> str:
            """List your notes with filtering, sorting and pagination.

            Args:
                folder: Only notes in this folder
                tag: Only notes carrying this tag
                editor_type: Only notes of this editor type (rich, markdown, simple)
                is_favorite: Filter on the favorite flag
                is_pinned: Filter on the pinned flag
                is_public: Filter on the public flag
                has_shares: True for notes shared with someone, False for unshared
                query: Case-insensitive text matched against title, content and tags
                sort: updated_at, created_at, title or last_accessed; prefix "-" for descending
                limit: Page size (max 100)
                skip: Number of notes to skip
            """
            with timed_operation("qn_list_notes", sort=sort) as op:
                try:
                    editor_type_enum = None
                    if editor_type:
                        try:
                            editor_type_enum = EditorType(editor_type.lower())
                        except ValueError:
                            return f"Invalid editor type: {editor_type}. Valid types are: {', '.join(t.value for t in EditorType)}"

                    note_filter = NoteFilter(
                        folder=folder,
                        tag=tag,
                        editor_type=editor_type_enum,
                        is_favorite=is_favorite,
                        is_pinned=is_pinned,
                        is_public=is_public,
                        has_shares=has_shares,
                        query=query,
                    )
                    page = await self.repository.list_notes(
                        self.principal,
                        note_filter,
                        Pagination(limit=limit, skip=skip),
                        sort,
                    )
                    op["result_count"] = len(page.items)

                    if page.total == 0:
                        return "No notes found."
                    if not page.items:
                        return f"No notes found at skip {page.skip}. Total notes: {page.total}"

                    output = (
                        f"Notes ({page.skip + 1}-{page.skip + len(page.items)} "
                        f"of {page.total}):\n\n"
                    )
                    for i, note in enumerate(page.items, page.skip + 1):
                        output += _format_summary(note, i) + "\n"
                    if page.has_more:
                        output += f"\n(Use skip={page.skip + page.limit} to see more notes)"
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="qn_list_tags")
        async def qn_list_tags(include_counts: bool = True) -> str:
            """List the distinct tags used by your notes.
            Args:
                include_counts: Include the number of notes carrying each tag
            """
            with timed_operation("qn_list_tags") as op:
                try:
                    tags = await self.repository.search_tags(self.principal)
                    op["count"] = len(tags)
                    if not tags:
                        return "No tags found."
                    counts = (
                        await self.repository.tag_counts(self.principal)
                        if include_counts
                        else {}
                    )
                    output = f"Tags ({len(tags)}):\n"
                    for tag in tags:
                        suffix = f" ({counts.get(tag, 0)} notes)" if include_counts else ""
                        output += f"* {tag}{suffix}\n"
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="qn_list_folders")
        async def qn_list_folders() -> str:
            """List the folders your notes are in."""
            with timed_operation("qn_list_folders") as op:
                try:
                    folders = await self.folder_service.list_folders(self.principal)
                    op["count"] = len(folders)
                    if not folders:
                        return "No folders yet."
                    return f"Folders ({len(folders)}):\n" + "".join(f"* {f}\n" for f in folders)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="qn_folder_counts")
        async def qn_folder_counts() -> str:
            """Show how many of your notes are in each folder."""
            with timed_operation("qn_folder_counts"):
                try:
                    counts = await self.folder_service.folder_counts(self.principal)
                    if not counts:
                        return "No folders yet."
                    output = "Notes per folder:\n"
                    for name in sorted(counts):
                        output += f"* {name}: {counts[name]}\n"
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="qn_create_folder")
        async def qn_create_folder(name: str) -> str:
            """Create a folder. A "Getting Started" note is added to it.
            Args:
                name: Folder name (max 30 characters)
            """
            with timed_operation("qn_create_folder", name=name) as op:
                try:
                    note = await self.folder_service.create_folder(self.principal, name)
                    op["note_id"] = note.id
                    return f"Folder '{note.folder}' created with note {note.id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="qn_rename_folder")
        async def qn_rename_folder(old_name: str, new_name: str) -> str:
            """Rename a folder by moving all of its notes.
            Args:
                old_name: Current folder name
                new_name: New folder name (must not already be in use)
            """
            with timed_operation("qn_rename_folder", old=old_name, new=new_name) as op:
                try:
                    modified = await self.folder_service.rename_folder(
                        self.principal, old_name, new_name
                    )
                    op["modified"] = modified
                    return f"Folder renamed: '{old_name}' -> '{new_name}' ({modified} notes moved)"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="qn_delete_folder")
        async def qn_delete_folder(name: str, delete_notes: bool = False) -> str:
            """Delete a folder.
            Args:
                name: Folder to delete
                delete_notes: True to delete its notes, False to move them to Default
            """
            with timed_operation("qn_delete_folder", name=name):
                try:
                    result = await self.folder_service.delete_folder(
                        self.principal, name, delete_notes=delete_notes
                    )
                    if delete_notes:
                        return f"Folder '{name}' deleted with {result.deleted_count} notes"
                    return (
                        f"Folder '{name}' deleted; {result.modified_count} notes "
                        "moved to Default"
                    )
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="qn_share_note")
        async def qn_share_note(
            note_id: str,
            is_public: Optional[bool] = None,
            emails: Optional[str] = None,
            revoke_all: bool = False,
        ) -> str:
            """Change who can read a note you own.

            Args:
                note_id: The ID of the note
                is_public: True to let anyone read it, False to make it non-public
                emails: Comma-separated emails of registered users; replaces the
                    current collaborator list
                revoke_all: Clear both the public flag and all collaborators
            """
            with timed_operation("qn_share_note", note_id=note_id):
                try:
                    if revoke_all:
                        note = await self.sharing_service.revoke_all(self.principal, note_id)
                    else:
                        note = await self.sharing_service.set_sharing(
                            self.principal,
                            note_id,
                            ShareRequest(is_public=is_public, emails=_split_csv(emails)),
                        )
                    output = f"Sharing updated for {note.id}: {classify(note).value}\n"
                    if note.shared_with:
                        output += f"Shared with: {', '.join(note.shared_with)}\n"
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="qn_register_user")
        async def qn_register_user(email: str, name: Optional[str] = None) -> str:
            """Register a user so notes can be shared with their email.
            Args:
                email: Email address of the user
                name: Display name (optional)
            """
            with timed_operation("qn_register_user"):
                try:
                    user = await self.user_repository.create(email, name=name)
                    return f"User registered: {user.email} (ID: {user.id})"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="qn_search_notes")
        async def qn_search_notes(
            query: str,
            field: str = "all",
            folder: Optional[str] = None,
            limit: int = 10,
        ) -> str:
            """Search your notes by text.
            Args:
                query: Text to look for (case-insensitive)
                field: Where to look: all, title, content or tags
                folder: Restrict to one folder (optional)
                limit: Maximum results (1-100)
            """
            with timed_operation("qn_search_notes", query=query[:30]) as op:
                try:
                    hits = await self.search_service.search(
                        self.principal, query, field=field, folder=folder, limit=limit
                    )
                    op["result_count"] = len(hits)
                    if not hits:
                        return f"No notes found matching '{query}'."
                    output = f"Found {len(hits)} matching notes:\n\n"
                    for i, hit in enumerate(hits, 1):
                        output += _format_summary(hit.note, i)
                        if hit.snippet:
                            output += f"   {hit.snippet}\n"
                        output += "\n"
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="qn_get_metrics")
        async def qn_get_metrics(reset: bool = False) -> str:
            """Show server operation metrics.
            Args:
                reset: Clear the metrics after reporting them
            """
            try:
                report = {"summary": metrics.get_summary(), "operations": metrics.get_metrics()}
                if reset:
                    metrics.reset()
                return json.dumps(report, indent=2)
            except Exception as e:
                return self.format_error_response(e)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()
