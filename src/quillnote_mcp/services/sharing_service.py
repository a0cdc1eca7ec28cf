"""Service for changing who can read a note."""

import logging
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from quillnote_mcp.exceptions import (
    ErrorCode,
    NotFoundOrForbiddenError,
    ValidationError,
)
from quillnote_mcp.models.schema import (
    Note,
    Principal,
    ShareRequest,
    Visibility,
    normalize_email,
    utc_now,
)
from quillnote_mcp.observability import traced
from quillnote_mcp.storage.base import UserLookup
from quillnote_mcp.storage.note_repository import NoteRepository
from quillnote_mcp.visibility import classify

logger = logging.getLogger(__name__)


class SharingService:
    """Public flag and collaborator list management.

    Only the owner can change sharing. Collaborators are addressed by email
    and must resolve to registered users through the UserLookup.
    """

    def __init__(self, repository: NoteRepository, users: UserLookup):
        self.repository = repository
        self.users = users

    @traced("note.share")
    async def set_sharing(
        self,
        principal: Principal,
        note_id: str,
        request: Union[ShareRequest, Dict[str, Any]],
    ) -> Note:
        """Set the public flag and/or replace the collaborator list.

        A non-empty emails list replaces shared_with with the addresses that
        resolve to users, in request order. An empty list leaves it as is.

        Raises:
            NotFoundOrForbiddenError: Unless the principal owns the note.
            ValidationError: If an email is malformed or none resolve to a user.
        """
        if not isinstance(request, ShareRequest):
            try:
                request = ShareRequest.model_validate(request or {})
            except PydanticValidationError as e:
                raise ValidationError.from_pydantic(e) from e

        note = await self.repository.get_for_write(principal, note_id)
        changes: Dict[str, Any] = {}
        if request.is_public is not None:
            changes["is_public"] = request.is_public

        if request.emails:
            wanted = []
            for email in request.emails:
                try:
                    wanted.append(normalize_email(email))
                except ValueError as e:
                    raise ValidationError(
                        "Invalid email format",
                        field="emails",
                        value=email,
                        code=ErrorCode.SHARE_INVALID_EMAIL,
                    ) from e
            users = await self.users.find_by_emails(wanted)
            if not users:
                raise ValidationError(
                    "No valid users found to share with",
                    field="emails",
                    code=ErrorCode.SHARE_NO_USERS,
                )
            found = {user.email for user in users}
            changes["shared_with"] = [email for email in wanted if email in found]

        changes["updated_at"] = utc_now()
        updated = note.model_copy(update=changes)
        # model_copy skips validation; run it once more on the result
        try:
            updated = Note.model_validate(updated.model_dump())
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e) from e
        await self.repository.save(principal, updated)
        logger.info(
            f"Sharing for note {note_id}: {classify(updated).value}, "
            f"{len(updated.shared_with)} collaborator(s)"
        )
        return updated

    async def revoke_all(self, principal: Principal, note_id: str) -> Note:
        """Make a note private again: clears shared_with and is_public."""
        note = await self.repository.get_for_write(principal, note_id)
        updated = note.model_copy(
            update={"is_public": False, "shared_with": [], "updated_at": utc_now()}
        )
        await self.repository.save(principal, updated)
        logger.info(f"Revoked all sharing on note {note_id}")
        return updated

    async def visibility(self, principal: Principal, note_id: str) -> Visibility:
        """Visibility class of a note the principal can read."""
        note = await self.repository.get_by_id(principal, note_id)
        return classify(note)
