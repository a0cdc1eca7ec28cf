"""Repository for user lookup and storage."""
import logging
import uuid
from typing import List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from quillnote_mcp.exceptions import (
    ConflictError,
    ErrorCode,
    PersistenceUnavailableError,
    QuillnoteError,
    ValidationError,
)
from quillnote_mcp.models.db_models import DBUser, get_engine, get_session_factory
from quillnote_mcp.models.schema import User, ensure_timezone_aware, normalize_email, utc_now

logger = logging.getLogger(__name__)


class UserRepository:
    """Repository for users, used to resolve collaborator emails.

    Unlike notes, user rows carry a version counter: update_email() only
    applies when the caller's expected_version still matches.
    """

    def __init__(self, engine: Optional[AsyncEngine] = None):
        """Initialize the user repository.

        Args:
            engine: Async engine. If None, uses the process-wide engine.
        """
        self.engine = engine or get_engine()
        self.session_factory = get_session_factory(self.engine)

    @staticmethod
    def _to_model(db_user: DBUser) -> User:
        return User(
            id=db_user.id,
            email=db_user.email,
            name=db_user.name,
            created_at=ensure_timezone_aware(db_user.created_at),
            version=db_user.version,
        )

    async def create(
        self, email: str, name: Optional[str] = None, user_id: Optional[str] = None
    ) -> User:
        """Register a user.

        Raises:
            ValidationError: If the email is malformed.
            ConflictError: If the email is already registered.
        """
        try:
            email = normalize_email(email)
        except ValueError as e:
            raise ValidationError(
                str(e), field="email", value=email, code=ErrorCode.SHARE_INVALID_EMAIL
            ) from e
        user = User(id=user_id or uuid.uuid4().hex, email=email, name=name, created_at=utc_now())
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(
                        DBUser(
                            id=user.id,
                            email=user.email,
                            name=user.name,
                            created_at=user.created_at,
                            version=user.version,
                        )
                    )
        except IntegrityError as e:
            raise ConflictError(
                f"A user with email '{email}' already exists",
                code=ErrorCode.USER_ALREADY_EXISTS,
                details={"email": email},
            ) from e
        except SQLAlchemyError as e:
            raise PersistenceUnavailableError(
                "User store unavailable", operation="create_user", original_error=e
            ) from e
        logger.info(f"Registered user {user.id}")
        return user

    async def get(self, user_id: str) -> Optional[User]:
        """Get a user by ID."""
        try:
            async with self.session_factory() as session:
                db_user = await session.get(DBUser, user_id)
                return self._to_model(db_user) if db_user else None
        except SQLAlchemyError as e:
            raise PersistenceUnavailableError(
                "User store unavailable", operation="get_user", original_error=e
            ) from e

    async def get_by_email(self, email: str) -> Optional[User]:
        """Get a user by email (case-insensitive)."""
        users = await self.find_by_emails([email])
        return users[0] if users else None

    async def find_by_emails(self, emails: Sequence[str]) -> List[User]:
        """Resolve emails to registered users.

        Unknown and malformed addresses are skipped. Results follow the
        order of the input emails.
        """
        wanted = []
        for email in emails:
            try:
                wanted.append(normalize_email(email))
            except ValueError:
                continue
        if not wanted:
            return []
        try:
            async with self.session_factory() as session:
                rows = (
                    await session.scalars(select(DBUser).where(DBUser.email.in_(wanted)))
                ).all()
        except SQLAlchemyError as e:
            raise PersistenceUnavailableError(
                "User store unavailable", operation="find_by_emails", original_error=e
            ) from e
        by_email = {row.email: self._to_model(row) for row in rows}
        seen = set()
        ordered = []
        for email in wanted:
            if email in by_email and email not in seen:
                seen.add(email)
                ordered.append(by_email[email])
        return ordered

    async def update_email(self, user_id: str, email: str, expected_version: int) -> User:
        """Change a user's email if nobody else changed the user first.

        Raises:
            QuillnoteError: If the user does not exist.
            ConflictError: If the stored version differs from expected_version.
        """
        email = normalize_email(email)
        statement = (
            update(DBUser)
            .where(DBUser.id == user_id, DBUser.version == expected_version)
            .values(email=email, version=DBUser.version + 1)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(statement)
                    updated = result.rowcount or 0
        except IntegrityError as e:
            raise ConflictError(
                f"A user with email '{email}' already exists",
                code=ErrorCode.USER_ALREADY_EXISTS,
                details={"email": email},
            ) from e
        except SQLAlchemyError as e:
            raise PersistenceUnavailableError(
                "User store unavailable", operation="update_email", original_error=e
            ) from e

        if updated == 0:
            current = await self.get(user_id)
            if current is None:
                raise QuillnoteError(
                    f"User '{user_id}' not found",
                    code=ErrorCode.USER_NOT_FOUND,
                    details={"user_id": user_id},
                )
            raise ConflictError(
                f"User '{user_id}' was modified concurrently",
                code=ErrorCode.USER_VERSION_CONFLICT,
                details={
                    "expected_version": expected_version,
                    "actual_version": current.version,
                },
            )
        return await self.get(user_id)
