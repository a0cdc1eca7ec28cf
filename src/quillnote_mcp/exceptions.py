"""Custom exceptions for the Quillnote MCP server.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    import pydantic


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002
    NOTE_TITLE_REQUIRED = 1004
    NOTE_INVALID_ID = 1006

    # Folder errors (2xxx)
    FOLDER_NAME_REQUIRED = 2001
    FOLDER_ALREADY_EXISTS = 2002
    FOLDER_NAME_INVALID = 2003

    # Tag errors (3xxx)
    TAG_INVALID = 3002

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_UNAVAILABLE = 4004

    # Query errors (5xxx)
    SEARCH_FAILED = 5001
    QUERY_TIMEOUT = 5003

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001
    CONFIG_MISSING = 6002

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    INVALID_COLOR = 7002
    INVALID_EDITOR_TYPE = 7003

    # Sharing errors (8xxx)
    SHARE_NO_USERS = 8001
    SHARE_INVALID_EMAIL = 8002

    # User errors (9xxx)
    USER_NOT_FOUND = 9001
    USER_VERSION_CONFLICT = 9002
    USER_ALREADY_EXISTS = 9003


# Field name -> error code used when translating model validation failures
_FIELD_CODES: Dict[str, ErrorCode] = {
    "title": ErrorCode.NOTE_TITLE_REQUIRED,
    "folder": ErrorCode.FOLDER_NAME_INVALID,
    "tags": ErrorCode.TAG_INVALID,
    "color": ErrorCode.INVALID_COLOR,
    "editor_type": ErrorCode.INVALID_EDITOR_TYPE,
    "shared_with": ErrorCode.SHARE_INVALID_EMAIL,
}


class QuillnoteError(Exception):
    """Base exception for all Quillnote errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class InvalidIdentifierError(QuillnoteError):
    """Raised when a note ID is not a well-formed identifier."""

    def __init__(self, note_id: Any):
        super().__init__(
            "Invalid note identifier",
            code=ErrorCode.NOTE_INVALID_ID,
            details={"note_id": str(note_id)[:50]}
        )
        self.note_id = note_id


class NotFoundOrForbiddenError(QuillnoteError):
    """Raised when a note is absent or the principal lacks permission.

    The two cases share one error (and one message) so callers cannot
    probe for the existence of other users' private notes.
    """

    def __init__(self, note_id: str):
        super().__init__(
            "Note not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id}
        )
        self.note_id = note_id


class ValidationError(QuillnoteError):
    """Raised for payload validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value

    @classmethod
    def from_pydantic(cls, error: "pydantic.ValidationError") -> "ValidationError":
        """Build from the first failure reported by pydantic."""
        from pydantic.alias_generators import to_snake

        first = error.errors()[0]
        loc = first.get("loc") or ()
        field = to_snake(str(loc[0])) if loc else None
        message = first.get("msg", "Invalid value")
        # pydantic prefixes errors raised inside validators
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        return cls(
            message,
            field=field,
            code=_FIELD_CODES.get(field, ErrorCode.NOTE_VALIDATION_FAILED),
        )


class ConflictError(QuillnoteError):
    """Raised when a write would collide with existing state."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.FOLDER_ALREADY_EXISTS,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code=code, details=details)


class QueryTimeoutError(QuillnoteError):
    """Raised when a list or search query exceeds its timeout.

    Callers may retry; nothing was modified.
    """

    retriable = True

    def __init__(self, operation: str, timeout: float):
        super().__init__(
            f"Query '{operation}' exceeded {timeout:g}s",
            code=ErrorCode.QUERY_TIMEOUT,
            details={"operation": operation, "timeout": timeout}
        )
        self.operation = operation
        self.timeout = timeout


class PersistenceUnavailableError(QuillnoteError):
    """Raised when the underlying store is unreachable or failing."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_UNAVAILABLE,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class ConfigurationError(QuillnoteError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key
