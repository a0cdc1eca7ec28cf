"""Data models for the Quillnote MCP server."""

import datetime
import os
import re
import threading
from dataclasses import dataclass
from datetime import timezone
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Note IDs are 24 lowercase hex characters
NOTE_ID_PATTERN = re.compile(r"^[0-9a-f]{24}$")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
HEX_COLOR_PATTERN = re.compile(r"^#(?:[0-9a-f]{3}|[0-9a-f]{6})$")
NAMED_COLORS = frozenset(
    {
        "white",
        "red",
        "orange",
        "yellow",
        "green",
        "teal",
        "blue",
        "purple",
        "pink",
        "gray",
        "brown",
    }
)

DEFAULT_FOLDER = "Default"
DEFAULT_COLOR = "#ffffff"

MAX_TITLE_LENGTH = 100
MAX_FOLDER_LENGTH = 30
MAX_TAG_LENGTH = 20
MAX_TAGS = 50
MAX_SHARED_WITH = 100

# Sortable fields; camelCase spellings are accepted on input
SORT_FIELDS = ("updated_at", "created_at", "title", "last_accessed")
_SORT_ALIASES = {
    "updatedAt": "updated_at",
    "createdAt": "created_at",
    "lastAccessed": "last_accessed",
}
DEFAULT_SORT: Tuple[str, bool] = ("updated_at", True)


def is_valid_note_id(value: object) -> bool:
    """Check whether a value is a well-formed note identifier."""
    return isinstance(value, str) and bool(NOTE_ID_PATTERN.match(value))


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current time with UTC timezone info attached.
    """
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite hands back naive datetimes even for timezone-aware columns,
    so values read from the store pass through here.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise unchanged.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


# Thread-safe counter for uniqueness (seeded from PID for cross-process safety)
_id_lock = threading.Lock()
_process_token = f"{(os.getpid() * 7919) % 0xFFFFFFFFFF:010x}"
_counter = (os.getpid() * 7) % 0x1000000


def generate_id() -> str:
    """Generate a 24-hex-character note ID with guaranteed uniqueness.

    Returns:
        A string laid out as "ttttttttppppppppppcccccc" where:
        - tttttttt is the creation time in seconds (8 hex digits)
        - pppppppppp is a per-process token derived from the PID
        - cccccc is a 6-digit hex counter that wraps at 16M

    IDs created later sort after earlier ones at second granularity.
    """
    global _counter

    with _id_lock:
        _counter = (_counter + 1) % 0x1000000
        seconds = int(utc_now().timestamp()) & 0xFFFFFFFF
        return f"{seconds:08x}{_process_token}{_counter:06x}"


def parse_sort(value: Optional[str]) -> Tuple[str, bool]:
    """Parse a sort expression like "-updated_at" into (field, descending).

    Unknown fields fall back to DEFAULT_SORT instead of raising.
    """
    if not value or not isinstance(value, str):
        return DEFAULT_SORT
    value = value.strip()
    descending = value.startswith("-")
    name = value[1:] if descending else value
    name = _SORT_ALIASES.get(name, name)
    if name not in SORT_FIELDS:
        return DEFAULT_SORT
    return name, descending


def normalize_email(value: str) -> str:
    """Trim and lower-case an email address, raising ValueError if malformed."""
    if not isinstance(value, str):
        raise ValueError("Email must be a string")
    cleaned = value.strip().lower()
    if not EMAIL_PATTERN.match(cleaned):
        raise ValueError(f"Invalid email format: {value!r}")
    return cleaned


def _dedupe(values: List[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def _check_title(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("Title cannot be empty")
    if len(value) > MAX_TITLE_LENGTH:
        raise ValueError(f"Title cannot be more than {MAX_TITLE_LENGTH} characters")
    return value


def _check_folder(value: Optional[str]) -> str:
    if value is None:
        return DEFAULT_FOLDER
    if not isinstance(value, str):
        raise ValueError("Folder name must be a string")
    if not value.strip():
        return DEFAULT_FOLDER
    value = value.strip()
    if len(value) > MAX_FOLDER_LENGTH:
        raise ValueError(
            f"Folder name cannot be more than {MAX_FOLDER_LENGTH} characters"
        )
    return value


def _check_tags(values: List[str]) -> List[str]:
    cleaned = []
    for tag in values:
        tag = tag.strip()
        if not tag:
            raise ValueError("Tags cannot be empty")
        if len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"Tag '{tag}' exceeds {MAX_TAG_LENGTH} characters")
        cleaned.append(tag)
    if len(cleaned) > MAX_TAGS:
        raise ValueError(f"A note cannot have more than {MAX_TAGS} tags")
    return cleaned


def _check_color(value: str) -> str:
    folded = value.lower()
    if HEX_COLOR_PATTERN.match(folded) or folded in NAMED_COLORS:
        return value
    raise ValueError(f"Invalid color: {value!r}")


def _check_shared_with(values: List[str]) -> List[str]:
    cleaned = _dedupe([normalize_email(v) for v in values])
    if len(cleaned) > MAX_SHARED_WITH:
        raise ValueError(
            f"A note cannot be shared with more than {MAX_SHARED_WITH} people"
        )
    return cleaned


class EditorType(str, Enum):
    """Editor formats a note's content can be written in."""

    RICH = "rich"
    MARKDOWN = "markdown"
    SIMPLE = "simple"


class Visibility(str, Enum):
    """Read-time classification of who can see a note (never stored)."""

    PRIVATE = "private"  # Owner only
    SHARED = "shared"  # Owner plus listed collaborators
    PUBLIC = "public"  # Anyone


class Principal(BaseModel):
    """The authenticated actor making a request."""

    id: str = Field(..., min_length=1, description="User ID")
    email: str = Field(..., description="User email address")

    model_config = {"frozen": True}

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return normalize_email(v)


class User(BaseModel):
    """A registered user, as seen by the sharing lookup."""

    id: str = Field(..., min_length=1)
    email: str
    name: Optional[str] = None
    created_at: datetime.datetime = Field(default_factory=utc_now)
    version: int = Field(default=1, ge=1, description="Optimistic concurrency counter")

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return normalize_email(v)


class Note(BaseModel):
    """A note owned by a single user."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the note")
    title: str = Field(..., description="Title of the note")
    content: str = Field(default="", description="Editor-format-dependent body")
    tags: List[str] = Field(default_factory=list, description="Ordered tag list")
    folder: str = Field(default=DEFAULT_FOLDER, description="Derived folder name")
    color: str = Field(default=DEFAULT_COLOR, description="Hex code or palette name")
    is_pinned: bool = False
    is_favorite: bool = False
    is_public: bool = False
    editor_type: EditorType = Field(default=EditorType.RICH)
    owner_id: str = Field(..., min_length=1, description="ID of the creating user")
    shared_with: List[str] = Field(
        default_factory=list, description="Collaborator emails with read access"
    )
    last_accessed: datetime.datetime = Field(default_factory=utc_now)
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(
        validate_assignment=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not is_valid_note_id(v):
            raise ValueError("Note ID must be 24 hex characters")
        return v

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _check_title(v)

    @field_validator("folder", mode="before")
    @classmethod
    def validate_folder(cls, v: Optional[str]) -> str:
        return _check_folder(v)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        return _check_tags(v)

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        return _check_color(v)

    @field_validator("shared_with")
    @classmethod
    def validate_shared_with(cls, v: List[str]) -> List[str]:
        return _check_shared_with(v)

    @field_validator("last_accessed", "created_at", "updated_at")
    @classmethod
    def validate_timestamps(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_timezone_aware(v)

    @property
    def visibility(self) -> Visibility:
        """Current visibility class, derived from is_public and shared_with."""
        if self.is_public:
            return Visibility.PUBLIC
        if self.shared_with:
            return Visibility.SHARED
        return Visibility.PRIVATE


class NoteCreate(BaseModel):
    """Payload for creating a note.

    Ownership, identity and timestamps are assigned by the repository;
    any such keys in the payload are ignored.
    """

    title: str
    content: str = ""
    tags: List[str] = Field(default_factory=list)
    folder: Optional[str] = DEFAULT_FOLDER
    color: str = DEFAULT_COLOR
    is_pinned: bool = False
    is_favorite: bool = False
    is_public: bool = False
    editor_type: EditorType = EditorType.RICH
    shared_with: List[str] = Field(default_factory=list)

    model_config = ConfigDict(
        extra="ignore", alias_generator=to_camel, populate_by_name=True
    )


class NoteUpdate(BaseModel):
    """Partial update payload: only fields that were supplied are applied."""

    title: Optional[str] = None
    content: Optional[str] = None
    tags: Optional[List[str]] = None
    folder: Optional[str] = None
    color: Optional[str] = None
    is_pinned: Optional[bool] = None
    is_favorite: Optional[bool] = None
    is_public: Optional[bool] = None
    editor_type: Optional[EditorType] = None
    shared_with: Optional[List[str]] = None

    model_config = ConfigDict(
        extra="ignore", alias_generator=to_camel, populate_by_name=True
    )

    def changes(self) -> dict:
        """Return only the explicitly supplied fields."""
        return self.model_dump(exclude_unset=True)


class NoteFilter(BaseModel):
    """Filters for listing a principal's own notes."""

    folder: Optional[str] = None
    tag: Optional[str] = None
    editor_type: Optional[EditorType] = None
    is_favorite: Optional[bool] = None
    is_pinned: Optional[bool] = None
    is_public: Optional[bool] = None
    has_shares: Optional[bool] = None
    query: Optional[str] = Field(
        default=None, description="Case-insensitive substring over title, content, tags"
    )

    model_config = ConfigDict(
        extra="ignore", alias_generator=to_camel, populate_by_name=True
    )


class Pagination(BaseModel):
    """Raw pagination request; clamping happens in the repository."""

    limit: Optional[int] = None
    skip: Optional[int] = None


class ShareRequest(BaseModel):
    """Sharing change for a single note."""

    is_public: Optional[bool] = None
    emails: Optional[List[str]] = None

    model_config = ConfigDict(
        extra="ignore", alias_generator=to_camel, populate_by_name=True
    )


class NotePage(BaseModel):
    """One page of a note listing."""

    items: List[Note]
    total: int
    limit: int
    skip: int

    @property
    def page_count(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit

    @property
    def has_more(self) -> bool:
        return self.skip + len(self.items) < self.total


@dataclass(frozen=True)
class FolderDeleteResult:
    """Outcome of deleting a folder.

    Exactly one of the counts can be non-zero: notes were either deleted
    or moved to the default folder.
    """

    deleted_count: int = 0
    modified_count: int = 0


@dataclass
class SearchHit:
    """A search result: the matching note plus a plain-text snippet."""

    note: Note
    snippet: str
