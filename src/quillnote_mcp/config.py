"""Configuration module for the Quillnote MCP server."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from quillnote_mcp import __version__
from quillnote_mcp.exceptions import ConfigurationError, ErrorCode
from quillnote_mcp.models.schema import Principal

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the default database and logs
_USER_ENV = Path.home() / ".quillnote" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


class QuillnoteConfig(BaseModel):
    """Configuration for the Quillnote server."""

    # Base directory for the project
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("QUILLNOTE_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("QUILLNOTE_DATABASE_PATH", "data/db/quillnote.db")
        )
    )
    # Full SQLAlchemy async URL; overrides database_path when set
    database_url: Optional[str] = Field(
        default_factory=lambda: os.getenv("QUILLNOTE_DATABASE_URL") or None
    )
    pool_size: int = Field(
        default_factory=lambda: int(os.getenv("QUILLNOTE_POOL_SIZE", "5"))
    )
    # Upper bound for list and search queries, in seconds
    list_query_timeout: float = Field(
        default_factory=lambda: float(os.getenv("QUILLNOTE_LIST_TIMEOUT", "10"))
    )
    default_page_size: int = Field(
        default_factory=lambda: int(os.getenv("QUILLNOTE_PAGE_SIZE", "50"))
    )
    max_page_size: int = Field(
        default_factory=lambda: int(os.getenv("QUILLNOTE_MAX_PAGE_SIZE", "100"))
    )
    # Acting principal for the MCP server process
    user_id: Optional[str] = Field(
        default_factory=lambda: os.getenv("QUILLNOTE_USER_ID") or None
    )
    user_email: Optional[str] = Field(
        default_factory=lambda: os.getenv("QUILLNOTE_USER_EMAIL") or None
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("QUILLNOTE_SERVER_NAME", "quillnote-mcp"))
    server_version: str = Field(default=__version__)
    log_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("QUILLNOTE_LOG_DIR", str(Path.home() / ".quillnote" / "logs"))
        )
    )

    model_config = {"validate_assignment": True}

    @model_validator(mode="after")
    def _validate_limits(self) -> "QuillnoteConfig":
        """Reject settings the repository cannot work with."""
        if self.list_query_timeout <= 0:
            raise ValueError("list_query_timeout must be > 0")
        if self.pool_size < 1:
            raise ValueError("pool_size must be >= 1")
        if self.default_page_size < 1:
            raise ValueError("default_page_size must be >= 1")
        if self.max_page_size < self.default_page_size:
            raise ValueError("max_page_size must be >= default_page_size")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the async database URL (SQLite via aiosqlite by default)."""
        if self.database_url:
            return self.database_url
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite+aiosqlite:///{db_path}"

    def get_principal(self) -> Principal:
        """Build the acting principal for this server process.

        Raises:
            ConfigurationError: If the user ID or email is not configured.
        """
        if not self.user_id:
            raise ConfigurationError(
                "QUILLNOTE_USER_ID is not set",
                config_key="user_id",
                code=ErrorCode.CONFIG_MISSING,
            )
        if not self.user_email:
            raise ConfigurationError(
                "QUILLNOTE_USER_EMAIL is not set",
                config_key="user_email",
                code=ErrorCode.CONFIG_MISSING,
            )
        try:
            return Principal(id=self.user_id, email=self.user_email)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid acting user: {e}", config_key="user_email"
            ) from e


# Create a global config instance
config = QuillnoteConfig()
