"""Tests for configuration loading and validation."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from quillnote_mcp.config import QuillnoteConfig
from quillnote_mcp.exceptions import ConfigurationError, ErrorCode
from quillnote_mcp.main import parse_args, update_config


class TestDefaults:
    def test_defaults(self, monkeypatch):
        for key in [
            "QUILLNOTE_DATABASE_PATH",
            "QUILLNOTE_DATABASE_URL",
            "QUILLNOTE_LIST_TIMEOUT",
            "QUILLNOTE_PAGE_SIZE",
            "QUILLNOTE_MAX_PAGE_SIZE",
            "QUILLNOTE_POOL_SIZE",
        ]:
            monkeypatch.delenv(key, raising=False)
        cfg = QuillnoteConfig()
        assert cfg.database_path == Path("data/db/quillnote.db")
        assert cfg.database_url is None
        assert cfg.pool_size == 5
        assert cfg.list_query_timeout == 10.0
        assert cfg.default_page_size == 50
        assert cfg.max_page_size == 100

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("QUILLNOTE_LIST_TIMEOUT", "2.5")
        monkeypatch.setenv("QUILLNOTE_POOL_SIZE", "3")
        monkeypatch.setenv("QUILLNOTE_USER_ID", "env-user")
        cfg = QuillnoteConfig()
        assert cfg.list_query_timeout == 2.5
        assert cfg.pool_size == 3
        assert cfg.user_id == "env-user"


class TestValidation:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"list_query_timeout": 0},
            {"list_query_timeout": -1},
            {"pool_size": 0},
            {"default_page_size": 0},
            {"default_page_size": 50, "max_page_size": 10},
        ],
    )
    def test_invalid_settings(self, overrides):
        with pytest.raises(ValidationError):
            QuillnoteConfig(**overrides)


class TestDatabaseUrl:
    def test_url_from_path(self, tmp_path):
        cfg = QuillnoteConfig(base_dir=tmp_path, database_path=Path("db/notes.db"), database_url=None)
        url = cfg.get_db_url()
        assert url == f"sqlite+aiosqlite:///{tmp_path / 'db' / 'notes.db'}"
        assert (tmp_path / "db").is_dir()

    def test_explicit_url_wins(self, tmp_path):
        cfg = QuillnoteConfig(database_url="sqlite+aiosqlite:///:memory:")
        assert cfg.get_db_url() == "sqlite+aiosqlite:///:memory:"


class TestPrincipal:
    def test_principal_from_config(self):
        cfg = QuillnoteConfig(user_id="u1", user_email="Me@Example.com")
        principal = cfg.get_principal()
        assert principal.id == "u1"
        assert principal.email == "me@example.com"

    @pytest.mark.parametrize(
        "user_id, user_email", [(None, "me@example.com"), ("u1", None)]
    )
    def test_missing_principal(self, user_id, user_email):
        cfg = QuillnoteConfig(user_id=user_id, user_email=user_email)
        with pytest.raises(ConfigurationError) as exc_info:
            cfg.get_principal()
        assert exc_info.value.code == ErrorCode.CONFIG_MISSING

    def test_invalid_email(self):
        cfg = QuillnoteConfig(user_id="u1", user_email="nope")
        with pytest.raises(ConfigurationError):
            cfg.get_principal()


class TestCommandLine:
    def test_args_update_config(self, test_config, tmp_path):
        args = parse_args(
            [
                "--database-path", str(tmp_path / "cli.db"),
                "--user-id", "cli-user",
                "--user-email", "cli@example.com",
                "--log-level", "DEBUG",
            ]
        )
        update_config(args)
        assert test_config.database_path == tmp_path / "cli.db"
        assert test_config.user_id == "cli-user"
        assert test_config.get_principal().email == "cli@example.com"
        assert args.log_level == "DEBUG"
