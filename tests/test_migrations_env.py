"""Tests for migrations/env_helpers.py DSN-to-URL conversion."""

from __future__ import annotations

import os
import sys
from unittest.mock import patch

import pytest

# Make migrations importable without alembic context
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from migrations.env_helpers import dsn_to_url, get_database_url  # noqa: E402


class TestDsnToUrl:
    def test_unix_socket(self):
        dsn = "dbname=jarvis user=jarvis-sa password=s3cret host=/cloudsql/proj:europe-west1:inst"
        result = dsn_to_url(dsn)
        assert result == (
            "postgresql+psycopg2://jarvis-sa:s3cret@/jarvis"
            "?host=%2Fcloudsql%2Fproj%3Aeurope-west1%3Ainst"
        )

    def test_tcp_host(self):
        dsn = "dbname=jarvis user=admin password=pw host=localhost port=5432"
        assert dsn_to_url(dsn) == "postgresql+psycopg2://admin:pw@localhost:5432/jarvis"

    def test_default_port(self):
        dsn = "dbname=db user=u password=p host=myhost"
        assert dsn_to_url(dsn) == "postgresql+psycopg2://u:p@myhost:5432/db"

    def test_special_chars_encoded(self):
        dsn = "dbname=db user=u@domain password=p@ss=word host=h port=5432"
        result = dsn_to_url(dsn)
        assert "u%40domain" in result
        assert "p%40ss%3Dword" in result

    def test_quoted_password_with_spaces(self):
        dsn = "dbname=db user=u password='p@ss w0rd' host=h port=5432"
        assert "p%40ss+w0rd" in dsn_to_url(dsn)

    def test_db_password_env_fallback(self, monkeypatch):
        monkeypatch.setenv("DB_PASSWORD", "from-env")
        assert "from-env" in dsn_to_url("dbname=db user=u host=h port=5432")

    def test_dsn_password_wins_over_env(self, monkeypatch):
        monkeypatch.setenv("DB_PASSWORD", "from-env")
        result = dsn_to_url("dbname=db user=u password=from-dsn host=h port=5432")
        assert "from-dsn" in result
        assert "from-env" not in result


class TestGetDatabaseUrl:
    def test_url_passthrough(self):
        with patch.dict(os.environ, {"DATABASE_URL": "postgresql+psycopg2://u:p@h/db"}):
            assert get_database_url() == "postgresql+psycopg2://u:p@h/db"

    def test_dsn_converted(self):
        dsn = "dbname=jarvis user=sa password=pw host=/cloudsql/p:r:i"
        with patch.dict(os.environ, {"DATABASE_URL": dsn}):
            assert get_database_url().startswith("postgresql+psycopg2://")

    def test_missing_raises(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(RuntimeError, match="DATABASE_URL is required"):
                get_database_url()

    @pytest.mark.parametrize("scheme", ["postgres://", "postgresql://"])
    def test_scheme_gets_driver(self, scheme):
        with patch.dict(os.environ, {"DATABASE_URL": f"{scheme}u:p@h/db"}):
            result = get_database_url()
            assert result.startswith("postgresql+psycopg2://")
            assert result.count("+psycopg2") == 1

    def test_url_db_password_fallback(self):
        env = {"DATABASE_URL": "postgresql://u@h/db", "DB_PASSWORD": "secret"}
        with patch.dict(os.environ, env):
            assert "secret" in get_database_url()
