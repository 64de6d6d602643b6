"""Tests for database layer."""

import os
from unittest.mock import MagicMock, patch

import pytest


class TestGetConn:
    def test_connects_with_database_url(self):
        from jarvis.infra.db import get_conn

        env = {"DATABASE_URL": "postgres://u:p@h/jarvis"}
        with patch.dict(os.environ, env, clear=True), \
             patch("jarvis.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            mock_connect.assert_called_once_with(
                "postgres://u:p@h/jarvis", connect_timeout=5, application_name="jarvis"
            )

    def test_db_password_fallback_dsn_without_password(self):
        from jarvis.infra.db import get_conn

        env = {"DATABASE_URL": "dbname=db user=u host=h port=5432", "DB_PASSWORD": "from-env"}
        with patch.dict(os.environ, env, clear=True), \
             patch("jarvis.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            assert mock_connect.call_args.kwargs["password"] == "from-env"

    def test_db_password_not_used_when_dsn_has_password(self):
        from jarvis.infra.db import get_conn

        env = {"DATABASE_URL": "postgres://u:p@h/db", "DB_PASSWORD": "from-env"}
        with patch.dict(os.environ, env, clear=True), \
             patch("jarvis.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            assert "password" not in mock_connect.call_args.kwargs

    def test_dsn_options_win(self):
        from jarvis.infra.db import get_conn

        env = {
            "DATABASE_URL": "dbname=db user=u connect_timeout=30 application_name=ops",
            "DB_CONNECT_TIMEOUT": "2",
        }
        with patch.dict(os.environ, env, clear=True), \
             patch("jarvis.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            mock_connect.assert_called_once_with(
                "dbname=db user=u connect_timeout=30 application_name=ops"
            )

    def test_missing_database_url_raises(self):
        from jarvis.infra.db import get_conn

        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(RuntimeError, match="DATABASE_URL"):
                get_conn()


class TestTxn:
    """Commit/rollback/close behaviour with a mocked connection."""

    def test_commits_and_closes_owned_connection(self):
        from jarvis.infra.db import txn

        conn = MagicMock()
        with patch("jarvis.infra.db.get_conn", return_value=conn):
            with txn() as cur:
                cur.execute("SELECT 1")

        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        conn.close.assert_called_once()

    def test_rolls_back_on_exception(self):
        from jarvis.infra.db import txn

        conn = MagicMock()
        with patch("jarvis.infra.db.get_conn", return_value=conn):
            with pytest.raises(ValueError):
                with txn():
                    raise ValueError("boom")

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        conn.close.assert_called_once()

    def test_passed_connection_left_open(self):
        from jarvis.infra.db import txn

        conn = MagicMock()
        with txn(conn):
            pass

        conn.commit.assert_called_once()
        conn.close.assert_not_called()


class TestForUpdate:
    def test_appends_for_update(self):
        from jarvis.infra.db import for_update

        cur = MagicMock()
        cur.fetchone.return_value = ("open",)
        row = for_update(cur, "SELECT status FROM complaints WHERE id = %s;", ("c-1",))

        cur.execute.assert_called_once_with(
            "SELECT status FROM complaints WHERE id = %s FOR UPDATE", ("c-1",)
        )
        assert row == ("open",)

    def test_nowait(self):
        from jarvis.infra.db import for_update

        cur = MagicMock()
        for_update(cur, "SELECT 1", nowait=True)
        assert cur.execute.call_args[0][0] == "SELECT 1 FOR UPDATE NOWAIT"

    def test_skip_locked(self):
        from jarvis.infra.db import for_update

        cur = MagicMock()
        for_update(cur, "SELECT 1", skip_locked=True)
        assert cur.execute.call_args[0][0] == "SELECT 1 FOR UPDATE SKIP LOCKED"

    def test_nowait_and_skip_locked_rejected(self):
        from jarvis.infra.db import for_update

        with pytest.raises(ValueError):
            for_update(MagicMock(), "SELECT 1", nowait=True, skip_locked=True)


# Skip integration tests if DATABASE_URL is not set
_skip_no_db = pytest.mark.skipif(
    not os.environ.get("DATABASE_URL"),
    reason="DATABASE_URL not set - skipping DB integration tests",
)


@_skip_no_db
class TestRealConnection:
    def test_select_one(self):
        from jarvis.infra.db import fetchone, txn

        with txn() as cur:
            assert fetchone(cur, "SELECT 1") == (1,)
