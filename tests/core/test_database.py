"""
Tests for core PostgreSQL connection management.
"""

from unittest.mock import MagicMock, patch

import pytest

from src.core.database import PostgresConnection

CONNECTION_ARGS = {
    "host": "localhost",
    "port": 5432,
    "database": "test_db",
    "user": "test_user",
    "password": "test_password",
}


@pytest.fixture
def mock_connect():
    with patch("src.core.database.psycopg2.connect") as connect:
        yield connect


@pytest.fixture
def mock_cursor(mock_connect):
    cursor = MagicMock()
    mock_connect.return_value.cursor.return_value = cursor
    return cursor


class TestPostgresConnection:
    """Tests for PostgresConnection base class."""

    def test_connects_without_statement_timeout(self, mock_connect):
        conn = PostgresConnection(**CONNECTION_ARGS)

        mock_connect.assert_called_once_with(**CONNECTION_ARGS, connect_timeout=10)
        assert conn.connection == mock_connect.return_value
        assert conn.statement_timeout_ms is None

    def test_statement_timeout_is_passed_as_option(self, mock_connect):
        PostgresConnection(**CONNECTION_ARGS, statement_timeout_ms=2500)

        assert mock_connect.call_args.kwargs["options"] == "-c statement_timeout=2500"

    def test_initialization_failure(self, mock_connect):
        mock_connect.side_effect = Exception("Connection failed")

        with pytest.raises(Exception, match="Connection failed"):
            PostgresConnection(**CONNECTION_ARGS)

    def test_cursor_commits_on_success(self, mock_connect, mock_cursor):
        conn = PostgresConnection(**CONNECTION_ARGS)

        with conn.get_cursor() as cursor:
            cursor.execute("SELECT 1")

        conn.connection.commit.assert_called_once()
        mock_cursor.close.assert_called_once()

    def test_cursor_rolls_back_on_error(self, mock_connect, mock_cursor):
        """A statement cancelled by the server is rolled back and re-raised."""
        mock_cursor.execute.side_effect = Exception("canceling statement due to statement timeout")
        conn = PostgresConnection(**CONNECTION_ARGS, statement_timeout_ms=100)

        with pytest.raises(Exception, match="statement timeout"):  # noqa: SIM117
            with conn.get_cursor() as cursor:
                cursor.execute("SELECT pg_sleep(1)")

        conn.connection.rollback.assert_called_once()
        conn.connection.commit.assert_not_called()

    def test_execute_query(self, mock_connect, mock_cursor):
        conn = PostgresConnection(**CONNECTION_ARGS)

        assert conn.execute_query("DELETE FROM t WHERE site = %(site)s", {"site": "blog"}) is True
        mock_cursor.execute.assert_called_once_with(
            "DELETE FROM t WHERE site = %(site)s", {"site": "blog"}
        )

    def test_execute_query_without_params(self, mock_connect, mock_cursor):
        conn = PostgresConnection(**CONNECTION_ARGS)

        conn.execute_query("SELECT 1")

        mock_cursor.execute.assert_called_once_with("SELECT 1", {})

    def test_execute_query_failure(self, mock_connect, mock_cursor):
        mock_cursor.execute.side_effect = Exception("Query error")
        conn = PostgresConnection(**CONNECTION_ARGS)

        assert conn.execute_query("BAD QUERY") is False

    @pytest.mark.parametrize("row, healthy", [((1,), True), ((0,), False)])
    def test_check_health(self, mock_connect, mock_cursor, row, healthy):
        mock_cursor.fetchone.return_value = row
        conn = PostgresConnection(**CONNECTION_ARGS)

        assert conn.check_health() is healthy

    def test_check_health_connection_lost(self, mock_connect):
        mock_connect.return_value.cursor.side_effect = Exception("Connection lost")
        conn = PostgresConnection(**CONNECTION_ARGS)

        assert conn.check_health() is False

    def test_close(self, mock_connect):
        conn = PostgresConnection(**CONNECTION_ARGS)

        conn.close()

        mock_connect.return_value.close.assert_called_once()

    def test_close_when_no_connection(self, mock_connect):
        conn = PostgresConnection(**CONNECTION_ARGS)
        conn.connection = None

        conn.close()

    def test_fetch_one(self, mock_connect, mock_cursor):
        mock_cursor.fetchone.return_value = ("alarm",)
        conn = PostgresConnection(**CONNECTION_ARGS)

        row = conn.fetch_one("SELECT status FROM anomaly_status WHERE site = %s", ("blog",))

        assert row == ("alarm",)
        mock_cursor.execute.assert_called_once_with(
            "SELECT status FROM anomaly_status WHERE site = %s", ("blog",)
        )

    def test_fetch_one_propagates_errors(self, mock_connect, mock_cursor):
        mock_cursor.execute.side_effect = Exception("relation does not exist")
        conn = PostgresConnection(**CONNECTION_ARGS)

        with pytest.raises(Exception, match="relation does not exist"):
            conn.fetch_one("SELECT 1")
