"""
Tests for BaseStorageClient connection handling.
"""

import pytest
import psycopg
from psycopg_pool import PoolTimeout
from unittest.mock import Mock, MagicMock, patch

from core.storage_base import BaseStorageClient, column_list, connection_params, row_to_dict


class TestHelpers:
    def test_row_to_dict(self):
        assert row_to_dict(("id", "name"), (1, "Billing")) == {"id": 1, "name": "Billing"}

    def test_column_list_with_alias(self):
        assert column_list(("id", "title"), alias="a") == "a.id, a.title"
        assert column_list(("id", "title")) == "id, title"

    def test_connection_params(self):
        settings = Mock(HOST="db", USER="helpdesk", NAME="helpdesk", PORT=None)
        settings.PASSWORD.get_secret_value.return_value = "secret"

        params = connection_params(settings)

        assert params == {
            "host": "db",
            "user": "helpdesk",
            "password": "secret",
            "dbname": "helpdesk",
            "port": 5432,
        }

    def test_connection_params_require_user(self):
        with pytest.raises(ValueError, match="DB_USER"):
            connection_params(Mock(HOST="db", USER="", NAME="helpdesk"))


class TestCLIMode:
    @pytest.fixture
    def mock_settings(self):
        with patch("core.storage_base.get_database_settings") as mock:
            settings = Mock()
            settings.HOST = "localhost"
            settings.USER = "helpdesk"
            settings.PASSWORD.get_secret_value.return_value = "secret"
            settings.NAME = "helpdesk"
            settings.PORT = 5433
            mock.return_value = settings
            yield settings

    def test_init_reads_settings(self, mock_settings):
        client = BaseStorageClient()

        assert client.db_host == "localhost"
        assert client.db_port == 5433
        assert client._connection_params["dbname"] == "helpdesk"

    def test_init_requires_host(self, mock_settings):
        mock_settings.HOST = ""

        with pytest.raises(ValueError, match="DB_HOST"):
            BaseStorageClient()

    def test_get_connection_commits_and_closes(self, mock_settings):
        client = BaseStorageClient()
        with patch("core.storage_base.psycopg.connect") as mock_connect:
            mock_conn = MagicMock()
            mock_conn.closed = False
            mock_connect.return_value = mock_conn

            with client.get_connection() as conn:
                assert conn is mock_conn

        mock_conn.commit.assert_called_once()
        mock_conn.close.assert_called_once()

    def test_database_error_becomes_connection_error(self, mock_settings):
        client = BaseStorageClient()
        with patch("core.storage_base.psycopg.connect") as mock_connect:
            mock_conn = MagicMock()
            mock_conn.closed = False
            mock_connect.return_value = mock_conn

            with pytest.raises(ConnectionError, match="Database error"):
                with client.get_connection():
                    raise psycopg.errors.DataError("bad value")

        mock_conn.rollback.assert_called_once()
        mock_conn.commit.assert_not_called()

    def test_connect_failure_becomes_connection_error(self, mock_settings):
        client = BaseStorageClient()
        with patch(
            "core.storage_base.psycopg.connect", side_effect=psycopg.OperationalError("refused")
        ):
            with pytest.raises(ConnectionError, match="Unable to connect"):
                with client.get_connection():
                    pass

    def test_value_error_propagates_unchanged(self, mock_settings):
        client = BaseStorageClient()
        with patch("core.storage_base.psycopg.connect") as mock_connect:
            mock_conn = MagicMock()
            mock_conn.closed = False
            mock_connect.return_value = mock_conn

            with pytest.raises(ValueError, match="not found"):
                with client.get_connection():
                    raise ValueError("Ticket not found")

        mock_conn.rollback.assert_called_once()


class TestPoolMode:
    def test_uses_pool_connection(self):
        pool = MagicMock()
        pooled_conn = MagicMock()
        pool.get_connection.return_value.__enter__.return_value = pooled_conn

        client = BaseStorageClient(connection_pool=pool)
        with client.get_connection() as conn:
            assert conn is pooled_conn

        pooled_conn.commit.assert_called_once()

    def test_pool_database_error_rolls_back(self):
        pool = MagicMock()
        pooled_conn = MagicMock()
        pool.get_connection.return_value.__enter__.return_value = pooled_conn

        client = BaseStorageClient(connection_pool=pool)
        with pytest.raises(ConnectionError):
            with client.get_connection():
                raise psycopg.errors.DataError("bad value")

        pooled_conn.rollback.assert_called_once()

    def test_pool_timeout_becomes_connection_error(self):
        pool = MagicMock()
        pool.get_connection.return_value.__enter__.side_effect = PoolTimeout("pool exhausted")

        client = BaseStorageClient(connection_pool=pool)
        with pytest.raises(ConnectionError, match="Unable to get a database connection"):
            with client.get_connection():
                pass
