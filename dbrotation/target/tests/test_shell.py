from unittest.mock import MagicMock, patch

import pymysql
import pytest
from sqlalchemy.exc import OperationalError, ProgrammingError

from dbrotation.target.contracts import (
    CredentialRejectedError, PasswordChangeError, TargetConfig,
    TargetConnectionError
)
from dbrotation.target.core import ALTER_OWN_PASSWORD_SQL
from dbrotation.target.shell import MySQLCredentialTarget
from dbrotation.vault.contracts import DatabaseCredentials


def mysql_error(code: int, message: str = "error") -> OperationalError:
    return OperationalError("connect", {}, pymysql.err.OperationalError(code, message))


@pytest.fixture
def credentials():
    return DatabaseCredentials(host="db.internal", username="app", password="old-pw")


@pytest.fixture
def mock_engine():
    engine = MagicMock()
    engine.begin.return_value.__exit__.return_value = False
    return engine


@pytest.fixture
def target():
    return MySQLCredentialTarget(TargetConfig())


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_successful_login(self, target, credentials, mock_engine):
        with patch("dbrotation.target.shell.create_engine", return_value=mock_engine) as create:
            assert await target.authenticate(credentials, 5) is True

        url = create.call_args.args[0]
        assert url.username == "app"
        assert create.call_args.kwargs["connect_args"] == {"connect_timeout": 5}
        mock_engine.connect.assert_called_once()
        mock_engine.dispose.assert_called_once()

    @pytest.mark.asyncio
    async def test_rejected_login_returns_false(self, target, credentials, mock_engine):
        mock_engine.connect.side_effect = mysql_error(1045, "Access denied for user 'app'")

        with patch("dbrotation.target.shell.create_engine", return_value=mock_engine):
            assert await target.authenticate(credentials, 5) is False

        mock_engine.dispose.assert_called_once()

    @pytest.mark.asyncio
    async def test_unreachable_host_raises(self, target, credentials, mock_engine):
        mock_engine.connect.side_effect = mysql_error(2003, "Can't connect")

        with patch("dbrotation.target.shell.create_engine", return_value=mock_engine):
            with pytest.raises(TargetConnectionError):
                await target.authenticate(credentials, 5)


class TestApplyNewPassword:
    @pytest.mark.asyncio
    async def test_alters_own_password(self, target, credentials, mock_engine):
        connection = mock_engine.begin.return_value.__enter__.return_value

        with patch("dbrotation.target.shell.create_engine", return_value=mock_engine):
            await target.apply_new_password(credentials, "new-pw", 5)

        statement, params = connection.execute.call_args.args
        assert str(statement) == ALTER_OWN_PASSWORD_SQL
        assert params == {"password": "new-pw"}
        mock_engine.dispose.assert_called_once()

    @pytest.mark.asyncio
    async def test_rejected_login(self, target, credentials, mock_engine):
        mock_engine.begin.side_effect = mysql_error(1045)

        with patch("dbrotation.target.shell.create_engine", return_value=mock_engine):
            with pytest.raises(CredentialRejectedError):
                await target.apply_new_password(credentials, "new-pw", 5)

    @pytest.mark.asyncio
    async def test_lost_connection(self, target, credentials, mock_engine):
        mock_engine.begin.side_effect = mysql_error(2013)

        with patch("dbrotation.target.shell.create_engine", return_value=mock_engine):
            with pytest.raises(TargetConnectionError):
                await target.apply_new_password(credentials, "new-pw", 5)

    @pytest.mark.asyncio
    async def test_statement_failure(self, target, credentials, mock_engine):
        connection = mock_engine.begin.return_value.__enter__.return_value
        connection.execute.side_effect = ProgrammingError(
            "ALTER USER", {}, pymysql.err.ProgrammingError(1064, "syntax error")
        )

        with patch("dbrotation.target.shell.create_engine", return_value=mock_engine):
            with pytest.raises(PasswordChangeError):
                await target.apply_new_password(credentials, "new-pw", 5)

        mock_engine.dispose.assert_called_once()
