import asyncio
import logging
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.pool import NullPool

from ..vault.contracts import DatabaseCredentials
from .contracts import (
    ConnectionFailureKind, CredentialRejectedError, PasswordChangeError,
    TargetConfig, TargetConnectionError
)
from .core import (
    ALTER_OWN_PASSWORD_SQL, build_connect_args, build_connection_url,
    classify_error_code, extract_error_code
)


logger = logging.getLogger(__name__)


class MySQLCredentialTarget:
    """Single-user MySQL target: each account logs in and changes its own password."""

    def __init__(self, config: Optional[TargetConfig] = None):
        self.config = config or TargetConfig()

    def _create_engine(self, credentials: DatabaseCredentials, timeout: float):
        return create_engine(
            build_connection_url(credentials, self.config),
            poolclass=NullPool,
            connect_args=build_connect_args(timeout, self.config),
        )

    async def authenticate(self, credentials: DatabaseCredentials, timeout: float) -> bool:
        def _connect():
            engine = self._create_engine(credentials, timeout)
            try:
                with engine.connect():
                    pass
            finally:
                engine.dispose()

        try:
            await asyncio.get_event_loop().run_in_executor(None, _connect)
        except OperationalError as e:
            code = extract_error_code(e)
            if classify_error_code(code) == ConnectionFailureKind.REJECTED:
                logger.info(
                    f"Login rejected for {credentials.username}@{credentials.host}",
                    extra={"host": credentials.host, "username": credentials.username, "mysql_error": code}
                )
                return False
            raise TargetConnectionError(
                f"Could not reach {credentials.host}:{credentials.port} (error {code})"
            ) from e

        logger.debug(
            f"Login succeeded for {credentials.username}@{credentials.host}",
            extra={"host": credentials.host, "username": credentials.username}
        )
        return True

    async def apply_new_password(
        self,
        credentials: DatabaseCredentials,
        new_password: str,
        timeout: float
    ) -> None:
        def _alter():
            engine = self._create_engine(credentials, timeout)
            try:
                with engine.begin() as connection:
                    connection.execute(text(ALTER_OWN_PASSWORD_SQL), {"password": new_password})
            finally:
                engine.dispose()

        try:
            await asyncio.get_event_loop().run_in_executor(None, _alter)
        except OperationalError as e:
            code = extract_error_code(e)
            kind = classify_error_code(code)
            if kind == ConnectionFailureKind.REJECTED:
                raise CredentialRejectedError(
                    f"Login rejected for {credentials.username}@{credentials.host}"
                ) from e
            if kind == ConnectionFailureKind.UNAVAILABLE:
                raise TargetConnectionError(
                    f"Could not reach {credentials.host}:{credentials.port} (error {code})"
                ) from e
            raise PasswordChangeError(
                f"Password change failed for {credentials.username} (error {code})"
            ) from e
        except DBAPIError as e:
            raise PasswordChangeError(
                f"Password change failed for {credentials.username} "
                f"(error {extract_error_code(e)})"
            ) from e

        logger.info(
            f"Changed password for {credentials.username}@{credentials.host}",
            extra={"host": credentials.host, "username": credentials.username}
        )
