from typing import Any, Dict, Optional

from sqlalchemy.engine import URL

from ..vault.contracts import DatabaseCredentials
from .contracts import (
    MYSQL_ERROR_ACCESS_DENIED, MYSQL_ERROR_ACCESS_DENIED_DB,
    MYSQL_ERROR_CONNECTION_REFUSED, MYSQL_ERROR_LOST_CONNECTION,
    MYSQL_ERROR_SERVER_GONE, MYSQL_ERROR_UNKNOWN_HOST, ConnectionFailureKind,
    TargetConfig
)


# Scoped to the logged-in account; never a cluster-level master password change
ALTER_OWN_PASSWORD_SQL = "ALTER USER CURRENT_USER() IDENTIFIED BY :password"

_REJECTED_CODES = {MYSQL_ERROR_ACCESS_DENIED, MYSQL_ERROR_ACCESS_DENIED_DB}
_UNAVAILABLE_CODES = {
    MYSQL_ERROR_CONNECTION_REFUSED,
    MYSQL_ERROR_UNKNOWN_HOST,
    MYSQL_ERROR_SERVER_GONE,
    MYSQL_ERROR_LOST_CONNECTION,
}


def build_connection_url(
    credentials: DatabaseCredentials,
    config: TargetConfig
) -> URL:
    return URL.create(
        config.driver,
        username=credentials.username,
        password=credentials.password,
        host=credentials.host,
        port=credentials.port,
        database=config.database,
    )


def build_connect_args(timeout: float, config: TargetConfig) -> Dict[str, Any]:
    args: Dict[str, Any] = {"connect_timeout": max(1, int(round(timeout)))}
    if config.ssl_ca:
        args["ssl"] = {"ca": config.ssl_ca}
    return args


def extract_error_code(error: BaseException) -> Optional[int]:
    original = getattr(error, "orig", None) or error
    args = getattr(original, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


def classify_error_code(code: Optional[int]) -> ConnectionFailureKind:
    if code in _REJECTED_CODES:
        return ConnectionFailureKind.REJECTED
    if code in _UNAVAILABLE_CODES:
        return ConnectionFailureKind.UNAVAILABLE
    return ConnectionFailureKind.UNKNOWN
