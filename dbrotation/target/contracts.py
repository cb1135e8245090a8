from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from ..vault.contracts import DatabaseCredentials


MYSQL_ERROR_ACCESS_DENIED_DB = 1044
MYSQL_ERROR_ACCESS_DENIED = 1045
MYSQL_ERROR_CONNECTION_REFUSED = 2003
MYSQL_ERROR_UNKNOWN_HOST = 2005
MYSQL_ERROR_SERVER_GONE = 2006
MYSQL_ERROR_LOST_CONNECTION = 2013


class ConnectionFailureKind(Enum):
    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TargetConfig:
    driver: str = "mysql+pymysql"
    ssl_ca: Optional[str] = None
    database: Optional[str] = None


class CredentialTarget(Protocol):
    async def authenticate(self, credentials: DatabaseCredentials, timeout: float) -> bool:
        ...

    async def apply_new_password(
        self,
        credentials: DatabaseCredentials,
        new_password: str,
        timeout: float
    ) -> None:
        ...


class TargetError(Exception):
    pass


class TargetConnectionError(TargetError):
    pass


class CredentialRejectedError(TargetError):
    pass


class PasswordChangeError(TargetError):
    pass
