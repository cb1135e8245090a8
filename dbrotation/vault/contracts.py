from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Protocol


class StagingLabel(Enum):
    CURRENT = "CURRENT"
    PENDING = "PENDING"
    PREVIOUS = "PREVIOUS"


LabelMap = Dict[str, FrozenSet[StagingLabel]]


@dataclass(frozen=True)
class SecretVersion:
    secret_id: str
    version_id: str
    payload: Mapping[str, Any]
    labels: FrozenSet[StagingLabel] = field(default_factory=frozenset)

    @property
    def is_current(self) -> bool:
        return StagingLabel.CURRENT in self.labels

    @property
    def is_pending(self) -> bool:
        return StagingLabel.PENDING in self.labels

    def __repr__(self) -> str:
        labels = sorted(label.value for label in self.labels)
        return (
            f"SecretVersion(secret_id={self.secret_id!r}, "
            f"version_id={self.version_id!r}, labels={labels}, payload=***)"
        )


@dataclass(frozen=True)
class DatabaseCredentials:
    host: str
    username: str
    password: str
    port: int = 3306

    def __repr__(self) -> str:
        return (
            f"DatabaseCredentials(host={self.host!r}, username={self.username!r}, "
            f"port={self.port}, password=***)"
        )


@dataclass(frozen=True)
class VaultConfig:
    vault_url: str
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    use_managed_identity: bool = True
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class SecretsManagerConfig:
    region_name: Optional[str] = None
    endpoint_url: Optional[str] = None
    timeout_seconds: float = 10.0
    max_attempts: int = 3


class SecretStore(Protocol):
    async def get_current_version(self, secret_id: str) -> SecretVersion:
        ...

    async def get_version(self, secret_id: str, version_id: str) -> SecretVersion:
        ...

    async def version_exists(self, secret_id: str, version_id: str) -> bool:
        ...

    async def put_version(
        self,
        secret_id: str,
        version_id: str,
        payload: Mapping[str, Any],
        label: StagingLabel = StagingLabel.PENDING,
    ) -> SecretVersion:
        ...

    async def list_version_labels(self, secret_id: str) -> LabelMap:
        ...

    async def move_label(
        self,
        secret_id: str,
        label: StagingLabel,
        from_version: Optional[str],
        to_version: Optional[str],
    ) -> None:
        ...


class VaultError(Exception):
    pass


class SecretNotFoundError(VaultError):
    pass


class VersionConflictError(VaultError):
    pass


class StagingError(VaultError):
    pass


class InvalidPayloadError(VaultError):
    pass


class VaultAccessDeniedError(VaultError):
    pass


class VaultUnavailableError(VaultError):
    pass
