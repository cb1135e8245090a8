"""
Shared fixtures: an in-memory secret store seeded with one CURRENT version
and a fake MySQL server that tracks account passwords.
"""

from typing import Dict, List, Tuple

import pytest

from dbrotation.config.contracts import RotationConfig
from dbrotation.rotation.shell import RotationController
from dbrotation.target.contracts import CredentialRejectedError, TargetConnectionError
from dbrotation.vault.contracts import DatabaseCredentials, StagingLabel
from dbrotation.vault.memory import InMemorySecretStore


SECRET_ID = "db-cred"
CURRENT_PAYLOAD = {
    "engine": "mysql",
    "host": "h",
    "username": "app",
    "password": "old",
    "port": 3306,
}


class FakeMySQLTarget:
    def __init__(self):
        self.accounts: Dict[Tuple[str, str], str] = {}
        self.unreachable = False
        self.authentications: List[Tuple[str, str]] = []
        self.password_changes: List[Tuple[str, str, str]] = []

    def add_account(self, host: str, username: str, password: str) -> None:
        self.accounts[(host, username)] = password

    def accepts(self, host: str, username: str, password: str) -> bool:
        return self.accounts.get((host, username)) == password

    async def authenticate(self, credentials: DatabaseCredentials, timeout: float) -> bool:
        if self.unreachable:
            raise TargetConnectionError(f"{credentials.host} unreachable")
        self.authentications.append((credentials.username, credentials.password))
        return self.accepts(credentials.host, credentials.username, credentials.password)

    async def apply_new_password(
        self,
        credentials: DatabaseCredentials,
        new_password: str,
        timeout: float
    ) -> None:
        if self.unreachable:
            raise TargetConnectionError(f"{credentials.host} unreachable")
        if not self.accepts(credentials.host, credentials.username, credentials.password):
            raise CredentialRejectedError(f"login rejected for {credentials.username}")
        self.accounts[(credentials.host, credentials.username)] = new_password
        self.password_changes.append((credentials.username, credentials.password, new_password))


@pytest.fixture
def memory_store():
    store = InMemorySecretStore()
    store.seed(SECRET_ID, "v1", CURRENT_PAYLOAD, StagingLabel.CURRENT)
    return store


@pytest.fixture
def fake_target():
    target = FakeMySQLTarget()
    target.add_account("h", "app", "old")
    return target


@pytest.fixture
def rotation_config():
    return RotationConfig(password_length=20)


@pytest.fixture
def published_events():
    return []


@pytest.fixture
def controller(memory_store, fake_target, rotation_config, published_events):
    async def publish(event):
        published_events.append(event)

    return RotationController(
        store=memory_store,
        target=fake_target,
        config=rotation_config,
        event_publisher=publish
    )
