"""In-memory SecretStore for local dry runs and tests."""

import asyncio
import copy
from typing import Any, Dict, Mapping, Optional

from .contracts import (
    LabelMap, SecretNotFoundError, SecretVersion, StagingLabel,
    VersionConflictError
)
from .core import find_label_holder, find_other_holder, move_staging_label


class InMemorySecretStore:
    def __init__(self):
        self._payloads: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._labels: Dict[str, LabelMap] = {}
        self._lock: Optional[asyncio.Lock] = None

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def seed(
        self,
        secret_id: str,
        version_id: str,
        payload: Mapping[str, Any],
        label: Optional[StagingLabel] = StagingLabel.CURRENT
    ) -> None:
        """Install a version directly, bypassing label moves."""
        self._payloads.setdefault(secret_id, {})[version_id] = copy.deepcopy(dict(payload))
        labels = self._labels.setdefault(secret_id, {})
        labels[version_id] = frozenset({label}) if label else frozenset()

    def snapshot(self, secret_id: str) -> Dict[str, Any]:
        return {
            "payloads": copy.deepcopy(self._payloads.get(secret_id, {})),
            "labels": dict(self._labels.get(secret_id, {})),
        }

    def _require_secret(self, secret_id: str) -> None:
        if secret_id not in self._payloads:
            raise SecretNotFoundError(f"Secret {secret_id} not found")

    def _build(self, secret_id: str, version_id: str) -> SecretVersion:
        return SecretVersion(
            secret_id=secret_id,
            version_id=version_id,
            payload=copy.deepcopy(self._payloads[secret_id][version_id]),
            labels=self._labels[secret_id].get(version_id, frozenset()),
        )

    async def list_version_labels(self, secret_id: str) -> LabelMap:
        async with self._get_lock():
            self._require_secret(secret_id)
            return dict(self._labels[secret_id])

    async def get_current_version(self, secret_id: str) -> SecretVersion:
        async with self._get_lock():
            self._require_secret(secret_id)
            current = find_label_holder(self._labels[secret_id], StagingLabel.CURRENT)
            if current is None:
                raise SecretNotFoundError(f"Secret {secret_id} has no CURRENT version")
            return self._build(secret_id, current)

    async def get_version(self, secret_id: str, version_id: str) -> SecretVersion:
        async with self._get_lock():
            self._require_secret(secret_id)
            if version_id not in self._payloads[secret_id]:
                raise SecretNotFoundError(f"Version {version_id} of {secret_id} not found")
            return self._build(secret_id, version_id)

    async def version_exists(self, secret_id: str, version_id: str) -> bool:
        async with self._get_lock():
            return version_id in self._payloads.get(secret_id, {})

    async def put_version(
        self,
        secret_id: str,
        version_id: str,
        payload: Mapping[str, Any],
        label: StagingLabel = StagingLabel.PENDING
    ) -> SecretVersion:
        async with self._get_lock():
            self._require_secret(secret_id)
            versions = self._payloads[secret_id]

            if version_id in versions:
                if versions[version_id] != dict(payload):
                    raise VersionConflictError(
                        f"Version {version_id} of {secret_id} exists with different content"
                    )
                return self._build(secret_id, version_id)

            labels = self._labels[secret_id]
            if label == StagingLabel.PENDING:
                held_by = find_other_holder(labels, label, version_id)
                if held_by is not None:
                    raise VersionConflictError(
                        f"Secret {secret_id} already has version {held_by} staged as PENDING"
                    )

            versions[version_id] = copy.deepcopy(dict(payload))
            labels[version_id] = frozenset()

            from_version = None
            if label == StagingLabel.CURRENT:
                from_version = find_label_holder(labels, label)
            self._labels[secret_id] = move_staging_label(labels, label, from_version, version_id)

            return self._build(secret_id, version_id)

    async def move_label(
        self,
        secret_id: str,
        label: StagingLabel,
        from_version: Optional[str],
        to_version: Optional[str]
    ) -> None:
        async with self._get_lock():
            self._require_secret(secret_id)
            self._labels[secret_id] = move_staging_label(
                self._labels[secret_id], label, from_version, to_version
            )
