import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

import boto3
from azure.core.exceptions import (
    ClientAuthenticationError, HttpResponseError, ResourceNotFoundError,
    ServiceRequestError, ServiceResponseError
)
from azure.identity import DefaultAzureCredential, ManagedIdentityCredential
from azure.keyvault.secrets import SecretClient, SecretProperties
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .contracts import (
    LabelMap, SecretNotFoundError, SecretsManagerConfig, SecretVersion,
    StagingLabel, VaultAccessDeniedError, VaultConfig, VaultError,
    VaultUnavailableError, VersionConflictError
)
from .core import (
    REQUEST_TOKEN_TAG, build_move_intent_tags, build_version_tags,
    diff_label_maps, find_label_holder, find_other_holder, from_aws_stages,
    labels_from_tags, move_intent_from_tags, move_staging_label,
    parse_secret_string, resume_label_move, serialize_payload, to_aws_stage
)


logger = logging.getLogger(__name__)

_AWS_UNAVAILABLE_CODES = {
    "InternalServiceError",
    "ThrottlingException",
    "ServiceUnavailable",
    "RequestTimeout",
    "LimitExceededException",
}


class SecretsManagerStore:
    """SecretStore backed by AWS Secrets Manager staging labels."""

    def __init__(self, config: SecretsManagerConfig, client: Any = None):
        self.config = config
        self._client = client

    def _get_client(self):
        if not self._client:
            self._client = boto3.client(
                "secretsmanager",
                region_name=self.config.region_name,
                endpoint_url=self.config.endpoint_url,
                config=Config(
                    connect_timeout=self.config.timeout_seconds,
                    read_timeout=self.config.timeout_seconds,
                    retries={"max_attempts": self.config.max_attempts, "mode": "standard"},
                ),
            )
        return self._client

    async def _call(self, operation: str, secret_id: str, **kwargs) -> Dict[str, Any]:
        client = self._get_client()
        try:
            return await asyncio.get_event_loop().run_in_executor(
                None, lambda: getattr(client, operation)(SecretId=secret_id, **kwargs)
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code == "ResourceNotFoundException":
                raise SecretNotFoundError(
                    f"Secret {secret_id} or requested version not found"
                ) from e
            if code == "ResourceExistsException":
                raise VersionConflictError(
                    f"Version already exists with different content for {secret_id}"
                ) from e
            if code == "AccessDeniedException":
                raise VaultAccessDeniedError(f"Access denied to secret {secret_id}") from e
            if code in _AWS_UNAVAILABLE_CODES:
                raise VaultUnavailableError(
                    f"Secrets Manager unavailable during {operation}: {code}"
                ) from e
            raise VaultError(f"Secrets Manager {operation} failed: {code}") from e
        except BotoCoreError as e:
            raise VaultUnavailableError(
                f"Secrets Manager unreachable during {operation}: {e}"
            ) from e

    async def list_version_labels(self, secret_id: str) -> LabelMap:
        metadata = await self._call("describe_secret", secret_id)
        versions = metadata.get("VersionIdsToStages", {})
        return {
            version_id: from_aws_stages(stages)
            for version_id, stages in versions.items()
        }

    async def get_current_version(self, secret_id: str) -> SecretVersion:
        response = await self._call(
            "get_secret_value", secret_id, VersionStage=to_aws_stage(StagingLabel.CURRENT)
        )
        return self._to_version(secret_id, response)

    async def get_version(self, secret_id: str, version_id: str) -> SecretVersion:
        response = await self._call("get_secret_value", secret_id, VersionId=version_id)
        return self._to_version(secret_id, response)

    async def version_exists(self, secret_id: str, version_id: str) -> bool:
        next_token: Optional[str] = None
        while True:
            kwargs: Dict[str, Any] = {"IncludeDeprecated": True}
            if next_token:
                kwargs["NextToken"] = next_token
            page = await self._call("list_secret_version_ids", secret_id, **kwargs)
            if any(v.get("VersionId") == version_id for v in page.get("Versions", [])):
                return True
            next_token = page.get("NextToken")
            if not next_token:
                return False

    async def put_version(
        self,
        secret_id: str,
        version_id: str,
        payload: Mapping[str, Any],
        label: StagingLabel = StagingLabel.PENDING
    ) -> SecretVersion:
        if label == StagingLabel.PENDING:
            held_by = find_other_holder(
                await self.list_version_labels(secret_id), label, version_id
            )
            if held_by is not None:
                raise VersionConflictError(
                    f"Secret {secret_id} already has version {held_by} staged as PENDING"
                )

        await self._call(
            "put_secret_value",
            secret_id,
            ClientRequestToken=version_id,
            SecretString=serialize_payload(payload),
            VersionStages=[to_aws_stage(label)],
        )

        if label == StagingLabel.PENDING:
            # Secrets Manager moves AWSPENDING silently when another rotation wrote in between
            labels_map = await self.list_version_labels(secret_id)
            if label not in labels_map.get(version_id, frozenset()):
                raise VersionConflictError(
                    f"Version {version_id} of {secret_id} lost PENDING to another rotation"
                )

        logger.info(
            f"Stored version {version_id} of secret {secret_id} as {label.value}",
            extra={"secret_id": secret_id, "version_id": version_id, "label": label.value}
        )

        return SecretVersion(
            secret_id=secret_id,
            version_id=version_id,
            payload=dict(payload),
            labels=frozenset({label}),
        )

    async def move_label(
        self,
        secret_id: str,
        label: StagingLabel,
        from_version: Optional[str],
        to_version: Optional[str]
    ) -> None:
        if from_version is None and to_version is not None:
            # Secrets Manager refuses to attach a label that is still held elsewhere
            from_version = find_label_holder(
                await self.list_version_labels(secret_id), label
            )

        kwargs: Dict[str, Any] = {"VersionStage": to_aws_stage(label)}
        if to_version is not None:
            kwargs["MoveToVersionId"] = to_version
        if from_version is not None and from_version != to_version:
            kwargs["RemoveFromVersionId"] = from_version

        await self._call("update_secret_version_stage", secret_id, **kwargs)

        logger.info(
            f"Moved {label.value} on secret {secret_id}",
            extra={
                "secret_id": secret_id,
                "label": label.value,
                "from_version": from_version,
                "to_version": to_version
            }
        )

    def _to_version(self, secret_id: str, response: Dict[str, Any]) -> SecretVersion:
        return SecretVersion(
            secret_id=secret_id,
            version_id=response["VersionId"],
            payload=parse_secret_string(response.get("SecretString")),
            labels=from_aws_stages(response.get("VersionStages", [])),
        )


class KeyVaultSecretStore:
    """
    SecretStore backed by Azure Key Vault.

    Key Vault has no staging labels, so every version carries the request
    token and its label as tags. Label moves are applied tag by tag: the
    destination is first marked with the intended move and written last, and
    any reader finding a marked version completes the move before using the
    labels.
    """

    def __init__(self, config: VaultConfig, client: Optional[SecretClient] = None):
        self.config = config
        self._client = client

    def _get_client(self) -> SecretClient:
        if not self._client:
            if self.config.use_managed_identity:
                credential = ManagedIdentityCredential(
                    client_id=self.config.client_id
                )
            else:
                credential = DefaultAzureCredential(
                    exclude_managed_identity_credential=False,
                    tenant_id=self.config.tenant_id
                )

            self._client = SecretClient(
                vault_url=self.config.vault_url,
                credential=credential,
                connection_timeout=self.config.timeout_seconds,
                read_timeout=self.config.timeout_seconds
            )

        return self._client

    async def _run(self, description: str, func):
        try:
            return await asyncio.get_event_loop().run_in_executor(None, func)
        except ResourceNotFoundError as e:
            raise SecretNotFoundError(f"Not found in Key Vault: {description}") from e
        except ClientAuthenticationError as e:
            raise VaultAccessDeniedError(f"Authentication failed for {description}") from e
        except (ServiceRequestError, ServiceResponseError) as e:
            raise VaultUnavailableError(f"Key Vault unreachable: {description}") from e
        except HttpResponseError as e:
            if e.status_code == 403:
                raise VaultAccessDeniedError(f"Access denied: {description}") from e
            if e.status_code in (429, 500, 502, 503, 504):
                raise VaultUnavailableError(f"Key Vault unavailable: {description}") from e
            raise VaultError(f"Key Vault request failed: {description}: {e}") from e

    async def _load_versions(self, secret_id: str) -> Dict[str, SecretProperties]:
        client = self._get_client()
        properties: List[SecretProperties] = await self._run(
            f"versions of {secret_id}",
            lambda: list(client.list_properties_of_secret_versions(secret_id))
        )

        versions = {}
        for props in properties:
            if props.enabled is False:
                continue
            token = (props.tags or {}).get(REQUEST_TOKEN_TAG) or props.version
            versions[token] = props
        return versions

    async def list_version_labels(self, secret_id: str) -> LabelMap:
        versions = await self._resume_interrupted_move(
            secret_id, await self._load_versions(secret_id)
        )
        return {
            token: labels_from_tags(props.tags)
            for token, props in versions.items()
        }

    async def get_current_version(self, secret_id: str) -> SecretVersion:
        labels_map = await self.list_version_labels(secret_id)
        current = find_label_holder(labels_map, StagingLabel.CURRENT)
        if current is None:
            raise SecretNotFoundError(f"Secret {secret_id} has no CURRENT version")
        return await self.get_version(secret_id, current)

    async def get_version(self, secret_id: str, version_id: str) -> SecretVersion:
        versions = await self._load_versions(secret_id)
        props = versions.get(version_id)
        if props is None:
            raise SecretNotFoundError(f"Version {version_id} of {secret_id} not found")

        client = self._get_client()
        secret = await self._run(
            f"{secret_id}/{version_id}",
            lambda: client.get_secret(secret_id, version=props.version)
        )

        return SecretVersion(
            secret_id=secret_id,
            version_id=version_id,
            payload=parse_secret_string(secret.value),
            labels=labels_from_tags(secret.properties.tags),
        )

    async def version_exists(self, secret_id: str, version_id: str) -> bool:
        try:
            versions = await self._load_versions(secret_id)
        except SecretNotFoundError:
            return False
        return version_id in versions

    async def put_version(
        self,
        secret_id: str,
        version_id: str,
        payload: Mapping[str, Any],
        label: StagingLabel = StagingLabel.PENDING
    ) -> SecretVersion:
        if await self.version_exists(secret_id, version_id):
            existing = await self.get_version(secret_id, version_id)
            if dict(existing.payload) != dict(payload):
                raise VersionConflictError(
                    f"Version {version_id} of {secret_id} exists with different content"
                )
            return existing

        if label == StagingLabel.PENDING:
            labels_map = await self.list_version_labels(secret_id)
            held_by = find_other_holder(labels_map, label, version_id)
            if held_by is not None:
                raise VersionConflictError(
                    f"Secret {secret_id} already has version {held_by} staged as PENDING"
                )

        client = self._get_client()
        await self._run(
            f"create {secret_id}/{version_id}",
            lambda: client.set_secret(
                secret_id,
                serialize_payload(payload),
                tags=build_version_tags(version_id, frozenset()),
                content_type="application/json"
            )
        )

        from_version = None
        if label == StagingLabel.CURRENT:
            from_version = find_label_holder(
                await self.list_version_labels(secret_id), label
            )
        await self.move_label(secret_id, label, from_version, version_id)

        logger.info(
            f"Created version {version_id} of secret {secret_id} in Key Vault",
            extra={"secret_id": secret_id, "version_id": version_id, "label": label.value}
        )

        return SecretVersion(
            secret_id=secret_id,
            version_id=version_id,
            payload=dict(payload),
            labels=frozenset({label}),
        )

    async def move_label(
        self,
        secret_id: str,
        label: StagingLabel,
        from_version: Optional[str],
        to_version: Optional[str]
    ) -> None:
        versions = await self._resume_interrupted_move(
            secret_id, await self._load_versions(secret_id)
        )
        before = {token: labels_from_tags(props.tags) for token, props in versions.items()}
        after = move_staging_label(before, label, from_version, to_version)

        if to_version is not None:
            # The destination records the move first so an interrupted move can be replayed
            source = from_version or find_label_holder(before, label)
            props = versions[to_version]
            await self._run(
                f"mark {secret_id}/{to_version}",
                lambda: self._get_client().update_secret_properties(
                    secret_id,
                    version=props.version,
                    tags=build_move_intent_tags(props.tags, label, source)
                )
            )

        retagged = await self._apply_labels(secret_id, versions, before, after, to_version)

        logger.info(
            f"Moved {label.value} on secret {secret_id}",
            extra={
                "secret_id": secret_id,
                "label": label.value,
                "from_version": from_version,
                "to_version": to_version,
                "retagged_versions": retagged
            }
        )

    async def _apply_labels(
        self,
        secret_id: str,
        versions: Dict[str, SecretProperties],
        before: LabelMap,
        after: LabelMap,
        destination: Optional[str]
    ) -> int:
        """Write changed label tags, the destination version last."""
        changes = diff_label_maps(before, after)
        ordered = [token for token in changes if token != destination]
        if destination is not None:
            ordered.append(destination)

        client = self._get_client()
        for token in ordered:
            props = versions[token]
            await self._run(
                f"retag {secret_id}/{token}",
                lambda p=props, t=token: client.update_secret_properties(
                    secret_id,
                    version=p.version,
                    tags=build_version_tags(t, after[t], p.tags)
                )
            )
        return len(ordered)

    async def _resume_interrupted_move(
        self,
        secret_id: str,
        versions: Dict[str, SecretProperties]
    ) -> Dict[str, SecretProperties]:
        for token, props in versions.items():
            intent = move_intent_from_tags(props.tags)
            if intent is None:
                continue

            label, from_version = intent
            before = {t: labels_from_tags(p.tags) for t, p in versions.items()}
            after = resume_label_move(before, label, from_version, token)

            logger.warning(
                f"Completing interrupted move of {label.value} to {token} on secret {secret_id}",
                extra={"secret_id": secret_id, "label": label.value, "to_version": token}
            )

            await self._apply_labels(secret_id, versions, before, after, token)
            return await self._load_versions(secret_id)

        return versions
