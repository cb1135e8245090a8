import logging
import os
from typing import Mapping, Optional

from ..target.contracts import CredentialTarget, TargetConfig
from ..target.shell import MySQLCredentialTarget
from ..vault.contracts import SecretsManagerConfig, SecretStore, VaultConfig
from ..vault.memory import InMemorySecretStore
from ..vault.shell import KeyVaultSecretStore, SecretsManagerStore
from .contracts import RotationConfig, StoreBackend
from .core import create_rotation_config


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def load_rotation_config(environ: Optional[Mapping[str, str]] = None) -> RotationConfig:
    config = create_rotation_config(os.environ if environ is None else environ)

    logger.debug(
        "Loaded rotation configuration",
        extra={
            "secret_id": config.secret_id,
            "store_backend": config.store_backend.value,
            "target_port": config.target_port,
            "connect_timeout": config.connect_timeout
        }
    )

    return config


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(format=LOG_FORMAT)
    logging.getLogger().setLevel(level)


def build_secret_store(config: RotationConfig) -> SecretStore:
    if config.store_backend == StoreBackend.AZURE:
        return KeyVaultSecretStore(
            VaultConfig(
                vault_url=config.azure_key_vault_url,
                tenant_id=config.azure_tenant_id,
                client_id=config.azure_client_id,
                use_managed_identity=config.azure_use_managed_identity,
                timeout_seconds=config.store_timeout
            )
        )

    if config.store_backend == StoreBackend.MEMORY:
        logger.warning("Using in-memory secret store; nothing will be persisted")
        return InMemorySecretStore()

    return SecretsManagerStore(
        SecretsManagerConfig(
            region_name=config.aws_region,
            endpoint_url=config.secrets_manager_endpoint,
            timeout_seconds=config.store_timeout
        )
    )


def build_credential_target(config: RotationConfig) -> CredentialTarget:
    return MySQLCredentialTarget(
        TargetConfig(
            ssl_ca=config.target_ssl_ca,
            database=config.target_database
        )
    )
