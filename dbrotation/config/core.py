import string
from typing import Any, Dict, List, Mapping

from .contracts import (
    DEFAULT_EXCLUDE_CHARACTERS, ConfigSchema, ConfigValidationError,
    RotationConfig, StoreBackend
)


MIN_PASSWORD_LENGTH = 12


def parse_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def create_config_schema() -> Dict[str, ConfigSchema]:
    return {
        "ROTATION_SECRET_ID": ConfigSchema(
            key="ROTATION_SECRET_ID",
            field_name="secret_id",
            required=False,
            default_value=None,
            description="Secret name or ARN this rotator is scoped to"
        ),

        "ROTATION_TARGET_ENDPOINT": ConfigSchema(
            key="ROTATION_TARGET_ENDPOINT",
            field_name="target_endpoint",
            required=False,
            default_value=None,
            description="Database host used when the secret payload has none"
        ),

        "ROTATION_TARGET_PORT": ConfigSchema(
            key="ROTATION_TARGET_PORT",
            field_name="target_port",
            required=False,
            default_value=3306,
            description="Database port used when the secret payload has none",
            parser=int,
            min_value=1
        ),

        "ROTATION_CONNECT_TIMEOUT": ConfigSchema(
            key="ROTATION_CONNECT_TIMEOUT",
            field_name="connect_timeout",
            required=False,
            default_value=5.0,
            description="Seconds to wait for a database login attempt",
            parser=float,
            min_value=1
        ),

        "ROTATION_PASSWORD_LENGTH": ConfigSchema(
            key="ROTATION_PASSWORD_LENGTH",
            field_name="password_length",
            required=False,
            default_value=32,
            description="Length of generated passwords",
            parser=int,
            min_value=MIN_PASSWORD_LENGTH
        ),

        "ROTATION_EXCLUDE_CHARACTERS": ConfigSchema(
            key="ROTATION_EXCLUDE_CHARACTERS",
            field_name="exclude_characters",
            required=False,
            default_value=DEFAULT_EXCLUDE_CHARACTERS,
            description="Characters never used in generated passwords"
        ),

        "ROTATION_PROPAGATION_WAIT": ConfigSchema(
            key="ROTATION_PROPAGATION_WAIT",
            field_name="propagation_wait_seconds",
            required=False,
            default_value=0.0,
            description="Seconds to wait after a password change before returning",
            parser=float,
            min_value=0
        ),

        "SECRET_STORE_BACKEND": ConfigSchema(
            key="SECRET_STORE_BACKEND",
            field_name="store_backend",
            required=False,
            default_value=StoreBackend.AWS,
            description="Secret store implementation",
            parser=lambda value: StoreBackend(value.strip().lower()),
            allowed_values=list(StoreBackend)
        ),

        "SECRET_STORE_TIMEOUT": ConfigSchema(
            key="SECRET_STORE_TIMEOUT",
            field_name="store_timeout",
            required=False,
            default_value=10.0,
            description="Seconds to wait for secret store calls",
            parser=float,
            min_value=1
        ),

        "AWS_REGION": ConfigSchema(
            key="AWS_REGION",
            field_name="aws_region",
            required=False,
            default_value=None,
            description="AWS region of the Secrets Manager endpoint"
        ),

        "SECRETS_MANAGER_ENDPOINT": ConfigSchema(
            key="SECRETS_MANAGER_ENDPOINT",
            field_name="secrets_manager_endpoint",
            required=False,
            default_value=None,
            description="Override for the Secrets Manager endpoint URL",
            validation_pattern=r"^https?://"
        ),

        "AZURE_KEY_VAULT_URL": ConfigSchema(
            key="AZURE_KEY_VAULT_URL",
            field_name="azure_key_vault_url",
            required=False,
            default_value=None,
            description="Azure Key Vault URL for the azure store backend",
            validation_pattern=r"^https://.*\.vault\.azure\.net/?$"
        ),

        "AZURE_TENANT_ID": ConfigSchema(
            key="AZURE_TENANT_ID",
            field_name="azure_tenant_id",
            required=False,
            default_value=None,
            description="Azure AD tenant ID"
        ),

        "AZURE_CLIENT_ID": ConfigSchema(
            key="AZURE_CLIENT_ID",
            field_name="azure_client_id",
            required=False,
            default_value=None,
            description="Client ID of the managed identity or application"
        ),

        "AZURE_USE_MANAGED_IDENTITY": ConfigSchema(
            key="AZURE_USE_MANAGED_IDENTITY",
            field_name="azure_use_managed_identity",
            required=False,
            default_value=True,
            description="Authenticate to Key Vault with a managed identity",
            parser=parse_bool
        ),

        "ROTATION_TARGET_DATABASE": ConfigSchema(
            key="ROTATION_TARGET_DATABASE",
            field_name="target_database",
            required=False,
            default_value=None,
            description="Database selected on login, if any"
        ),

        "ROTATION_TARGET_SSL_CA": ConfigSchema(
            key="ROTATION_TARGET_SSL_CA",
            field_name="target_ssl_ca",
            required=False,
            default_value=None,
            description="CA bundle path for TLS connections to the database"
        ),

        "LOG_LEVEL": ConfigSchema(
            key="LOG_LEVEL",
            field_name="log_level",
            required=False,
            default_value="INFO",
            description="Application log level",
            parser=lambda value: value.strip().upper(),
            allowed_values=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        ),
    }


def parse_config_values(environ: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}

    for key, schema in create_config_schema().items():
        raw = environ.get(key)

        if raw is None or raw == "":
            if schema.required:
                raise ConfigValidationError(key, "required configuration is missing")
            values[schema.field_name] = schema.default_value
            continue

        try:
            value = schema.parser(raw)
        except ValueError as e:
            raise ConfigValidationError(key, str(e)) from e

        if not schema.validate_value(value):
            raise ConfigValidationError(key, f"invalid value {raw!r}")

        values[schema.field_name] = value

    return values


def validate_rotation_config(config: RotationConfig) -> List[str]:
    errors = []

    if config.password_length < MIN_PASSWORD_LENGTH:
        errors.append(f"Password length must be at least {MIN_PASSWORD_LENGTH}")

    usable_punctuation = set(string.punctuation) - set(config.exclude_characters)
    for name, alphabet in (
        ("lowercase", string.ascii_lowercase),
        ("uppercase", string.ascii_uppercase),
        ("digit", string.digits),
    ):
        if not set(alphabet) - set(config.exclude_characters):
            errors.append(f"Excluded characters remove every {name} character")
    if not usable_punctuation:
        errors.append("Excluded characters remove every punctuation character")

    if config.connect_timeout <= 0:
        errors.append("Connect timeout must be positive")

    if config.store_backend == StoreBackend.AZURE and not config.azure_key_vault_url:
        errors.append("AZURE_KEY_VAULT_URL is required for the azure store backend")

    if (
        config.store_backend == StoreBackend.AZURE
        and config.azure_use_managed_identity is False
        and not config.azure_tenant_id
    ):
        errors.append("AZURE_TENANT_ID is required without a managed identity")

    return errors


def create_rotation_config(environ: Mapping[str, str]) -> RotationConfig:
    config = RotationConfig(**parse_config_values(environ))

    errors = validate_rotation_config(config)
    if errors:
        raise ConfigValidationError("rotation", "; ".join(errors))

    return config
