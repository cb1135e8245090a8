from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional


DEFAULT_EXCLUDE_CHARACTERS = "/@\"'\\"


class StoreBackend(Enum):
    AWS = "aws"
    AZURE = "azure"
    MEMORY = "memory"


@dataclass(frozen=True)
class RotationConfig:
    secret_id: Optional[str] = None
    target_endpoint: Optional[str] = None
    target_port: int = 3306
    connect_timeout: float = 5.0
    password_length: int = 32
    exclude_characters: str = DEFAULT_EXCLUDE_CHARACTERS
    propagation_wait_seconds: float = 0.0
    store_backend: StoreBackend = StoreBackend.AWS
    store_timeout: float = 10.0
    aws_region: Optional[str] = None
    secrets_manager_endpoint: Optional[str] = None
    azure_key_vault_url: Optional[str] = None
    azure_tenant_id: Optional[str] = None
    azure_client_id: Optional[str] = None
    azure_use_managed_identity: bool = True
    target_database: Optional[str] = None
    target_ssl_ca: Optional[str] = None
    log_level: str = "INFO"


@dataclass(frozen=True)
class ConfigSchema:
    key: str
    field_name: str
    required: bool
    default_value: Optional[Any]
    description: str
    parser: Callable[[str], Any] = str
    validation_pattern: Optional[str] = None
    allowed_values: Optional[List[Any]] = None
    min_value: Optional[float] = None

    def validate_value(self, value: Any) -> bool:
        if value is None:
            return not self.required

        if self.allowed_values and value not in self.allowed_values:
            return False

        if self.min_value is not None and isinstance(value, (int, float)):
            if value < self.min_value:
                return False

        if isinstance(value, str) and self.validation_pattern:
            import re
            return bool(re.match(self.validation_pattern, value))

        return True


class ConfigError(Exception):
    pass


class ConfigValidationError(ConfigError):
    def __init__(self, key: str, message: str):
        self.key = key
        self.message = message
        super().__init__(f"Configuration validation error for '{key}': {message}")
