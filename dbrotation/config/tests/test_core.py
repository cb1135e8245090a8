import pytest

from dbrotation.config.contracts import (
    DEFAULT_EXCLUDE_CHARACTERS, ConfigValidationError, RotationConfig,
    StoreBackend
)
from dbrotation.config.core import (
    create_config_schema, create_rotation_config, parse_bool,
    parse_config_values, validate_rotation_config
)


class TestConfigSchema:
    def test_every_schema_maps_to_a_config_field(self):
        fields = set(RotationConfig.__dataclass_fields__)

        for schema in create_config_schema().values():
            assert schema.field_name in fields

    def test_pattern_validation(self):
        schema = create_config_schema()["AZURE_KEY_VAULT_URL"]

        assert schema.validate_value("https://rotation-vault.vault.azure.net/")
        assert not schema.validate_value("https://example.com/")

    def test_min_value(self):
        schema = create_config_schema()["ROTATION_PASSWORD_LENGTH"]

        assert schema.validate_value(32)
        assert not schema.validate_value(8)


class TestParseConfigValues:
    def test_defaults(self):
        config = create_rotation_config({})

        assert config == RotationConfig()
        assert config.exclude_characters == DEFAULT_EXCLUDE_CHARACTERS
        assert config.store_backend == StoreBackend.AWS

    def test_parses_typed_values(self):
        values = parse_config_values({
            "ROTATION_SECRET_ID": "db-cred",
            "ROTATION_TARGET_PORT": "3307",
            "ROTATION_CONNECT_TIMEOUT": "2.5",
            "ROTATION_PASSWORD_LENGTH": "40",
            "SECRET_STORE_BACKEND": "Memory",
            "AZURE_USE_MANAGED_IDENTITY": "false",
            "LOG_LEVEL": "debug",
        })

        assert values["secret_id"] == "db-cred"
        assert values["target_port"] == 3307
        assert values["connect_timeout"] == 2.5
        assert values["password_length"] == 40
        assert values["store_backend"] == StoreBackend.MEMORY
        assert values["azure_use_managed_identity"] is False
        assert values["log_level"] == "DEBUG"

    def test_unparseable_value(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            parse_config_values({"ROTATION_TARGET_PORT": "mysql"})

        assert exc_info.value.key == "ROTATION_TARGET_PORT"

    def test_unknown_backend(self):
        with pytest.raises(ConfigValidationError):
            parse_config_values({"SECRET_STORE_BACKEND": "vaultwarden"})

    def test_password_too_short(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            parse_config_values({"ROTATION_PASSWORD_LENGTH": "8"})

        assert exc_info.value.key == "ROTATION_PASSWORD_LENGTH"

    def test_unknown_log_level(self):
        with pytest.raises(ConfigValidationError):
            parse_config_values({"LOG_LEVEL": "verbose"})

    def test_parse_bool(self):
        assert parse_bool("Yes") is True
        assert parse_bool("0") is False
        with pytest.raises(ValueError):
            parse_bool("maybe")


class TestValidateRotationConfig:
    def test_valid_default(self):
        assert validate_rotation_config(RotationConfig()) == []

    def test_azure_requires_vault_url(self):
        errors = validate_rotation_config(RotationConfig(store_backend=StoreBackend.AZURE))

        assert any("AZURE_KEY_VAULT_URL" in error for error in errors)

    def test_azure_without_managed_identity_requires_tenant(self):
        config = RotationConfig(
            store_backend=StoreBackend.AZURE,
            azure_key_vault_url="https://rotation-vault.vault.azure.net/",
            azure_use_managed_identity=False
        )

        assert any("AZURE_TENANT_ID" in error for error in validate_rotation_config(config))

    def test_exclusions_emptying_a_class(self):
        errors = validate_rotation_config(RotationConfig(exclude_characters="0123456789"))

        assert errors == ["Excluded characters remove every digit character"]

    def test_create_rotation_config_reports_all_errors(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            create_rotation_config({
                "SECRET_STORE_BACKEND": "azure",
                "ROTATION_EXCLUDE_CHARACTERS": "abcdefghijklmnopqrstuvwxyz",
            })

        assert "lowercase" in exc_info.value.message
        assert "AZURE_KEY_VAULT_URL" in exc_info.value.message
