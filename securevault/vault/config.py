"""
Vault Configuration — KDF parameter sets and validated settings.

Reads overrides from environment variables:
    SECUREVAULT_KDF_VERSION = <integer, default 1>
    SECUREVAULT_AUTO_LOCK_ENABLED = <true|false>
    SECUREVAULT_AUTO_LOCK_TIMEOUT = <minutes>
    SECUREVAULT_IDLE_CHECK_INTERVAL = <seconds>

Security Note:
    KDF parameters are public. They must not change for a given version,
    otherwise data encrypted under that version can no longer be read.
"""
import os
import logging

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger("securevault.vault")

MIN_KDF_ITERATIONS = 100_000


class KdfParameters(BaseModel):
    """One versioned PBKDF2-HMAC-SHA256 parameter set."""

    version: int = Field(ge=1)
    iterations: int = Field(ge=MIN_KDF_ITERATIONS)
    salt_prefix: str = ""
    key_length: int = 32

    model_config = {"frozen": True}

    @field_validator("key_length")
    @classmethod
    def validate_key_length(cls, v: int) -> int:
        """Only AES-256 keys are produced."""
        if v != 32:
            raise ValueError(f"key_length must be 32 bytes, got {v}")
        return v


# Vault keys (cloud and local). Salt = prefix + scope label.
VAULT_KDF_PARAMETERS: dict[int, KdfParameters] = {
    1: KdfParameters(version=1, iterations=200_000, salt_prefix="securevault-v1-"),
}

# Share bundles carry their own random salt, so no prefix is used.
SHARE_KDF_PARAMETERS: dict[int, KdfParameters] = {
    1: KdfParameters(version=1, iterations=100_000),
}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    kdf_version: int = Field(default=1)
    share_kdf_version: int = Field(default=1)
    auto_lock_enabled: bool = True
    auto_lock_timeout: int = Field(default=5, ge=1, le=24 * 60)  # minutes
    idle_check_interval: float = Field(default=10.0, gt=0)  # seconds
    passwords_storage_key: str = "securevault_passwords"
    unlock_marker_key: str = "local_vault_unlocked"
    key_check_prefix: str = "securevault_key_check:"

    @field_validator("kdf_version")
    @classmethod
    def validate_kdf_version(cls, v: int) -> int:
        """Ensure the vault KDF version is a known parameter set."""
        if v not in VAULT_KDF_PARAMETERS:
            raise ValueError(
                f"Unknown vault KDF version {v} "
                f"(available: {sorted(VAULT_KDF_PARAMETERS.keys())})"
            )
        return v

    @field_validator("share_kdf_version")
    @classmethod
    def validate_share_kdf_version(cls, v: int) -> int:
        """Ensure the share KDF version is a known parameter set."""
        if v not in SHARE_KDF_PARAMETERS:
            raise ValueError(
                f"Unknown share KDF version {v} "
                f"(available: {sorted(SHARE_KDF_PARAMETERS.keys())})"
            )
        return v

    @model_validator(mode="after")
    def validate_storage_keys(self) -> "VaultConfig":
        """Storage keys must be distinct and non-empty."""
        keys = (self.passwords_storage_key, self.unlock_marker_key)
        if not all(keys) or not self.key_check_prefix:
            raise ValueError("Storage keys cannot be empty")
        if len(set(keys)) != len(keys):
            raise ValueError("Storage keys must be distinct")
        return self

    @property
    def kdf(self) -> KdfParameters:
        return VAULT_KDF_PARAMETERS[self.kdf_version]

    @property
    def share_kdf(self) -> KdfParameters:
        return SHARE_KDF_PARAMETERS[self.share_kdf_version]

    @property
    def sensitive_storage_keys(self) -> tuple[str, ...]:
        """Local storage keys erased by panic."""
        return (self.passwords_storage_key,)

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        values: dict = {
            "auto_lock_enabled": _env_bool("SECUREVAULT_AUTO_LOCK_ENABLED", True),
        }
        if "SECUREVAULT_KDF_VERSION" in os.environ:
            values["kdf_version"] = int(os.environ["SECUREVAULT_KDF_VERSION"])
        if "SECUREVAULT_AUTO_LOCK_TIMEOUT" in os.environ:
            values["auto_lock_timeout"] = int(os.environ["SECUREVAULT_AUTO_LOCK_TIMEOUT"])
        if "SECUREVAULT_IDLE_CHECK_INTERVAL" in os.environ:
            values["idle_check_interval"] = float(
                os.environ["SECUREVAULT_IDLE_CHECK_INTERVAL"]
            )
        config = cls(**values)
        logger.debug(
            "Vault config loaded: kdf_version=%d auto_lock=%s timeout=%d",
            config.kdf_version, config.auto_lock_enabled, config.auto_lock_timeout,
        )
        return config
