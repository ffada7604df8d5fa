"""
Key Derivation Service — cloud and local vault keys.

* Cloud key: token = server-asserted user id, label = ``cloud-<user id>``.
* Local key: token = user passphrase, label = ``local-<scope id>``.

The scope id keeps anonymous local vaults apart from each signed-in
identity's local vault on the same device.
"""
from typing import Optional

from .config import VaultConfig
from .crypto import DerivedKey, derive_key

ANONYMOUS_SCOPE = "anonymous"


class KeyDerivationService:
    """Derives the two session keys with the configured KDF parameters."""

    def __init__(self, config: Optional[VaultConfig] = None):
        self._config = config or VaultConfig()

    @property
    def config(self) -> VaultConfig:
        return self._config

    async def derive_cloud_key(self, user_id: str) -> DerivedKey:
        return await derive_key(
            user_id, f"cloud-{user_id}", self._config.kdf, purpose="cloud",
        )

    async def derive_local_key(
        self, passphrase: str, scope_id: str = ANONYMOUS_SCOPE,
    ) -> DerivedKey:
        return await derive_key(
            passphrase, f"local-{scope_id}", self._config.kdf, purpose="local",
        )
