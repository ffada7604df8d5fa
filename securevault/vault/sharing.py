"""
Share envelopes — password records readable by anyone holding a link token.

Bundle format:
    base64( JSON {"s": b64(salt 16B), "iv": b64(nonce 12B), "ct": b64(ct + tag)} )

The key is PBKDF2(token, salt) with the share KDF parameter set. Legacy
bundles were plain base64 JSON of the record and are still readable.

Security Note:
    The token is the only secret; it travels in the link and is never logged.
"""
import os
import re
import base64
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional, Union

import orjson
from pydantic import ValidationError

from ..exceptions import DecryptionError, DerivationError, MalformedEnvelopeError
from .config import KdfParameters, SHARE_KDF_PARAMETERS
from .crypto import decrypt, derive_key_from_salt, encrypt, pack_envelope, unpack_envelope
from .models import SharedPassword

logger = logging.getLogger("securevault.vault")

SHARE_SALT_SIZE = 16
SHARE_TOKEN_BYTES = 32

SHARE_EXPIRY = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
}

_TOKEN_PATTERN = re.compile(r"^[a-f0-9]{64}$")


def generate_share_token() -> str:
    """Return a random 64-character lowercase hex token."""
    return secrets.token_hex(SHARE_TOKEN_BYTES)


def is_valid_share_token(token: Any) -> bool:
    return isinstance(token, str) and _TOKEN_PATTERN.match(token) is not None


def share_expiry(option: str = "1h", now: Optional[datetime] = None) -> datetime:
    """Absolute expiry for an expiry option; unknown options mean one hour."""
    now = now or datetime.now(timezone.utc)
    return now + SHARE_EXPIRY.get(option, SHARE_EXPIRY["1h"])


def is_legacy_share(bundle: str) -> bool:
    """True for old bundles: base64 JSON carrying ``title`` and ``password``."""
    try:
        parsed = orjson.loads(base64.b64decode(bundle, validate=True))
    except (ValueError, TypeError):
        return False
    return isinstance(parsed, dict) and "title" in parsed and "password" in parsed


async def seal_share(
    payload: Union[SharedPassword, Mapping[str, Any]],
    token: str,
    params: KdfParameters = SHARE_KDF_PARAMETERS[1],
) -> str:
    """Encrypt a share payload under a key derived from token.

    Raises:
        DerivationError: If the token is not 64 lowercase hex characters.
    """
    if not is_valid_share_token(token):
        raise DerivationError("Share token must be 64 lowercase hex characters")
    if not isinstance(payload, SharedPassword):
        payload = SharedPassword.model_validate(payload)
    text = payload.model_dump_json(exclude_none=True)
    salt = os.urandom(SHARE_SALT_SIZE)
    key = await derive_key_from_salt(token, salt, params, purpose="share")
    iv, ct = unpack_envelope(await encrypt(text, key))
    packed = orjson.dumps({
        "s": base64.b64encode(salt).decode("ascii"),
        "iv": base64.b64encode(iv).decode("ascii"),
        "ct": base64.b64encode(ct).decode("ascii"),
    })
    return base64.b64encode(packed).decode("ascii")


async def open_share(
    bundle: str,
    token: str,
    params: KdfParameters = SHARE_KDF_PARAMETERS[1],
) -> SharedPassword:
    """Decode a share bundle with its token.

    Raises:
        MalformedEnvelopeError: If the bundle does not unpack.
        DecryptionError: If the token does not open the bundle.
    """
    if is_legacy_share(bundle):
        text = base64.b64decode(bundle).decode("utf-8")
        logger.debug("Opened legacy share bundle")
    else:
        try:
            packed = orjson.loads(base64.b64decode(bundle, validate=True))
            salt = base64.b64decode(packed["s"], validate=True)
            envelope = pack_envelope(
                base64.b64decode(packed["iv"], validate=True),
                base64.b64decode(packed["ct"], validate=True),
            )
        except (ValueError, TypeError, KeyError) as err:
            raise MalformedEnvelopeError("Value is not a share bundle") from err
        key = await derive_key_from_salt(token, salt, params, purpose="share")
        text = await decrypt(envelope, key)
    try:
        return SharedPassword.model_validate_json(text)
    except ValidationError as err:
        raise DecryptionError("Shared payload is not a password record") from err
