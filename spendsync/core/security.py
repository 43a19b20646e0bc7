import base64
import hashlib
import json
from typing import Optional, List, Dict, Any

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from spendsync.core.config import get_settings
from spendsync.core.exceptions import ConfigurationError


def _get_multi_fernet(primary_key: Optional[str], legacy_keys: Optional[List[str]] = None) -> MultiFernet:
    """
    Returns a MultiFernet instance for secret rotation.
    The first key encrypts; every key (including legacy SHA256 derivations) may decrypt.
    """
    all_keys = [primary_key] if primary_key else []
    if legacy_keys:
        all_keys.extend(legacy_keys)

    if not all_keys:
        raise ConfigurationError("ENCRYPTION_KEY is not configured.")

    settings = get_settings()
    salt = settings.KDF_SALT.encode()
    fernet_instances = []

    for k in all_keys:
        key_bytes = k.encode()
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=settings.KDF_ITERATIONS,
        )
        fernet_instances.append(Fernet(base64.urlsafe_b64encode(kdf.derive(key_bytes))))

        # Legacy raw-digest derivation, decrypt only
        legacy_bytes = hashlib.sha256(key_bytes).digest()
        fernet_instances.append(Fernet(base64.urlsafe_b64encode(legacy_bytes)))

    return MultiFernet(fernet_instances)


def _fernet() -> MultiFernet:
    settings = get_settings()
    return _get_multi_fernet(settings.ENCRYPTION_KEY, settings.LEGACY_ENCRYPTION_KEYS)


def encrypt_string(value: str) -> Optional[str]:
    """Symmetrically encrypt a string with the primary key."""
    if not value:
        return None
    return _fernet().encrypt(value.encode()).decode()


def decrypt_string(value: str) -> Optional[str]:
    """Decrypt a value produced by encrypt_string with any active or legacy key."""
    if not value:
        return None
    try:
        return _fernet().decrypt(value.encode()).decode()
    except InvalidToken as e:
        raise ConfigurationError(
            "Stored credentials could not be decrypted.",
            hint="Reconnect the account to store fresh credentials.",
        ) from e


def encrypt_credentials(values: Dict[str, Any]) -> str:
    """Encrypt a provider credential object for storage."""
    return encrypt_string(json.dumps(values, sort_keys=True))


def decrypt_credentials(blob: Optional[str]) -> Dict[str, Any]:
    """Decrypt a stored credential object. An empty blob yields an empty dict."""
    if not blob:
        return {}
    plaintext = decrypt_string(blob)
    try:
        values = json.loads(plaintext)
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            "Stored credentials are corrupted.",
            hint="Reconnect the account to store fresh credentials.",
        ) from e
    if not isinstance(values, dict):
        raise ConfigurationError("Stored credentials have an unexpected shape.")
    return values
