"""
Backup artifact framing: optional gzip compression followed by optional
AES-256-GCM encryption.

Encrypted layout: ``ENCRYPTED_MAGIC || nonce(12) || ciphertext+tag``.
Checksums are always computed over the final stored bytes.
"""

import gzip
import hashlib
import secrets
import zlib
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from lib.constants import AES_NONCE_SIZE, ENCRYPTED_MAGIC, GZIP_MAGIC
from lib.exceptions import ConfigurationError, IntegrityError


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def is_encrypted(data: bytes) -> bool:
    return data.startswith(ENCRYPTED_MAGIC)


def is_gzip(data: bytes) -> bool:
    return data.startswith(GZIP_MAGIC)


def encrypt(plaintext: bytes, key: bytes) -> bytes:
    nonce = secrets.token_bytes(AES_NONCE_SIZE)
    return ENCRYPTED_MAGIC + nonce + AESGCM(key).encrypt(nonce, plaintext, ENCRYPTED_MAGIC)


def decrypt(blob: bytes, key: bytes) -> bytes:
    """
    Reverse :func:`encrypt`.

    Raises:
        IntegrityError: If the header is missing or authentication fails
    """
    if not is_encrypted(blob):
        raise IntegrityError("artifact is not encrypted")
    body = blob[len(ENCRYPTED_MAGIC) :]
    if len(body) <= AES_NONCE_SIZE:
        raise IntegrityError("encrypted artifact is truncated")
    nonce, ciphertext = body[:AES_NONCE_SIZE], body[AES_NONCE_SIZE:]
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, ENCRYPTED_MAGIC)
    except InvalidTag as e:
        raise IntegrityError("artifact failed authentication (wrong key or corrupted data)") from e


def encode_artifact(raw: bytes, compress: bool, key: Optional[bytes]) -> bytes:
    """Frame raw snapshot bytes for storage."""
    data = gzip.compress(raw) if compress else raw
    if key is not None:
        data = encrypt(data, key)
    return data


def decode_artifact(stored: bytes, key: Optional[bytes]) -> bytes:
    """
    Recover raw snapshot bytes from a stored artifact.

    Framing is detected from the header bytes, so the catalog flags and the
    artifact itself cannot silently disagree.

    Raises:
        ConfigurationError: If the artifact is encrypted and no key is available
        IntegrityError: If decryption or decompression fails
    """
    data = stored
    if is_encrypted(data):
        if key is None:
            raise ConfigurationError("artifact is encrypted but no encryption key is configured")
        data = decrypt(data, key)
    if is_gzip(data):
        try:
            data = gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as e:
            raise IntegrityError(f"artifact failed to decompress: {e}") from e
    return data
