"""Unit tests for lib/artifact.py."""

import gzip
import os

import pytest

from lib.artifact import decode_artifact, decrypt, encode_artifact, encrypt, is_encrypted, is_gzip, sha256_hex
from lib.constants import AES_NONCE_SIZE, ENCRYPTED_MAGIC
from lib.exceptions import ConfigurationError, IntegrityError

KEY = bytes(range(32))
RAW = b"base backup tar stream " * 64


@pytest.mark.unit
class TestEncryption:
    def test_layout(self):
        blob = encrypt(RAW, KEY)

        assert blob.startswith(ENCRYPTED_MAGIC)
        # nonce + ciphertext + 16 byte tag
        assert len(blob) == len(ENCRYPTED_MAGIC) + AES_NONCE_SIZE + len(RAW) + 16

    def test_nonce_is_fresh(self):
        assert encrypt(RAW, KEY) != encrypt(RAW, KEY)

    def test_wrong_key(self):
        with pytest.raises(IntegrityError, match="authentication"):
            decrypt(encrypt(RAW, KEY), os.urandom(32))

    def test_tampered_ciphertext(self):
        blob = bytearray(encrypt(RAW, KEY))
        blob[-1] ^= 0x01
        with pytest.raises(IntegrityError):
            decrypt(bytes(blob), KEY)

    def test_truncated(self):
        with pytest.raises(IntegrityError, match="truncated"):
            decrypt(ENCRYPTED_MAGIC + b"\x00" * 4, KEY)

    def test_plain_data_rejected(self):
        with pytest.raises(IntegrityError, match="not encrypted"):
            decrypt(RAW, KEY)


@pytest.mark.unit
class TestFraming:
    def test_compressed_and_encrypted(self):
        stored = encode_artifact(RAW, compress=True, key=KEY)

        assert is_encrypted(stored)
        assert is_gzip(decrypt(stored, KEY))
        assert decode_artifact(stored, KEY) == RAW

    def test_compressed_only(self):
        stored = encode_artifact(RAW, compress=True, key=None)

        assert is_gzip(stored) and not is_encrypted(stored)
        assert len(stored) < len(RAW)
        assert decode_artifact(stored, None) == RAW

    def test_uncompressed_plain_is_identity(self):
        assert encode_artifact(RAW, compress=False, key=None) == RAW

    def test_encrypted_without_key(self):
        with pytest.raises(ConfigurationError):
            decode_artifact(encode_artifact(RAW, compress=True, key=KEY), None)

    def test_corrupt_gzip(self):
        corrupt = gzip.compress(RAW)[:20]
        with pytest.raises(IntegrityError, match="decompress"):
            decode_artifact(corrupt, None)

    def test_checksum(self):
        assert sha256_hex(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
