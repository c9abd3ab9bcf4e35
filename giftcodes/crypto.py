import base64
import binascii
import hashlib
import hmac
import os
from typing import Mapping

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import (
    AuthenticationFailure,
    DecryptionFailure,
    EncryptionFailure,
    InvalidKeyLength,
    UnknownKeyRef,
)

KEY_LENGTH = 32
NONCE_LENGTH = 16
TAG_LENGTH = 16
ASSOCIATED_DATA = b"gift-code"


def generate_key() -> str:
    """Fresh random 256-bit key, base64 encoded."""
    return base64.b64encode(os.urandom(KEY_LENGTH)).decode("ascii")


def _key_bytes(key: str) -> bytes:
    try:
        raw = base64.b64decode(key, validate=True)
    except (binascii.Error, ValueError, TypeError):
        raise InvalidKeyLength("Invalid key length")
    if len(raw) != KEY_LENGTH:
        raise InvalidKeyLength("Invalid key length")
    return raw


def encrypt(plaintext: str, key: str) -> str:
    """
    AES-256-GCM with a fresh 16-byte nonce per call.
    Output is base64(nonce || tag || ciphertext).
    """
    aead = AESGCM(_key_bytes(key))
    nonce = os.urandom(NONCE_LENGTH)
    try:
        sealed = aead.encrypt(nonce, plaintext.encode("utf-8"), ASSOCIATED_DATA)
    except (ValueError, TypeError, OverflowError, AttributeError) as e:
        raise EncryptionFailure(f"Encryption failed: {e}") from e

    # cryptography appends the tag; the stored layout puts it before the ciphertext
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return base64.b64encode(nonce + tag + ciphertext).decode("ascii")


def decrypt(blob: str, key: str) -> str:
    aead = AESGCM(_key_bytes(key))
    try:
        raw = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise DecryptionFailure(f"Decryption failed: {e}") from e
    if len(raw) < NONCE_LENGTH + TAG_LENGTH:
        raise DecryptionFailure("Decryption failed: blob too short")

    nonce = raw[:NONCE_LENGTH]
    tag = raw[NONCE_LENGTH:NONCE_LENGTH + TAG_LENGTH]
    ciphertext = raw[NONCE_LENGTH + TAG_LENGTH:]
    try:
        plaintext = aead.decrypt(nonce, ciphertext + tag, ASSOCIATED_DATA)
    except InvalidTag as e:
        raise AuthenticationFailure("Decryption failed: authentication tag mismatch") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionFailure(f"Decryption failed: {e}") from e


class Keyring:
    """
    Named encryption keys. Rows store only the ref, so old rows stay readable
    after a new active key is introduced.
    """

    def __init__(self, keys: Mapping[str, str], active_ref: str | None = None):
        if not keys:
            raise ValueError("Keyring needs at least one key")
        for key in keys.values():
            _key_bytes(key)
        self._keys = dict(keys)
        self.active_ref = active_ref or next(iter(self._keys))
        if self.active_ref not in self._keys:
            raise UnknownKeyRef(f"Unknown key ref {self.active_ref!r}")

    def active(self) -> tuple[str, str]:
        return self.active_ref, self._keys[self.active_ref]

    def get(self, ref: str) -> str:
        try:
            return self._keys[ref]
        except KeyError:
            raise UnknownKeyRef(f"Unknown key ref {ref!r}")

    @classmethod
    def parse(cls, value: str, active_ref: str | None = None) -> "Keyring":
        # "ref1:base64key,ref2:base64key"
        keys = {}
        for part in value.split(","):
            part = part.strip()
            if not part:
                continue
            ref, sep, key = part.partition(":")
            if not sep or not ref or not key:
                raise ValueError(f"Malformed key entry {ref!r}, expected ref:base64key")
            keys[ref.strip()] = key.strip()
        return cls(keys, active_ref)


def fingerprint(code: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), code.encode("utf-8"), hashlib.sha256).hexdigest()


def mask_code(code: str) -> str:
    prefix, _, suffix = code.rpartition("-")
    return f"{prefix}-****{suffix[-2:]}"
