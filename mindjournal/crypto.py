# -*- coding: utf-8 -*-
"""Crypto helpers for mindjournal.

This module encapsulates *stateless* cryptographic helpers: AES-GCM package
encryption, PBKDF2 key derivation and key export. It does **not** perform any
storage I/O and never holds on to a key beyond a single call.
"""
from __future__ import annotations

from typing import Optional, Tuple
import base64
import binascii
import json
import secrets

from argon2 import PasswordHasher
from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import CryptoUnavailable, DecryptionFailed
from .models import JournalEntry

# ---------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------

PH = PasswordHasher(
    time_cost=2,
    memory_cost=102_400,
    parallelism=8,
    hash_len=32,
    salt_len=16,
)

PBKDF2_ITERATIONS = 100_000

KEY_LEN = 32
NONCE_LEN = 12
SALT_LEN = 16
TAG_LEN = 16

KEY_ALG = "A256GCM"


# ---------------------------------------------------------------------
# Randomness / KDF
# ---------------------------------------------------------------------

def generate_key() -> bytes:
    """Return a fresh random 256-bit AES-GCM key."""
    return AESGCM.generate_key(bit_length=KEY_LEN * 8)

def generate_salt() -> bytes:
    """Return a fresh random 16-byte salt."""
    return secrets.token_bytes(SALT_LEN)

def pbkdf2_kdf(password: str, salt: bytes, length: int = KEY_LEN) -> bytes:
    """Derive a key from a password using PBKDF2-HMAC-SHA256."""
    try:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=length,
            salt=salt,
            iterations=PBKDF2_ITERATIONS,
        )
        return kdf.derive(password.encode("utf-8"))
    except UnsupportedAlgorithm as exc:
        raise CryptoUnavailable("PBKDF2-HMAC-SHA256 is not supported") from exc


# ---------------------------------------------------------------------
# Key export (JWK-style JSON, so exported keys stay self-describing)
# ---------------------------------------------------------------------

def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")

def _unb64url(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))

def export_key(key: bytes) -> str:
    """Serialize *key* to a storable JSON string."""
    return json.dumps({"kty": "oct", "alg": KEY_ALG, "k": _b64url(key), "ext": True})

def import_key(key_data: str) -> bytes:
    """Parse a key previously produced by :func:`export_key`."""
    try:
        obj = json.loads(key_data)
        key = _unb64url(obj["k"])
    except (ValueError, KeyError, TypeError, binascii.Error) as exc:
        raise CryptoUnavailable("Stored key is malformed") from exc
    if len(key) != KEY_LEN:
        raise CryptoUnavailable(f"Stored key has wrong length ({len(key)} bytes)")
    return key

def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")

def b64decode(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


# ---------------------------------------------------------------------
# AEAD helpers
# ---------------------------------------------------------------------

def aesgcm_encrypt(key: bytes, plaintext: bytes, aad: Optional[bytes] = None) -> Tuple[bytes, bytes]:
    """Encrypt *plaintext* with AES-GCM; return (nonce, ciphertext)."""
    nonce = secrets.token_bytes(NONCE_LEN)
    try:
        ct = AESGCM(key).encrypt(nonce, plaintext, aad)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise CryptoUnavailable(f"AES-GCM encryption failed: {exc}") from exc
    return nonce, ct

def aesgcm_decrypt(key: bytes, nonce: bytes, ciphertext: bytes, aad: Optional[bytes] = None) -> bytes:
    """Decrypt AES-GCM *ciphertext* with *nonce*; return plaintext."""
    try:
        cipher = AESGCM(key)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise CryptoUnavailable(f"AES-GCM unavailable: {exc}") from exc
    try:
        return cipher.decrypt(nonce, ciphertext, aad)
    except InvalidTag as exc:
        raise DecryptionFailed("Authentication tag did not verify") from exc


# ---------------------------------------------------------------------
# Ciphertext packages: base64(nonce || ciphertext+tag)
# ---------------------------------------------------------------------

def encrypt(plaintext: bytes, key: bytes) -> str:
    """Encrypt *plaintext* into a self-contained, storable package.

    A fresh nonce is drawn on every call, so encrypting the same plaintext
    twice yields two different packages.
    """
    nonce, ct = aesgcm_encrypt(key, plaintext)
    return b64encode(nonce + ct)

def decrypt(package: str, key: bytes) -> bytes:
    """Split *package* into nonce and ciphertext, verify and decrypt it."""
    try:
        raw = b64decode(package)
    except (ValueError, AttributeError, binascii.Error) as exc:
        raise DecryptionFailed("Ciphertext package is not valid base64") from exc
    if len(raw) < NONCE_LEN + TAG_LEN:
        raise DecryptionFailed("Ciphertext package is truncated")
    return aesgcm_decrypt(key, raw[:NONCE_LEN], raw[NONCE_LEN:])

def encrypt_entry(entry: JournalEntry, key: bytes) -> str:
    """Serialize the full *entry* as JSON and encrypt it."""
    payload = json.dumps(entry.to_dict(), ensure_ascii=False).encode("utf-8")
    return encrypt(payload, key)

def decrypt_entry(package: str, key: bytes) -> JournalEntry:
    """Decrypt a package produced by :func:`encrypt_entry`."""
    plaintext = decrypt(package, key)
    try:
        return JournalEntry.from_dict(json.loads(plaintext.decode("utf-8")))
    except (ValueError, KeyError, TypeError) as exc:
        raise DecryptionFailed("Decrypted payload is not a journal entry") from exc
