# -*- coding: utf-8 -*-
"""Journal key lifecycle: device keys, password-derived keys and reset.

Key material lives in the local store:
    journal_encryption_key:   exported device key
    journal_key_salt:         base64 PBKDF2 salt (password mode only)
    journal_password_hash:    argon2 verifier of the password
    journal_password_enabled: marker set alongside the salt
"""
from __future__ import annotations

from typing import Optional
import asyncio
import binascii
import logging

from argon2.exceptions import InvalidHashError, VerifyMismatchError

from . import db
from .crypto import (
    PH,
    b64decode,
    b64encode,
    export_key,
    generate_key,
    generate_salt,
    import_key,
    pbkdf2_kdf,
)
from .errors import CryptoUnavailable, DecryptionFailed, KeyUnavailable, PersistenceFailed
from .models import KeyMaterial
from .state import DeviceState

logger = logging.getLogger(__name__)

RESET_CONFIRMATION = "DELETE MY JOURNAL KEY"


class KeyManager:
    """Sole owner of the journal key lifecycle for one device."""

    def __init__(self, state: DeviceState) -> None:
        self.state = state

    @property
    def store(self) -> db.LocalStore:
        return self.state.store

    async def get_or_create_device_key(self) -> bytes:
        """Return the stored device key, generating and persisting one if absent."""
        if self.state.device_key is not None:
            return self.state.device_key
        try:
            stored = await self.store.get_item(db.KEY_ITEM)
            if stored:
                key = import_key(stored)
            else:
                key = generate_key()
                await self.store.set_item(db.KEY_ITEM, export_key(key))
                logger.info("Generated a new device journal key")
        except (PersistenceFailed, CryptoUnavailable) as exc:
            raise KeyUnavailable(f"Device key unavailable: {exc}") from exc
        self.state.device_key = key
        return key

    async def _load_salt(self) -> Optional[bytes]:
        stored = await self.store.get_item(db.SALT_ITEM)
        if not stored:
            return None
        try:
            return b64decode(stored)
        except (ValueError, binascii.Error) as exc:
            raise KeyUnavailable("Stored key salt is malformed") from exc

    async def derive_key_from_password(self, password: str, verify: bool = True) -> KeyMaterial:
        """Derive the journal key from *password* and the persisted salt.

        The first call generates and persists the salt and an argon2 verifier
        of the password; later calls verify the password against it before
        running the KDF. With ``verify=False`` a mismatch is only logged and
        the (wrong) key is still derived, so readers can degrade per record.
        """
        if not password:
            raise KeyUnavailable("Password required")
        salt = await self._load_salt()
        verifier = await self.store.get_item(db.PASSWORD_HASH_ITEM)

        if verifier:
            try:
                PH.verify(verifier, password)
            except VerifyMismatchError as exc:
                if verify:
                    raise DecryptionFailed("Invalid password") from exc
                logger.warning("Password does not match the stored verifier")
            except InvalidHashError as exc:
                raise KeyUnavailable("Stored password verifier is malformed") from exc

        if salt is None:
            salt = generate_salt()
            await self.store.set_item(db.SALT_ITEM, b64encode(salt))
            logger.info("Enabled password protection for journal entries")
        if not verifier:
            await self.store.set_item(db.PASSWORD_HASH_ITEM, PH.hash(password))
            await self.store.set_item(db.PASSWORD_ENABLED_ITEM, True)

        key = await asyncio.to_thread(pbkdf2_kdf, password, salt)
        return KeyMaterial(key=key, salt=salt)

    async def current_key(self, password: Optional[str] = None, verify: bool = True) -> bytes:
        """Resolve the key for one encrypt/decrypt call.

        A supplied password always selects the password-derived key. Without
        one, password-protected devices fail with :class:`KeyUnavailable`
        rather than falling back to the device key.
        """
        if password is not None:
            return (await self.derive_key_from_password(password, verify=verify)).key
        if await self.is_password_protected():
            raise KeyUnavailable("Journal is password protected; a password is required")
        return await self.get_or_create_device_key()

    async def is_password_protected(self) -> bool:
        return await self.store.has_item(db.SALT_ITEM)

    async def reset_key(self, confirmation: str) -> None:
        """Irreversibly delete all key material.

        Every existing encrypted record becomes permanently unreadable, so the
        caller must pass :data:`RESET_CONFIRMATION` verbatim.
        """
        if confirmation != RESET_CONFIRMATION:
            raise ValueError("Key reset not confirmed")
        for item in (db.KEY_ITEM, db.SALT_ITEM, db.PASSWORD_ENABLED_ITEM, db.PASSWORD_HASH_ITEM):
            await self.store.remove_item(item)
        self.state.device_key = None
        logger.warning("Journal encryption key was reset; existing entries are now unreadable")
