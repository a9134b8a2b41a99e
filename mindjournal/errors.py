# -*- coding: utf-8 -*-
"""Error kinds raised by the journal engine."""
from __future__ import annotations


class JournalError(Exception):
    """Base class for all mindjournal errors."""


class CryptoUnavailable(JournalError):
    """The crypto provider is missing, unsupported, or failed internally."""


class DecryptionFailed(JournalError):
    """Wrong key/password or corrupted ciphertext. Recoverable per record."""


class PersistenceFailed(JournalError):
    """Local or remote store I/O failed."""


class KeyUnavailable(JournalError):
    """Key material is missing and cannot be regenerated."""
