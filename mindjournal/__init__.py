# -*- coding: utf-8 -*-
"""mindjournal package.

Modules:
    crypto:  AES-GCM ciphertext packages, PBKDF2 and key export.
    keys:    Device/password key lifecycle (KeyManager).
    models:  Journal, mood and report record types.
    db:      SQLite key/value local store (aiosqlite).
    remote:  Remote document store interface and implementations.
    state:   DeviceState (cached key + backend mode).
    logic:   Persistence orchestrator and JSON config.
    errors:  Error kinds.
    log:     Logging setup.
"""

__all__ = ["crypto", "keys", "models", "db", "remote", "state", "logic", "errors", "log"]
