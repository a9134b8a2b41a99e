# -*- coding: utf-8 -*-
"""Per-device mutable state, owned by the application root."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .db import MIGRATED_FLAG, LocalStore
from .models import BackendMode


@dataclass
class DeviceState:
    """The only process-wide mutable state: cached key and backend mode.

    The key cache is written only by :class:`~mindjournal.keys.KeyManager`,
    the mode only by the orchestrator's migration transition.
    """

    store: LocalStore
    device_key: Optional[bytes] = None
    mode: BackendMode = BackendMode.LOCAL_ONLY

    @classmethod
    async def load(cls, store: LocalStore) -> "DeviceState":
        """Initialize the store and restore the backend mode from the flag."""
        await store.init_db()
        migrated = await store.get_item(MIGRATED_FLAG, False)
        mode = BackendMode.REMOTE_ACTIVE if migrated is True else BackendMode.LOCAL_ONLY
        return cls(store=store, mode=mode)
