from __future__ import annotations

"""Manual legacy-data migration helper."""

import asyncio

from mindjournal.log import configure_logging
from mindjournal.logic import build_orchestrator, load_config


async def migrate() -> int:
    cfg = load_config()
    configure_logging(log_level=cfg.get("log_level"))
    orch = await build_orchestrator(cfg)
    return await orch.legacy_plaintext_migration()


if __name__ == "__main__":
    print(f"Encrypted {asyncio.run(migrate())} legacy entries.")
