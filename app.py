#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Command-line entrypoint for mindjournal.

Subcommands:
    status          backend mode, migration and password state
    write           encrypt and save one journal entry
    read            decrypt and print the journal, newest first
    migrate         copy local data to the remote store once (--skip to opt out)
    migrate-legacy  encrypt pre-encryption plaintext journal entries
    reset-key       delete the journal key (asks twice)
"""
from __future__ import annotations

from typing import List, Optional
import argparse
import asyncio
import getpass
import logging
import sys

from mindjournal.errors import JournalError
from mindjournal.keys import RESET_CONFIRMATION
from mindjournal.log import configure_logging
from mindjournal.logic import PersistenceOrchestrator, build_orchestrator, load_config
from mindjournal.models import JournalEntry, format_ts, mood_by_label

logger = logging.getLogger("mindjournal.app")


def _password(args: argparse.Namespace) -> Optional[str]:
    return getpass.getpass("Journal password: ") if args.password else None


async def _status(orch: PersistenceOrchestrator, args: argparse.Namespace) -> int:
    print(f"backend:            {orch.mode.value}")
    print(f"needs migration:    {await orch.needs_migration()}")
    print(f"password protected: {await orch.keys.is_password_protected()}")
    print(f"remote reachable:   {await orch.check_connection()}")
    return 0


async def _write(orch: PersistenceOrchestrator, args: argparse.Namespace) -> int:
    try:
        mood = mood_by_label(args.mood) if args.mood else None
    except KeyError:
        print(f"Unknown mood: {args.mood}")
        return 1
    entry = JournalEntry.create(" ".join(args.text), mood=mood)
    await orch.save_journal_entry(entry, _password(args))
    print(f"Saved entry {entry.id}.")
    return 0


async def _read(orch: PersistenceOrchestrator, args: argparse.Namespace) -> int:
    result = await orch.load_journal_entries(_password(args))
    for entry in result.entries:
        mood = f" [{entry.mood.label}]" if entry.mood else ""
        print(f"{format_ts(entry.timestamp)}{mood} {entry.content}")
    if result.errors:
        print(f"{len(result.errors)} entries could not be decrypted.")
    return 0 if result.ok else 1


async def _migrate(orch: PersistenceOrchestrator, args: argparse.Namespace) -> int:
    if args.skip:
        await orch.skip_migration()
        print("Migration skipped; remote store is now active.")
        return 0
    report = await orch.migrate_local_to_remote(_password(args))
    if report.skipped:
        print("Already migrated.")
        return 0
    for collection, count in sorted(report.migrated.items()):
        print(f"{collection}: {count}")
    for err in report.errors:
        print(f"failed {err.collection}/{err.record_id}: {err.kind}: {err.message}")
    if not report.completed:
        print("Migration incomplete; run again to retry.")
        return 1
    return 0


async def _migrate_legacy(orch: PersistenceOrchestrator, args: argparse.Namespace) -> int:
    count = await orch.legacy_plaintext_migration(_password(args))
    print(f"Encrypted {count} legacy entries.")
    return 0


async def _reset_key(orch: PersistenceOrchestrator, args: argparse.Namespace) -> int:
    print("Resetting the key makes every existing journal entry permanently unreadable.")
    if input("Continue? [y/N] ").strip().lower() != "y":
        print("Aborted.")
        return 1
    typed = input(f'Type "{RESET_CONFIRMATION}" to confirm: ')
    try:
        await orch.reset_encryption(typed.strip())
    except ValueError:
        print("Confirmation did not match. Nothing was deleted.")
        return 1
    print("Key reset.")
    return 0


COMMANDS = {
    "status": _status,
    "write": _write,
    "read": _read,
    "migrate": _migrate,
    "migrate-legacy": _migrate_legacy,
    "reset-key": _reset_key,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mindjournal", description=__doc__.splitlines()[0])
    parser.add_argument("--password", action="store_true", help="prompt for the journal password")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status")
    write = sub.add_parser("write")
    write.add_argument("text", nargs="+")
    write.add_argument("--mood", help="one of Great, Good, Okay, Low, Struggling")
    sub.add_parser("read")
    migrate = sub.add_parser("migrate")
    migrate.add_argument("--skip", action="store_true", help="mark as migrated without copying")
    sub.add_parser("migrate-legacy")
    sub.add_parser("reset-key")
    return parser


async def run(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_config()
    configure_logging(log_level=cfg.get("log_level"))
    try:
        orch = await build_orchestrator(cfg)
        return await COMMANDS[args.command](orch, args)
    except JournalError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 2


def main() -> None:
    """Run the command line interface."""
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
