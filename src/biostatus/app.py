"""Application entry point for the biostatus watcher."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv

from biostatus import settings
from biostatus.adapters.sqlite_storage import SQLiteStorage
from biostatus.adapters.substrate_feed import SubstrateBlockFeed
from biostatus.adapters.telegram_commands import CommandHandler, register_handlers
from biostatus.adapters.telegram_notifier import TelegramNotifier
from biostatus.adapters.validator_keys import format_validator_key, parse_validator_address
from biostatus.client import bot_token, build_client
from biostatus.core.engine import NotificationEngine
from biostatus.core.errors import BlockFeedError, InvalidValidatorKey
from biostatus.core.orchestrator import Orchestrator

NAME = "BIOSTATUS"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LOG_FILE = "logs/biostatus.log"


class _SecretMaskingFormatter(logging.Formatter):
    """Masks secret values (bot token, API hash) in rendered log lines."""

    def __init__(self, secrets: list[str]) -> None:
        super().__init__(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
        # Longest first so a secret containing another is masked whole.
        self._secrets = sorted({secret for secret in secrets if secret}, key=len, reverse=True)

    def format(self, record: logging.LogRecord) -> str:
        rendered = super().format(record)
        for secret in self._secrets:
            rendered = rendered.replace(secret, "***")
        return rendered


def _secrets_to_mask(redact: dict) -> list[str]:
    if not redact.get("enabled", False):
        return []
    return [os.getenv(name, "") for name in redact.get("patterns", [])]


def _file_handler(file_cfg: dict) -> RotatingFileHandler:
    path = file_cfg.get("path", DEFAULT_LOG_FILE)
    if not os.path.isabs(path):
        path = os.path.join(settings.PROJECT_ROOT, path)
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
        backupCount=int(file_cfg.get("backup_count", 5)),
        encoding="utf-8",
    )


def _configure_logging() -> None:
    log_cfg = settings.LOGGING or {}
    if not log_cfg.get("enabled", False):
        return

    load_dotenv()
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)

    handlers: list[logging.Handler] = []
    if log_cfg.get("console", True):
        handlers.append(logging.StreamHandler())
    file_cfg = log_cfg.get("file", {})
    if file_cfg.get("enabled", False):
        handlers.append(_file_handler(file_cfg))
    if not handlers:
        return

    formatter = _SecretMaskingFormatter(_secrets_to_mask(log_cfg.get("redact", {})))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=handlers)


def _open_storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting biostatus")
    logger.info(
        "Chain endpoint %s, timestamp unit %s",
        settings.RPC_URL,
        settings.TIMESTAMP_UNIT.name.lower(),
    )

    storage = _open_storage()
    client = build_client()
    feed = SubstrateBlockFeed(
        settings.RPC_URL,
        ss58_format=settings.SS58_FORMAT,
        poll_interval_seconds=settings.POLL_INTERVAL_SECONDS,
    )
    orchestrator = Orchestrator.from_storage(
        storage,
        engine=NotificationEngine(settings.ENGINE_CONFIG),
        block_feed=feed,
        notifier=TelegramNotifier(client, settings.SS58_FORMAT),
        config=settings.ENGINE_CONFIG,
        update_queue_size=settings.UPDATE_QUEUE_SIZE,
    )

    # All input validation happens in the command adapter.
    register_handlers(
        client,
        CommandHandler(orchestrator, settings.SS58_FORMAT, settings.ADMIN_CHAT_IDS),
    )

    client.start(bot_token=bot_token())
    logger.info("Bot connected. Watching finalized blocks...")

    def _on_core_exit(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error("Core loop stopped", exc_info=task.exception())
            asyncio.ensure_future(client.disconnect())

    core_task = client.loop.create_task(orchestrator.run())
    core_task.add_done_callback(_on_core_exit)
    try:
        client.run_until_disconnected()
    finally:
        core_task.cancel()
        client.loop.run_until_complete(asyncio.gather(core_task, return_exceptions=True))
        feed.close()
        logger.info("Shutdown complete")


def _list() -> None:
    storage = _open_storage()
    records = storage.load_subscriptions()
    if not records:
        print("No stored subscriptions.")
        return

    for index, record in enumerate(records, start=1):
        address = format_validator_key(record.key, settings.SS58_FORMAT)
        print(
            f"{index}. chat {record.chat_id} | {address} | "
            f"every {record.max_message_frequency_in_blocks} blocks | "
            f"alert {record.alert_before_expiration_in_mins} mins before"
        )


def _check(address: str) -> int:
    try:
        key = parse_validator_address(address, settings.SS58_FORMAT)
    except InvalidValidatorKey as exc:
        print(f"Invalid address: {exc}")
        return 2

    feed = SubstrateBlockFeed(settings.RPC_URL, ss58_format=settings.SS58_FORMAT)
    try:
        snapshot = asyncio.run(feed.fetch_latest())
    except BlockFeedError as exc:
        print(f"Chain query failed: {exc}")
        return 1
    finally:
        feed.close()

    expires_at = snapshot.active_map.get(key)
    if expires_at is None:
        print(f"Block {snapshot.block_number}: {address} has no active bio-authentication")
        return 0

    seconds = expires_at / settings.TIMESTAMP_UNIT.per_second
    expires = datetime.fromtimestamp(seconds, tz=timezone.utc).astimezone()
    print(f"Block {snapshot.block_number}: {address} is authenticated until {expires:%H:%M:%S %d-%m-%Y}")
    return 0


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="biostatus")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the bot and the block watcher")
    subparsers.add_parser("list", help="Print stored subscriptions")
    check_parser = subparsers.add_parser(
        "check",
        help="Show the current bio-authentication expiry of a validator.",
    )
    check_parser.add_argument("address", help="Validator SS58 address (hm...) or 0x public key")

    args = parser.parse_args(argv)
    if args.command == "list":
        _list()
        return
    if args.command == "check":
        raise SystemExit(_check(args.address))
    _run()


if __name__ == "__main__":
    main()
