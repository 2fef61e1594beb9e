"""Application entry point for the igbridge relay."""

from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Callable, Optional

from art import tprint
from dotenv import load_dotenv
from telethon import events

import settings
from adapters.http_fetcher import AiohttpFetcher
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_destination import TelegramDestinationClient
from adapters.telegram_mapper import build_message
from client import bot_token, build_client
from core.config import BridgeConfig, TransferConfig, TranslatorConfig
from core.engine import BridgeEngine
from core.errors import BridgeError
from core.filters import build_filter_set
from core.mapping_store import MappingCache, MappingStore
from core.models import DeliveryStatus
from core.sequencing import pump_messages
from core.transfer import ContentTransferPipeline
from core.translator import MessageTranslator

NAME = "IGBRIDGE"
FONT = "tarty-1"

# Reaction put on a destination message once its trip to the source is done.
STATUS_REACTIONS = {
    DeliveryStatus.DELIVERED: "👍",
    DeliveryStatus.PARTIAL: "👍",
    DeliveryStatus.FAILED: "❌",
    DeliveryStatus.BLOCKED: "🚫",
    DeliveryStatus.UNMAPPED: "❓",
}


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    # Longest first so a token containing another is masked whole.
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level = getattr(logging, str(config.get("level", "INFO")).upper(), logging.INFO)
    formatter = _RedactingFormatter(
        _collect_redaction_values(config),
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = []
    if config.get("console", True):
        handlers.append(logging.StreamHandler())

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/igbridge.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        if os.path.dirname(path):
            os.makedirs(os.path.dirname(path), exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                path,
                maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
                backupCount=int(file_cfg.get("backup_count", 5)),
                encoding="utf-8",
            )
        )

    if not handlers:
        return
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=handlers)

    # Telethon is chatty at INFO; keep its noise at warnings and above.
    logging.getLogger("telethon").setLevel(max(level, logging.WARNING))


def _load_source_factory(target: Optional[str]) -> Callable[[], Any]:
    """Resolve ``package.module:callable`` from config into the factory."""

    if not target or ":" not in target:
        raise RuntimeError("source.factory must be set to 'module:callable' in config.json")
    module_name, attr = target.split(":", 1)
    module = importlib.import_module(module_name)
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise RuntimeError(f"source.factory {target!r} is not callable")
    return factory


def _bridge_config() -> BridgeConfig:
    if not settings.DEST_CHAT_ID:
        raise RuntimeError("bridge.chat_id is required in config.json")
    return BridgeConfig(
        dest_chat_id=settings.DEST_CHAT_ID,
        welcome_message=settings.WELCOME_MESSAGE,
        pin_welcome=settings.PIN_WELCOME,
        profile_pic_sync=settings.PROFILE_PIC_SYNC,
        topic_icon_color=settings.TOPIC_ICON_COLOR,
        metadata_timeout=settings.METADATA_TIMEOUT,
    )


def _translator_config() -> TranslatorConfig:
    return TranslatorConfig(
        max_text_chars=settings.MAX_TEXT_CHARS,
        max_caption_chars=settings.MAX_CAPTION_CHARS,
        max_source_text_chars=settings.MAX_SOURCE_TEXT_CHARS,
        attribute_sender=settings.ATTRIBUTE_SENDER,
        prefix_replies_with_sender=settings.PREFIX_REPLIES_WITH_SENDER,
    )


async def _react(destination: TelegramDestinationClient, message_id: int, status: DeliveryStatus) -> None:
    if not settings.REACTIONS:
        return
    emoji = STATUS_REACTIONS.get(status)
    if not emoji:
        return
    try:
        await destination.set_reaction(settings.DEST_CHAT_ID, message_id, emoji)
    except BridgeError as exc:
        logging.getLogger(__name__).debug("Could not react to message %s: %s", message_id, exc)


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting igbridge")

    bridge_config = _bridge_config()
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    store = MappingStore(storage, MappingCache())

    filters = build_filter_set(settings.FILTERS_CONFIG)
    logger.info("%s filter rules are loaded", len(filters.rules) + len(filters.blocked_senders))

    source = _load_source_factory(settings.SOURCE_FACTORY)()
    client = build_client()
    destination = TelegramDestinationClient(client)
    fetcher = AiohttpFetcher(timeout=settings.HTTP_TIMEOUT)
    pipeline = ContentTransferPipeline(
        TransferConfig(staging_dir=settings.STAGING_DIR, max_media_bytes=settings.MAX_MEDIA_BYTES),
        fetcher,
        files=destination,
    )
    engine = BridgeEngine(
        store=store,
        destination=destination,
        source=source,
        translator=MessageTranslator(_translator_config()),
        pipeline=pipeline,
        config=bridge_config,
        filters=filters,
    )

    # Replies written by people in the forum topics travel back to the source.
    @client.on(events.NewMessage(chats=int(bridge_config.dest_chat_id), incoming=True))
    async def handler(event) -> None:
        try:
            sender = await event.get_sender()
            if sender is not None and getattr(sender, "bot", False):
                return
            message = build_message(event.message)
            if message is None:
                return
            result = await engine.receive(message)
            await _react(destination, event.message.id, result.status)
        except Exception:
            logger.exception("Error while processing message")

    async def _serve() -> None:
        await client.start(bot_token=bot_token())
        engine.start()
        logger.info("Client connected. Bridging %s", bridge_config.dest_chat_id)
        # Messages of one thread are forwarded in order; threads run in parallel.
        pump = asyncio.create_task(pump_messages(source, engine.forward))
        try:
            await client.run_until_disconnected()
        finally:
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)
            await fetcher.close()
            engine.shutdown()
            logger.info("Bridge stopped")

    # Explicit lifecycle management makes start/shutdown behavior obvious.
    try:
        client.loop.run_until_complete(_serve())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


def _mappings() -> None:
    """Print every stored thread -> topic mapping."""

    _print_banner()
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    mappings = storage.list_mappings()
    if not mappings:
        print("No chat mappings stored yet.")
        return
    for index, mapping in enumerate(mappings, start=1):
        last = mapping.last_activity.strftime("%Y-%m-%d %H:%M")
        print(f"{index}. {mapping.source_thread_id} | topic {mapping.dest_topic_id} | last activity {last}")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="igbridge")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the bridge")
    subparsers.add_parser("mappings", help="List stored thread to topic mappings")

    args = parser.parse_args(argv)
    if args.command == "mappings":
        _mappings()
        return
    _run()


if __name__ == "__main__":
    main()
