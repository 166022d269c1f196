"""Application entry point for the chattriage listener."""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import replace
from datetime import datetime, timezone
import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Optional
import uuid

from art import tprint
from dotenv import load_dotenv
from telethon import events

import settings
from adapters.llm_oracle import OpenAIOracle
from adapters.log_telemetry import LogTelemetry
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_bot_notifier import TelegramBotNotifier
from adapters.telegram_mapper import build_message
from adapters.telegram_notifier import TelegramGroupNotifier
from core.analysis import TriageAnalyzer
from core.models import Message
from core.processor import MessageProcessor
from core.routing import RoutingEngine
from get_session import build_client, open_session

NAME = "CHATTRIAGE"
FONT = "tarty-1"


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
    # Longest first so a secret containing another is masked whole.
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(_collect_redaction_values(config), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/chattriage.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _init_storage() -> SQLiteStorage:
    logger = logging.getLogger(__name__)
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    logger.info(
        "Seeded %s channels, %s routing rules, %s issue categories",
        storage.seed_channels(settings.CHANNELS),
        storage.seed_rules(settings.ROUTING_RULES),
        storage.seed_issue_categories(settings.ISSUE_CATEGORIES),
    )
    removed = storage.cleanup_messages(settings.HISTORY_RETENTION_DAYS)
    logger.info("History cleanup removed %s messages", removed)
    return storage


def _build_oracle() -> Optional[OpenAIOracle]:
    logger = logging.getLogger(__name__)
    if not settings.ORACLE_ENABLED:
        logger.info("Oracle disabled; keyword fallback only")
        return None
    api_key = os.getenv("ORACLE_API_KEY")
    if not api_key:
        logger.warning("ORACLE_API_KEY not set; keyword fallback only")
        return None
    return OpenAIOracle(
        api_key=api_key,
        model=settings.ORACLE_MODEL,
        base_url=settings.ORACLE_BASE_URL,
        temperature=settings.ORACLE_TEMPERATURE,
        max_tokens=settings.ORACLE_MAX_TOKENS,
    )


def _build_delivery(client):
    """Select the delivery adapter; the Bot API path forces HTML alerts."""

    routing_config = settings.ROUTING
    if settings.NOTIFICATION_METHOD == "bot":
        bot_token = os.getenv("BOT_API")
        if not bot_token:
            raise RuntimeError("BOT_API is required when notification_method=bot")
        return TelegramBotNotifier(bot_token), replace(routing_config, message_format="html")
    if settings.NOTIFICATION_METHOD == "client":
        return TelegramGroupNotifier(client), replace(routing_config, message_format="markdown")
    raise RuntimeError("notification_method must be 'client' or 'bot'")


def _run() -> None:
    _print_banner()
    _configure_logging()
    load_dotenv()
    logger = logging.getLogger(__name__)

    logger.info("Starting chattriage")
    if not settings.MONITORED_CHATS:
        logger.warning("No monitored chats configured; nothing will be triaged")

    storage = _init_storage()

    client = build_client()
    client.loop.run_until_complete(open_session(client))

    delivery, routing_config = _build_delivery(client)
    logger.info("Selected notification method - %s", settings.NOTIFICATION_METHOD)

    telemetry = LogTelemetry()
    analyzer = TriageAnalyzer(storage, _build_oracle(), settings.ANALYSIS, settings.FUSION)
    router = RoutingEngine(storage, delivery, routing_config, telemetry)
    processor = MessageProcessor(
        analyzer=analyzer,
        router=router,
        history_store=storage,
        decision_store=storage,
        monitored_chats=settings.MONITORED_CHATS,
        routing_config=routing_config,
        telemetry=telemetry,
    )

    # Single handler keeps Telethon integration minimal and defers all filtering
    # to the core processor.
    @client.on(events.NewMessage())
    async def handler(event) -> None:
        try:
            message = await build_message(event.message)
            await processor.handle(message)
        except Exception:
            logger.exception("Error while processing message")

    client.start()
    logger.info("Client connected. Listening for incoming messages...")
    try:
        client.run_until_disconnected()
    finally:
        stats = processor.stats
        logger.info(
            "Processed %s messages (success rate %.2f, fallback rate %.2f)",
            stats.total_processed,
            stats.success_rate,
            stats.fallback_rate,
        )


def _dialog_type(dialog: Any) -> str:
    if getattr(dialog, "is_channel", False):
        entity = getattr(dialog, "entity", None)
        if getattr(entity, "megagroup", False):
            return "group"
        return "channel"
    if getattr(dialog, "is_group", False):
        return "group"
    return "chat"


async def _list_groups(client) -> None:
    """Print every group the account is in, with the id to paste into config.json."""

    found = 0
    async for dialog in client.iter_dialogs():
        if dialog.is_user:
            continue
        found += 1
        print(f"{found}. {_dialog_type(dialog)} | {dialog.name} | {dialog.id}")
    if not found:
        print("No groups found for this account.")


def _discover() -> None:
    _print_banner()
    client = build_client()

    async def _run_discover() -> None:
        await open_session(client)
        await _list_groups(client)
        await client.disconnect()

    client.loop.run_until_complete(_run_discover())


def _analyze(text: str, sender_id: str, chat_id: str) -> None:
    """Categorize one message against stored history without routing it."""

    _configure_logging()
    load_dotenv()
    storage = _init_storage()
    analyzer = TriageAnalyzer(storage, _build_oracle(), settings.ANALYSIS, settings.FUSION)
    message = Message(
        id=f"cli:{uuid.uuid4().hex}",
        body=text,
        sender_id=sender_id,
        sender_name=sender_id,
        chat_id=chat_id,
        chat_name=chat_id,
        is_group=True,
        timestamp=datetime.now(timezone.utc),
    )
    result = asyncio.run(analyzer.analyze(message))
    payload = result.decision.to_dict()
    payload["flag_reason"] = result.decision.flag_reason
    payload["historical_risk"] = result.historical.overall_risk
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _inspect(message_id: str) -> None:
    """Print the stored decision and delivery attempts for one message."""

    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    report = storage.message_report(message_id)
    if report is None:
        print(f"No decision or routing attempts stored for {message_id}")
        return
    print(json.dumps(report, ensure_ascii=False, indent=2, default=str))


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="chattriage")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the triage listener")
    subparsers.add_parser("discover", help="List groups with their ids for config.json")
    analyze_parser = subparsers.add_parser("analyze", help="Categorize a message without routing it")
    analyze_parser.add_argument("text")
    analyze_parser.add_argument("--sender", default="cli")
    analyze_parser.add_argument("--chat", default="cli")
    inspect_parser = subparsers.add_parser(
        "inspect", help="Show the stored decision and routing attempts for a message"
    )
    inspect_parser.add_argument("message_id")

    args = parser.parse_args(argv)
    if args.command == "discover":
        _discover()
        return
    if args.command == "analyze":
        _analyze(args.text, args.sender, args.chat)
        return
    if args.command == "inspect":
        _inspect(args.message_id)
        return
    _run()


if __name__ == "__main__":
    main()
