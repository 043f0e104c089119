"""Telethon bot client factory.

The client is created here but started by app.py with the bot token, so
importing this module never opens a connection.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from telethon import TelegramClient


def build_client() -> TelegramClient:
    """Build the bot client from API_ID, API_HASH and SESSION_NAME.

    API_ID/API_HASH identify the application, BOT_TOKEN is used when the
    client is started. The session name defaults to "biostatus".
    """

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")
    session_name = os.getenv("SESSION_NAME", "biostatus")

    # Fail fast on missing credentials.
    if not api_id or not api_hash:
        raise RuntimeError("Missing API_ID or API_HASH in environment")

    logging.getLogger(__name__).info("Initializing Telegram client")

    return TelegramClient(session_name, int(api_id), api_hash)


def bot_token() -> str:
    load_dotenv()
    token = os.getenv("BOT_TOKEN")
    if not token:
        raise RuntimeError("Missing BOT_TOKEN in environment")
    return token
