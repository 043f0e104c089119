"""Static configuration for biostatus.

All non-secret settings (chain endpoint, storage, engine, defaults, logging)
live in a single JSON file for quick edits without touching Python. Secrets
stay in the environment (.env).
"""

import json
import os

from dotenv import load_dotenv

from biostatus.core.config import EngineConfig, TimestampUnit
from biostatus.core.models import Settings

load_dotenv()

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))

# config.json sits at the project root unless BIOSTATUS_CONFIG points elsewhere.
CONFIG_PATH = os.getenv("BIOSTATUS_CONFIG") or os.path.join(PROJECT_ROOT, "config.json")


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Chain connection. RPC_URL in the environment wins over the file so the same
# config can be pointed at different nodes.
_chain = _CONFIG.get("chain", {})
RPC_URL = os.getenv("RPC_URL") or _chain.get("rpc_url", "ws://127.0.0.1:9944")
SS58_FORMAT = int(_chain.get("ss58_format", 5234))
# Unit of Bioauth expires_at timestamps: "milliseconds" (pallet_timestamp) or "seconds".
TIMESTAMP_UNIT = TimestampUnit.parse(_chain.get("timestamp_unit", "milliseconds"))
POLL_INTERVAL_SECONDS = float(_chain.get("poll_interval_seconds", 3.0))
RETRY_DELAY_SECONDS = float(_chain.get("retry_delay_seconds", 5.0))

# Where to store the SQLite database.
_storage = _CONFIG.get("storage", {})
DB_PATH = _resolve_path(_storage.get("db_path", "biostatus.db"))

# Queue bounds between the Telegram layer, the delivery tasks and the core.
_engine = _CONFIG.get("engine", {})
FAILURE_QUEUE_SIZE = int(_engine.get("failure_queue_size", 1000))
UPDATE_QUEUE_SIZE = int(_engine.get("update_queue_size", 1000))

# Settings applied to pairings that were never customized.
_defaults = _CONFIG.get("defaults", {})
DEFAULT_SETTINGS = Settings(
    max_message_frequency_in_blocks=int(_defaults.get("max_message_frequency_in_blocks", 10)),
    alert_before_expiration_in_mins=int(_defaults.get("alert_before_expiration_in_mins", 60)),
)

ENGINE_CONFIG = EngineConfig(
    timestamp_unit=TIMESTAMP_UNIT,
    default_settings=DEFAULT_SETTINGS,
    failure_queue_size=FAILURE_QUEUE_SIZE,
    retry_delay_seconds=RETRY_DELAY_SECONDS,
)

# Chats allowed to broadcast team announcements.
_telegram = _CONFIG.get("telegram", {})
ADMIN_CHAT_IDS = {int(chat_id) for chat_id in _telegram.get("admin_chat_ids", [])}

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
