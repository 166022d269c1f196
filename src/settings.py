"""Static configuration for chattriage.

All user-editable settings (monitored chats, destination channels, routing
rules, issue categories, tunables, oracle and notifications) live in a single
JSON file for quick edits without touching Python.
"""

import json
import os

from core.config import (
    build_analysis_config,
    build_channels,
    build_fusion_config,
    build_issue_categories,
    build_monitored_chats,
    build_routing_config,
    build_routing_rules,
)

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

CONFIG_PATH = os.environ.get("CHATTRIAGE_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite database.
_storage = _CONFIG.get("storage", {})
DB_PATH = _storage.get("db_path") or os.path.join(os.path.dirname(__file__), "chattriage.db")
if not os.path.isabs(DB_PATH):
    DB_PATH = os.path.join(PROJECT_ROOT, DB_PATH)
# History older than this is purged on startup.
HISTORY_RETENTION_DAYS = int(_storage.get("history_retention_days", 90))

# Only these chats are triaged; destination groups must not be listed here.
MONITORED_CHATS = build_monitored_chats(_CONFIG.get("monitored_chats", []))

# Directory data is seeded into SQLite on every start.
CHANNELS = build_channels(_CONFIG.get("channels", []))
ROUTING_RULES = build_routing_rules(_CONFIG.get("routing_rules", []))
ISSUE_CATEGORIES = build_issue_categories(_CONFIG.get("issue_categories", []))

ANALYSIS = build_analysis_config(_CONFIG.get("analysis"))
FUSION = build_fusion_config(_CONFIG.get("fusion"))
ROUTING = build_routing_config(_CONFIG.get("routing"))

# Oracle settings; the API key itself comes from ORACLE_API_KEY.
_oracle = _CONFIG.get("oracle", {})
ORACLE_ENABLED = bool(_oracle.get("enabled", True))
ORACLE_MODEL = _oracle.get("model", "gpt-4o-mini")
ORACLE_BASE_URL = _oracle.get("base_url")
ORACLE_TEMPERATURE = float(_oracle.get("temperature", 0.1))
ORACLE_MAX_TOKENS = int(_oracle.get("max_tokens", 300))

# Notification method switches delivery adapters without changing core logic.
_notifications = _CONFIG.get("notifications", {})
NOTIFICATION_METHOD = _notifications.get("notification_method", "client")

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
