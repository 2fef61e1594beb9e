"""Static configuration for igbridge.

All user-editable settings (destination chat, features, filters, staging,
logging) live in a single JSON file for quick edits without touching Python.
Secrets stay in the environment (.env).
"""

import json
import os

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

CONFIG_PATH = os.environ.get("IGBRIDGE_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _project_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite database with thread mappings and user profiles.
DB_PATH = _project_path(_CONFIG.get("database", {}).get("path", "igbridge.db"))

# Destination forum supergroup and feature switches.
_bridge = _CONFIG.get("bridge", {})
DEST_CHAT_ID = str(_bridge.get("chat_id") or "")
WELCOME_MESSAGE = bool(_bridge.get("welcome_message", True))
PIN_WELCOME = bool(_bridge.get("pin_welcome", True))
PROFILE_PIC_SYNC = bool(_bridge.get("profile_pic_sync", False))
TOPIC_ICON_COLOR = int(_bridge.get("topic_icon_color", 0x7ABA3C))
METADATA_TIMEOUT = float(_bridge.get("metadata_timeout", 5))
# Status reactions on destination messages bridged back to the source.
REACTIONS = bool(_bridge.get("reactions", True))

# Translator limits and the reply-prefix option.
_translator = _CONFIG.get("translator", {})
MAX_TEXT_CHARS = int(_translator.get("max_text_chars", 4096))
MAX_CAPTION_CHARS = int(_translator.get("max_caption_chars", 1024))
MAX_SOURCE_TEXT_CHARS = int(_translator.get("max_source_text_chars", 1000))
ATTRIBUTE_SENDER = bool(_translator.get("attribute_sender", True))
PREFIX_REPLIES_WITH_SENDER = bool(_translator.get("prefix_replies_with_sender", False))

# Media staging between download and upload.
_transfer = _CONFIG.get("transfer", {})
STAGING_DIR = _project_path(_transfer.get("staging_dir", "temp"))
_max_media = _transfer.get("max_media_bytes", 50 * 1024 * 1024)
MAX_MEDIA_BYTES = int(_max_media) if _max_media else None
HTTP_TIMEOUT = float(_transfer.get("http_timeout", 60))

# Filters are applied in both directions before translation.
FILTERS_CONFIG = _CONFIG.get("filters", {})

# "module:callable" returning the source-platform client.
SOURCE_FACTORY = _CONFIG.get("source", {}).get("factory")

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
