"""Static configuration for parley.

All user-editable settings (server, database, routing, logging) live in a
single JSON file for quick edits without touching Python. Secrets such as
JWT_SECRET come from the environment (.env via python-dotenv).
"""

import json
import os

from dotenv import load_dotenv

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

load_dotenv(os.path.join(PROJECT_ROOT, ".env"))

# config.json sits at the project root unless PARLEY_CONFIG points elsewhere.
CONFIG_PATH = os.getenv("PARLEY_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Socket.IO server binding. The web client defaults to port 5002.
_server = _CONFIG.get("server", {})
HOST = _server.get("host", "0.0.0.0")
PORT = int(_server.get("port", 5002))
SOCKETIO_PATH = _server.get("socketio_path", "socket.io")
CORS_ALLOWED_ORIGINS = _server.get("cors_allowed_origins", "*")

# Where to store the SQLite database; relative paths resolve from src/.
_database = _CONFIG.get("database", {})
DB_PATH = _database.get("path", "parley.db")
if not os.path.isabs(DB_PATH):
    DB_PATH = os.path.join(os.path.dirname(__file__), DB_PATH)

# Routing limits and the relationship consistency switch.
# - MAX_CONTENT_LENGTH: longest accepted message body
# - REFRESH_RELATIONSHIPS: re-read friends/blocks per interaction instead of
#   trusting the snapshot taken at connect time
_routing = _CONFIG.get("routing", {})
MAX_CONTENT_LENGTH = int(_routing.get("max_content_length", 5000))
REFRESH_RELATIONSHIPS = bool(_routing.get("refresh_relationships", False))

# Token verification for incoming connections.
JWT_SECRET = os.getenv("JWT_SECRET", "")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
