"""Application entry point for the parley real-time server."""

from __future__ import annotations

import argparse
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

import uvicorn
from art import tprint

import settings
from adapters.jwt_identity import JWTIdentityVerifier
from adapters.socketio_transport import SocketIOGateway, build_asgi_app
from adapters.sqlite_storage import SQLitePersistence
from core.config import RoutingConfig
from core.hub import RealtimeCore

NAME = "PARLEY"
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
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/parley.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _build_identity() -> JWTIdentityVerifier:
    if not settings.JWT_SECRET:
        raise RuntimeError("JWT_SECRET is required (set it in .env)")
    return JWTIdentityVerifier(settings.JWT_SECRET, settings.JWT_ALGORITHM)


def _open_storage() -> SQLitePersistence:
    storage = SQLitePersistence(settings.DB_PATH)
    storage.init_db()
    return storage


def _require_user(storage: SQLitePersistence, id_or_username: str) -> str:
    user_id = storage.resolve_user_id(id_or_username)
    if user_id is None:
        raise SystemExit(f"Unknown user: {id_or_username}")
    return user_id


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting parley")

    storage = _open_storage()
    core = RealtimeCore(
        storage,
        RoutingConfig(
            max_content_length=settings.MAX_CONTENT_LENGTH,
            refresh_relationships=settings.REFRESH_RELATIONSHIPS,
        ),
    )
    gateway = SocketIOGateway(
        core,
        _build_identity(),
        cors_allowed_origins=settings.CORS_ALLOWED_ORIGINS,
    )
    asgi_app = build_asgi_app(gateway, socketio_path=settings.SOCKETIO_PATH)

    logger.info("Listening on %s:%s (path /%s)", settings.HOST, settings.PORT, settings.SOCKETIO_PATH)
    # log_config=None keeps uvicorn on the handlers configured above.
    uvicorn.run(asgi_app, host=settings.HOST, port=settings.PORT, log_config=None)


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="parley")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the real-time server")
    subparsers.add_parser("init-db", help="Create the SQLite tables")

    add_user = subparsers.add_parser("add-user", help="Create a user")
    add_user.add_argument("username")
    add_user.add_argument("--first-name", default="")
    add_user.add_argument("--last-name", default="")

    befriend = subparsers.add_parser("befriend", help="Make two users friends")
    befriend.add_argument("user")
    befriend.add_argument("friend")

    block = subparsers.add_parser("block", help="Let a user block another")
    block.add_argument("user")
    block.add_argument("blocked")

    token = subparsers.add_parser("token", help="Print a development access token")
    token.add_argument("user")

    args = parser.parse_args(argv)
    if args.command == "init-db":
        _open_storage()
        print(f"Database ready at {settings.DB_PATH}")
        return
    if args.command == "add-user":
        user_id = _open_storage().add_user(
            args.username, first_name=args.first_name, last_name=args.last_name
        )
        print(user_id)
        return
    if args.command == "befriend":
        storage = _open_storage()
        storage.add_friendship(_require_user(storage, args.user), _require_user(storage, args.friend))
        return
    if args.command == "block":
        storage = _open_storage()
        storage.add_block(_require_user(storage, args.user), _require_user(storage, args.blocked))
        return
    if args.command == "token":
        storage = _open_storage()
        print(_build_identity().issue(_require_user(storage, args.user)))
        return
    _run()


if __name__ == "__main__":
    main()
