"""Socket.IO transport adapter.

Plugs the core into python-socketio. The web client connects with
`io(url, { auth: { token } })`; a `?token=` query string is accepted too.
Every custom event is forwarded to the core through one catch-all handler,
so the event table lives in the core and not in decorator registrations.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import parse_qs

import socketio
from socketio.exceptions import ConnectionRefusedError

from core.errors import IdentityError, NotFoundError, PersistenceError
from core.hub import RealtimeCore
from core.models import ConnectionContext
from core.ports import IdentityPort

LOGGER = logging.getLogger(__name__)


class SocketIOConnection:
    """ConnectionHandle bound to a single Socket.IO session id."""

    def __init__(self, server: socketio.AsyncServer, sid: str) -> None:
        self._server = server
        self.sid = sid

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        await self._server.emit(event, payload, to=self.sid)

    def __repr__(self) -> str:
        return f"SocketIOConnection(sid={self.sid!r})"


def extract_token(environ: Any, auth: Any) -> Optional[str]:
    """Extract the access token from the Socket.IO auth payload or query string."""

    if isinstance(auth, dict):
        auth_token = auth.get("token")
        if isinstance(auth_token, str) and auth_token:
            return auth_token

    # python-socketio passes different shapes depending on the server:
    # ASGI scope with `query_string: bytes`, or WSGI environ with `QUERY_STRING`.
    scope = environ
    if isinstance(environ, dict) and isinstance(environ.get("asgi.scope"), dict):
        scope = environ["asgi.scope"]

    query_string: Any = ""
    if isinstance(scope, dict):
        query_string = scope.get("query_string") or scope.get("QUERY_STRING") or ""
    if isinstance(query_string, (bytes, bytearray)):
        query_string = query_string.decode(errors="ignore")

    token = parse_qs(str(query_string)).get("token", [None])[0]
    return token or None


class SocketIOGateway:
    """Owns the AsyncServer and the sid -> connection context table."""

    def __init__(
        self,
        core: RealtimeCore,
        identity: IdentityPort,
        cors_allowed_origins: Any = "*",
    ) -> None:
        self._core = core
        self._identity = identity
        self._contexts: dict[str, ConnectionContext] = {}
        # async_handlers=False keeps each connection's events in arrival order.
        self.server = socketio.AsyncServer(
            async_mode="asgi",
            cors_allowed_origins=cors_allowed_origins,
            async_handlers=False,
            logger=False,
            engineio_logger=False,
        )
        self.server.on("connect", self._on_connect)
        self.server.on("disconnect", self._on_disconnect)
        self.server.on("*", self._on_event)

    def context_for(self, sid: str) -> Optional[ConnectionContext]:
        return self._contexts.get(sid)

    async def _on_connect(self, sid: str, environ: Any, auth: Any = None) -> None:
        token = extract_token(environ, auth)
        if not token:
            raise ConnectionRefusedError("unauthorized")

        try:
            user_id = self._identity.verify(token)
        except IdentityError as exc:
            LOGGER.info("Rejected connection %s: %s", sid, exc)
            raise ConnectionRefusedError(exc.code) from exc

        handle = SocketIOConnection(self.server, sid)
        try:
            context, superseded = await self._core.open(user_id, handle)
        except NotFoundError as exc:
            LOGGER.info("Rejected connection %s: %s", sid, exc)
            raise ConnectionRefusedError("unauthorized") from exc
        except PersistenceError as exc:
            LOGGER.exception("Socket.IO connect error")
            raise ConnectionRefusedError("server_error") from exc

        self._contexts[sid] = context
        if isinstance(superseded, SocketIOConnection) and superseded.sid != sid:
            LOGGER.info("Closing superseded connection %s for %s", superseded.sid, user_id)
            await self.server.disconnect(superseded.sid)

    async def _on_disconnect(self, sid: str, reason: Any = None) -> None:
        context = self._contexts.pop(sid, None)
        if context is None:
            return
        try:
            await self._core.close(context)
        except Exception:
            LOGGER.exception("Error while closing connection for %s", context.user_id)

    async def _on_event(self, event: str, sid: str, data: Any = None) -> None:
        context = self._contexts.get(sid)
        if context is None:
            LOGGER.debug("Event %s from unknown session %s", event, sid)
            return
        await self._core.dispatch(context, event, data)


def build_asgi_app(gateway: SocketIOGateway, socketio_path: str = "socket.io") -> socketio.ASGIApp:
    """Wrap the gateway's server in an ASGI app served by uvicorn."""

    return socketio.ASGIApp(gateway.server, socketio_path=socketio_path)
