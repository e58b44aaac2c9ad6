"""Connection lifecycle and shared real-time state (core domain).

RealtimeCore owns the registry, the call session table and the components
that read them. One instance lives as long as the server process; tests
build their own for isolation instead of sharing module-level maps.

Lifecycle:
1) open: load profile + relationships, register, persist online, fan out
2) dispatch: parse and route inbound events in arrival order
3) close: unregister, end calls, persist offline, fan out
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Optional

from core.authorization import AuthorizationGate
from core.calls import CallSignalingBroker
from core.config import RoutingConfig
from core.errors import InvalidInputError, NotFoundError, PersistenceError
from core.events import ERROR, error_payload, is_known_event, parse_event
from core.models import ConnectionContext, utcnow
from core.ports import PersistencePort
from core.presence import PresenceNotifier
from core.registry import ConnectionRegistry
from core.router import EventRouter, load_relationships

LOGGER = logging.getLogger(__name__)

# Invalid values for these events are dropped without telling the client.
_SILENT_INVALID = frozenset({"status_change"})


class RealtimeCore:
    """Entry point used by transports: open, dispatch and close connections."""

    def __init__(self, persistence: PersistencePort, config: Optional[RoutingConfig] = None) -> None:
        self.config = config or RoutingConfig()
        self.persistence = persistence
        self.registry = ConnectionRegistry()
        self.broker = CallSignalingBroker(self.registry)
        self.presence = PresenceNotifier(self.registry)
        self.gate = AuthorizationGate(persistence)
        self.router = EventRouter(
            registry=self.registry,
            persistence=persistence,
            gate=self.gate,
            broker=self.broker,
            presence=self.presence,
            config=self.config,
        )

    async def open(self, user_id: str, handle: Any) -> tuple[ConnectionContext, Optional[Any]]:
        """Register an authenticated connection.

        Returns the new context and the handle it superseded, if any, so the
        transport can close the older connection.
        """

        profile = await self.persistence.find_user(user_id)
        if profile is None:
            raise NotFoundError(f"User not found: {user_id}")
        relationships = await load_relationships(self.persistence, user_id)

        context = ConnectionContext(
            profile=replace(profile, status="online"),
            handle=handle,
            relationships=relationships,
        )
        previous = self.registry.register(user_id, handle)
        LOGGER.info("User connected: %s", profile.username)

        await self._save_status(user_id, "online")
        await self.presence.broadcast_status(user_id, relationships.friend_ids, "online")
        return context, previous.handle if previous else None

    async def dispatch(self, context: ConnectionContext, name: str, payload: Any) -> None:
        """Parse and route one inbound event. Never raises."""

        if not is_known_event(name):
            LOGGER.debug("Dropping unknown event %s from %s", name, context.user_id)
            return

        try:
            event = parse_event(name, payload, self.config.max_content_length)
        except InvalidInputError as exc:
            LOGGER.info("Invalid %s from %s: %s", name, context.user_id, exc)
            if name not in _SILENT_INVALID:
                await self._reply_error(context, str(exc))
            return

        try:
            await self.router.route(context, event)
        except Exception:
            LOGGER.exception("Error while handling %s from %s", name, context.user_id)

    async def close(self, context: ConnectionContext) -> bool:
        """Tear a connection down completely.

        A superseded connection closing is a no-op so it cannot evict the
        connection that replaced it.
        """

        user_id = context.user_id
        if not self.registry.unregister(user_id, context.handle):
            LOGGER.debug("Ignoring close of superseded connection for %s", user_id)
            return False

        LOGGER.info("User disconnected: %s", context.profile.username)
        ended = await self.broker.end_all_for(user_id)
        if ended:
            LOGGER.info("Ended %s call(s) for %s on disconnect", ended, user_id)
        await self._save_status(user_id, "offline")
        await self.presence.broadcast_status(user_id, context.relationships.friend_ids, "offline")
        return True

    async def _save_status(self, user_id: str, status: str) -> None:
        try:
            await self.persistence.update_user_status(user_id, status, utcnow())
        except PersistenceError:
            LOGGER.warning("Could not persist status %s for %s", status, user_id)
        except Exception:
            # Teardown and presence fan-out still have to run.
            LOGGER.exception("Unexpected error persisting status %s for %s", status, user_id)

    async def _reply_error(self, context: ConnectionContext, message: str) -> None:
        try:
            await context.handle.emit(ERROR, error_payload(message))
        except Exception:
            LOGGER.exception("Failed to send error to %s", context.user_id)
