"""Event sink: fan game events out to session and player rooms."""

import logging
from typing import Any, Dict, Protocol

logger = logging.getLogger(__name__)

NAMESPACE = '/ws'


def session_room(session_id) -> str:
    return f"session:{session_id}"


def player_room(player_id) -> str:
    return f"player:{player_id}"


class EventSink(Protocol):
    def publish(self, session_id, event: str, payload: Dict[str, Any]) -> None:
        """Send to every participant of the session."""

    def publish_to(self, session_id, player_id, event: str, payload: Dict[str, Any]) -> None:
        """Send to one participant."""


class SocketIOEventSink:
    """Best-effort delivery over Flask-SocketIO rooms."""

    def __init__(self, socketio, namespace: str = NAMESPACE):
        self.socketio = socketio
        self.namespace = namespace

    def publish(self, session_id, event, payload):
        self._emit(event, payload, session_room(session_id))

    def publish_to(self, session_id, player_id, event, payload):
        self._emit(event, payload, player_room(player_id))

    def _emit(self, event, payload, room):
        try:
            self.socketio.emit(event, payload, to=room, namespace=self.namespace)
        except Exception:
            logger.exception(f"[emit-failed] event={event} room={room}")
