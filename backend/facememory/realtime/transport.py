from __future__ import annotations

import logging
from typing import Iterable

from flask_socketio import SocketIO

from ..game.events import Outbound


logger = logging.getLogger(__name__)


class SocketIOTransport:
    """Delivers game notifications through Flask-SocketIO rooms.

    Works outside of a request context, so the per-room timer tasks can use
    it too.
    """

    def __init__(self, socketio: SocketIO, namespace: str = "/") -> None:
        self.socketio = socketio
        self.namespace = namespace

    def send(self, messages: Iterable[Outbound]) -> None:
        for message in messages:
            try:
                self.socketio.emit(
                    message.event,
                    message.payload,
                    to=message.to,
                    skip_sid=message.skip_sid,
                    namespace=self.namespace,
                )
            except Exception:
                logger.exception("failed to deliver %s to %s", message.event, message.to)

    def add_member(self, channel: str, connection_id: str) -> None:
        self.socketio.server.enter_room(connection_id, channel, namespace=self.namespace)

    def remove_member(self, channel: str, connection_id: str) -> None:
        try:
            self.socketio.server.leave_room(connection_id, channel, namespace=self.namespace)
        except Exception:
            logger.exception("failed to remove %s from %s", connection_id, channel)

    def close(self, channel: str) -> None:
        try:
            self.socketio.close_room(channel, namespace=self.namespace)
        except Exception:
            logger.exception("failed to close channel %s", channel)
