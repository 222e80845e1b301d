from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Protocol

from .events import Outbound


class Transport(Protocol):
    """Where a game server's notifications go.

    Channels are named by room code; a connection id is also a valid
    recipient on its own.
    """

    def send(self, messages: Iterable[Outbound]) -> None: ...

    def add_member(self, channel: str, connection_id: str) -> None: ...

    def remove_member(self, channel: str, connection_id: str) -> None: ...

    def close(self, channel: str) -> None: ...


class LocalTransport:
    """In-process delivery for single-device play and for tests.

    Every message is fanned out to per-connection inboxes at send time, so
    an inbox reflects channel membership as it was when the message left.
    """

    def __init__(self) -> None:
        self.sent: list[Outbound] = []
        self.channels: dict[str, list[str]] = defaultdict(list)
        self.inboxes: dict[str, list[tuple[str, dict]]] = defaultdict(list)

    def send(self, messages: Iterable[Outbound]) -> None:
        for message in messages:
            self.sent.append(message)
            if message.to in self.channels:
                recipients = [sid for sid in self.channels[message.to] if sid != message.skip_sid]
            else:
                recipients = [message.to]
            for sid in recipients:
                self.inboxes[sid].append((message.event, message.payload))

    def add_member(self, channel: str, connection_id: str) -> None:
        members = self.channels[channel]
        if connection_id not in members:
            members.append(connection_id)

    def remove_member(self, channel: str, connection_id: str) -> None:
        if connection_id in self.channels.get(channel, []):
            self.channels[channel].remove(connection_id)

    def close(self, channel: str) -> None:
        self.channels.pop(channel, None)

    def events_for(self, connection_id: str) -> list[str]:
        return [event for event, _ in self.inboxes.get(connection_id, [])]

    def last(self, connection_id: str, event: str) -> dict | None:
        for name, payload in reversed(self.inboxes.get(connection_id, [])):
            if name == event:
                return payload
        return None

    def clear(self) -> None:
        self.sent.clear()
        self.inboxes.clear()
