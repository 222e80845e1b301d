from __future__ import annotations

import logging
import random
import string
from threading import RLock

from .errors import ConflictError, DuplicateRoomCode, NotFoundError, RoomNotFound
from .models import Player, Room, RoomMode, Settings


logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6


class RoomRegistry:
    """All active rooms of this process.

    ``_lock`` guards the two indexes only. It is never held while a room
    lock is being acquired; room fields are mutated under ``room.lock``.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._lock = RLock()
        self._rooms: dict[str, Room] = {}
        self._connections: dict[str, str] = {}
        self._rng = rng or random.SystemRandom()

    def generate_unique_code(self) -> str:
        with self._lock:
            while True:
                code = "".join(self._rng.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
                if code not in self._rooms:
                    return code

    def create(
        self,
        code: str,
        owner_id: str,
        settings: Settings,
        mode: RoomMode = "hosted",
        owner_name: str | None = None,
        **room_fields,
    ) -> Room:
        with self._lock:
            if code in self._rooms:
                raise DuplicateRoomCode(code)
            current = self._connections.get(owner_id)
            if current is not None:
                raise ConflictError(f"Already in room {current}; leave it first")

            room = Room(code=code, owner_id=owner_id, mode=mode, settings=settings, **room_fields)
            if mode == "hosted":
                room.players[owner_id] = Player(
                    id=owner_id, name=owner_name or "Host", is_host=True
                )
            self._rooms[code] = room
            self._connections[owner_id] = code

        logger.info("room %s created by %s (%s)", code, owner_id, mode)
        return room

    def get(self, code: str) -> Room | None:
        with self._lock:
            return self._rooms.get(code)

    def require(self, code: str) -> Room:
        room = self.get(code)
        if room is None:
            raise RoomNotFound(code)
        return room

    def list_rooms(self) -> list[Room]:
        with self._lock:
            return list(self._rooms.values())

    def count(self) -> int:
        with self._lock:
            return len(self._rooms)

    def room_of(self, connection_id: str) -> str | None:
        with self._lock:
            return self._connections.get(connection_id)

    def delete(self, code: str) -> Room | None:
        with self._lock:
            room = self._rooms.pop(code, None)
            if room is None:
                return None
            for sid in [s for s, c in self._connections.items() if c == code]:
                del self._connections[sid]
        logger.info("room %s deleted", code)
        return room

    def join(self, code: str, connection_id: str, name: str) -> Room:
        room = self.require(code)
        with self._lock:
            current = self._connections.get(connection_id)
            if current is not None and current != code:
                raise ConflictError(f"Already in room {current}; leave it first")

        with room.lock:
            # Closed while we waited for the lock
            if self.get(code) is not room:
                raise RoomNotFound(code)
            if room.mode == "admin" and connection_id == room.owner_id:
                raise ConflictError("The admin of a room cannot join it as a player")
            player = room.players.get(connection_id)
            if player is None:
                player = Player(id=connection_id, name=name)
                room.players[connection_id] = player
            else:
                player.connected = True
                if name:
                    player.name = name
            room.abandoned_since_ms = None

            # Only the owner's own connection gets the host seat back.
            if room.mode == "hosted" and connection_id == room.owner_id:
                self._make_host(room, player)

            # Indexed under the room lock so a concurrent delete either sees
            # this entry or happened before the check above.
            with self._lock:
                self._connections[connection_id] = code
        return room

    def remove_player_by_connection(
        self, connection_id: str
    ) -> tuple[Room, Player | None] | None:
        """Mark a connection as gone from its room.

        Returns the room and the player (``None`` for an admin owner), or
        ``None`` when the connection was not in any room.
        """
        with self._lock:
            code = self._connections.pop(connection_id, None)
            room = self._rooms.get(code) if code else None
        if room is None:
            return None

        with room.lock:
            if room.owner_id == connection_id and room.mode == "admin":
                room.owner_connected = False
                logger.info("admin of room %s disconnected", room.code)
                return room, None

            player = room.players.get(connection_id)
            if player is None:
                return room, None
            player.connected = False
            if player.is_host:
                player.is_host = False
                room.owner_connected = False
                self._promote_next_host(room, exclude=connection_id)
            return room, player

    def kick(self, room: Room, player_id: str) -> Player:
        with room.lock:
            player = room.players.get(player_id)
            if player is None:
                raise NotFoundError(f"Player {player_id} is not in room {room.code}")
            del room.players[player_id]
            room.round_submissions.discard(player_id)
            if player.is_host:
                self._promote_next_host(room, exclude=player_id)

        with self._lock:
            if self._connections.get(player_id) == room.code:
                del self._connections[player_id]
        logger.info("player %s kicked from room %s", player_id, room.code)
        return player

    def leaderboard(self, room_or_code: Room | str) -> list[dict]:
        room = room_or_code if isinstance(room_or_code, Room) else self.require(room_or_code)
        return leaderboard(room)

    @staticmethod
    def _make_host(room: Room, player: Player) -> None:
        for p in room.players.values():
            p.is_host = False
        player.is_host = True
        room.owner_id = player.id
        room.owner_connected = True
        logger.info("room %s host is now %s", room.code, player.id)

    def _promote_next_host(self, room: Room, exclude: str) -> None:
        if room.mode != "hosted":
            return
        for p in room.players.values():
            if p.connected and p.id != exclude:
                self._make_host(room, p)
                return
        logger.info("room %s has no connected player to take over as host", room.code)


def leaderboard(room: Room) -> list[dict]:
    # sorted() is stable, so ties keep join order
    ranked = sorted(room.connected_players(), key=lambda p: p.score, reverse=True)
    return [
        {"rank": i + 1, "name": p.name, "score": p.score, "id": p.id}
        for i, p in enumerate(ranked)
    ]
