from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from threading import RLock
from typing import Any, Callable, Iterable, Iterator, Mapping

from . import service
from .errors import DuplicateRoomCode, GameError, RoomNotFound, ValidationError
from .events import Outbound
from .images import URL_PREFIX, ImageStore, MemoryImageStore
from .models import Player, Room, Settings
from .registry import RoomRegistry, leaderboard
from .transport import LocalTransport, Transport


logger = logging.getLogger(__name__)

ROOM_CODE_PATTERN = re.compile(r"^[A-Z0-9]{4,10}$")


class GameServer:
    """Applies commands to rooms and delivers what they emit.

    Every method that touches a room takes ``room.lock``, fires any timers
    that are already due, then applies the command, so commands and timer
    transitions of one room are strictly ordered.
    """

    def __init__(
        self,
        config: Mapping[str, Any] | None = None,
        transport: Transport | None = None,
        image_store: ImageStore | None = None,
        registry: RoomRegistry | None = None,
        clock: Callable[[], int] = service.now_ms,
    ) -> None:
        self.config = dict(config or {})
        self.transport = transport if transport is not None else LocalTransport()
        self.images = image_store or MemoryImageStore(
            max_bytes=int(self.config.get("MAX_IMAGE_BYTES", 5 * 1024 * 1024))
        )
        self.registry = registry or RoomRegistry()
        self.clock = clock
        self.started_at_ms = clock()
        # HTTP uploads waiting for a room to claim them: url -> stored at (ms)
        self._pending_uploads: dict[str, int] = {}
        self._uploads_lock = RLock()

    # -- configuration ----------------------------------------------------

    def default_settings(self) -> Settings:
        cfg = self.config
        return Settings(
            view_time_ms=int(cfg.get("DEFAULT_VIEW_TIME_MS", 5000)),
            guess_time_ms=int(cfg.get("DEFAULT_GUESS_TIME_MS", 20000)),
            total_rounds=int(cfg.get("DEFAULT_TOTAL_ROUNDS", 10)),
            min_players=int(cfg.get("DEFAULT_MIN_PLAYERS", 2)),
            scoring_mode=cfg.get("DEFAULT_SCORING_MODE", "distance"),
        )

    def _room_fields(self) -> dict:
        cfg = self.config
        return {
            "results_delay_ms": int(cfg.get("RESULTS_DURATION_MS", 5000)),
            "cleanup_delay_ms": int(cfg.get("ROOM_CLEANUP_SEC", 600)) * 1000,
            "far_band_points": int(cfg.get("FAR_BAND_POINTS", 10)),
            "created_at_ms": self.clock(),
        }

    # -- plumbing -----------------------------------------------------------

    def _deliver(self, messages: Iterable[Outbound]) -> None:
        messages = list(messages)
        if messages:
            self.transport.send(messages)

    @contextmanager
    def _locked(self, code: str) -> Iterator[tuple[Room, int]]:
        room = self.registry.require(code)
        with room.lock:
            if self.registry.get(code) is not room:
                raise RoomNotFound(code)
            now = self.clock()
            self._deliver(service.tick(room, now))
            yield room, now

    def _destroy(self, room: Room) -> None:
        self.registry.delete(room.code)
        self.transport.close(room.code)
        self.images.discard(room.image_url)

    # -- room lifecycle -------------------------------------------------------

    def create_room(self, connection_id: str, player_name: str, settings_raw: Any = None) -> Room:
        settings = service.parse_settings(settings_raw, self.default_settings())
        while True:
            code = self.registry.generate_unique_code()
            try:
                room = self.registry.create(
                    code, connection_id, settings, mode="hosted", owner_name=player_name, **self._room_fields()
                )
            except DuplicateRoomCode:
                continue
            break
        self.transport.add_member(room.code, connection_id)
        with room.lock:
            self._deliver(service.created_notices(room))
        return room

    def create_admin_room(self, connection_id: str, code: str, settings_raw: Any = None) -> Room:
        code = (code or "").strip().upper()
        if not ROOM_CODE_PATTERN.match(code):
            raise ValidationError("Room ID must be 4-10 letters or digits")
        settings = service.parse_settings(settings_raw, self.default_settings())
        room = self.registry.create(code, connection_id, settings, mode="admin", **self._room_fields())
        self.transport.add_member(room.code, connection_id)
        with room.lock:
            self._deliver(service.created_notices(room))
        return room

    def join(self, connection_id: str, code: str, player_name: str) -> Room:
        room = self.registry.join(code, connection_id, player_name)
        self.transport.add_member(room.code, connection_id)
        with room.lock:
            player = room.players[connection_id]
            self._deliver(service.joined_notices(room, player))
        return room

    def leave(self, connection_id: str) -> Room | None:
        """Disconnect or explicit leave: the player stays on the roster."""
        result = self.registry.remove_player_by_connection(connection_id)
        if result is None:
            return None
        room, player = result
        self.transport.remove_member(room.code, connection_id)
        with room.lock:
            if player is not None:
                logger.info("%s left room %s", player.name, room.code)
                self._deliver(service.departure_notices(room, player))
        return room

    def close_room(self, connection_id: str, code: str) -> None:
        with self._locked(code) as (room, _now):
            service.require_owner(room, connection_id, "close the room")
            self._deliver(service.closed_notices(room))
            self._destroy(room)
        logger.info("room %s closed by host", code)

    def kick(self, connection_id: str, code: str, player_id: str) -> Player:
        with self._locked(code) as (room, _now):
            service.require_owner(room, connection_id, "kick players")
            player = self.registry.kick(room, player_id)
            self.transport.remove_member(room.code, player_id)
            self._deliver(service.departure_notices(room, player, kicked=True))
            return player

    # -- game commands --------------------------------------------------------

    def upload_image(self, connection_id: str, code: str, image: Any) -> str:
        """Attach an image to the room; the room owns it from then on."""
        with self._locked(code) as (room, _now):
            service.require_owner(room, connection_id, "upload an image")
            url, _uploaded = self._claim_image(image)
            previous = room.image_url
            self._deliver(service.set_image(room, url))
        if previous and previous != url:
            self.images.discard(previous)
        return url

    def calibrate_target(self, connection_id: str, code: str, position_raw: Any) -> None:
        position = service.parse_position(position_raw, bounded=True)
        with self._locked(code) as (room, _now):
            self._deliver(service.calibrate_target(room, connection_id, position))

    def start_game(
        self,
        connection_id: str,
        code: str,
        settings_raw: Any = None,
        image: Any = None,
        target_raw: Any = None,
    ) -> None:
        """Start the game, optionally setting the image and target in the same step."""
        target = service.parse_position(target_raw, bounded=True) if target_raw is not None else None
        with self._locked(code) as (room, now):
            service.require_owner(room, connection_id, "start the game")
            claimed = self._claim_image(image) if image else None
            previous = room.image_url
            try:
                out = service.start_game(
                    room,
                    connection_id,
                    now,
                    settings_raw,
                    image_url=claimed[0] if claimed else None,
                    target=target,
                )
            except GameError:
                if claimed:
                    self._release_image(*claimed)
                raise
            self._deliver(out)
        if claimed and previous and previous != claimed[0]:
            self.images.discard(previous)

    def click(self, connection_id: str, code: str, position_raw: Any) -> int:
        position = service.parse_position(position_raw)
        with self._locked(code) as (room, _now):
            self._deliver(service.submit_click(room, connection_id, position))
            return room.players[connection_id].score

    def pause(self, connection_id: str, code: str) -> None:
        with self._locked(code) as (room, now):
            self._deliver(service.pause_game(room, connection_id, now))

    def resume(self, connection_id: str, code: str) -> None:
        with self._locked(code) as (room, now):
            self._deliver(service.resume_game(room, connection_id, now))

    def next_round(self, connection_id: str, code: str) -> None:
        with self._locked(code) as (room, now):
            self._deliver(service.next_round(room, connection_id, now))

    def end_game(self, connection_id: str, code: str) -> None:
        with self._locked(code) as (room, now):
            self._deliver(service.end_game(room, connection_id, now))

    # -- images ---------------------------------------------------------------

    def store_upload(self, blob: bytes, mimetype: str) -> str:
        """Keep an HTTP upload until a room claims it or it goes stale."""
        self.sweep_uploads()
        url = self.images.save(blob, mimetype)
        with self._uploads_lock:
            self._pending_uploads[url] = self.clock()
        return url

    def sweep_uploads(self, now: int | None = None) -> int:
        now = self.clock() if now is None else now
        ttl_ms = int(self.config.get("UPLOAD_CLAIM_TTL_SEC", 600)) * 1000
        with self._uploads_lock:
            stale = [url for url, at in self._pending_uploads.items() if now - at >= ttl_ms]
            for url in stale:
                del self._pending_uploads[url]
        for url in stale:
            self.images.discard(url)
        if stale:
            logger.info("discarded %d unclaimed upload(s)", len(stale))
        return len(stale)

    def _claim_image(self, image: Any) -> tuple[str, bool]:
        """Return ``(url, from_upload)`` for a data URL or a pending upload URL."""
        if isinstance(image, str) and image.startswith(URL_PREFIX):
            with self._uploads_lock:
                if self._pending_uploads.pop(image, None) is None:
                    raise ValidationError("imageUrl is not an unclaimed upload")
            return image, True
        return self.images.save_data_url(image), False

    def _release_image(self, url: str, from_upload: bool) -> None:
        if from_upload:
            with self._uploads_lock:
                self._pending_uploads[url] = self.clock()
        else:
            self.images.discard(url)

    # -- timers ---------------------------------------------------------------

    def pump_room(self, code: str, now: int | None = None) -> bool:
        """Fire due timers for one room; False once the room is gone."""
        room = self.registry.get(code)
        if room is None:
            return False
        with room.lock:
            if self.registry.get(code) is not room:
                return False
            now = self.clock() if now is None else now
            self._deliver(service.tick(room, now))

            if service.is_expired(room, now):
                logger.info("room %s cleaned up after game end", code)
                self._destroy(room)
                return False
            if self._abandoned(room, now):
                logger.info("room %s removed after being abandoned", code)
                self._destroy(room)
                return False
        return True

    def pump(self, now: int | None = None) -> None:
        for room in self.registry.list_rooms():
            self.pump_room(room.code, now)
        self.sweep_uploads(now)

    def _abandoned(self, room: Room, now: int) -> bool:
        if room.has_connected_members():
            room.abandoned_since_ms = None
            return False
        if room.abandoned_since_ms is None:
            room.abandoned_since_ms = now
            return False
        ttl_ms = int(self.config.get("ABANDONED_ROOM_TTL_SEC", 600)) * 1000
        return now - room.abandoned_since_ms >= ttl_ms

    # -- read side ------------------------------------------------------------

    def snapshot(self, code: str) -> dict:
        room = self.registry.require(code)
        with room.lock:
            return service.room_public_state(room)

    def leaderboard(self, code: str) -> list[dict]:
        room = self.registry.require(code)
        with room.lock:
            return leaderboard(room)

    def stats(self) -> dict:
        return {
            "activeRooms": self.registry.count(),
            "uptimeSec": max(0, self.clock() - self.started_at_ms) / 1000,
        }
