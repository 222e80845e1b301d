from __future__ import annotations

from dataclasses import dataclass, field


# Outbound event names (wire protocol shared with the browser clients)
ROOM_CREATED = "room-created"
ADMIN_ROOM_CREATED = "admin-room-created"
ROOM_JOINED = "room-joined"
PLAYER_JOINED = "player-joined"
ADMIN_PLAYER_JOINED = "admin-player-joined"
PLAYER_LEFT = "player-left"
ADMIN_PLAYER_LEFT = "admin-player-left"
IMAGE_UPLOADED = "image-uploaded"
TARGET_CALIBRATED = "target-calibrated"
GAME_STARTED = "game-started"
ADMIN_GAME_STARTED = "admin-game-started"
SHOW_IMAGE = "show-image"
HIDE_IMAGE = "hide-image"
ADMIN_ROUND_UPDATE = "admin-round-update"
PLAYER_SCORED = "player-scored"
ADMIN_PLAYER_SCORED = "admin-player-scored"
LEADERBOARD_UPDATE = "leaderboard-update"
ROUND_ENDED = "round-ended"
GAME_ENDED = "game-ended"
ADMIN_GAME_ENDED = "admin-game-ended"
GAME_PAUSED = "game-paused"
GAME_RESUMED = "game-resumed"
KICKED = "kicked"
ROOM_CLOSED = "room-closed"
ERROR = "error"


@dataclass(frozen=True)
class Outbound:
    """One notification to deliver.

    ``to`` is either a room code (every member of the channel) or a single
    connection id. ``skip_sid`` excludes one connection from a room send.
    """

    event: str
    payload: dict = field(default_factory=dict)
    to: str = ""
    skip_sid: str | None = None
