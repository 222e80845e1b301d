from __future__ import annotations

from dataclasses import dataclass, field
from threading import RLock
from typing import Literal


Phase = Literal["lobby", "viewing", "guessing", "results", "ended", "paused"]
RoomMode = Literal["hosted", "admin"]
ScoringMode = Literal["distance", "grid"]

IN_GAME_PHASES = ("viewing", "guessing", "results", "paused")


@dataclass(frozen=True)
class Position:
    """Percentage coordinates (0-100) relative to the image or board."""

    x: float
    y: float

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class Placement:
    """Grid cell the image is shown in for one round (grid scoring only)."""

    row: int
    col: int
    section: int
    center: Position

    def to_dict(self) -> dict:
        return {
            "row": self.row,
            "col": self.col,
            "section": self.section,
            "x": self.center.x,
            "y": self.center.y,
        }


@dataclass
class Settings:
    view_time_ms: int = 5000
    guess_time_ms: int = 20000
    total_rounds: int = 10
    min_players: int = 2
    scoring_mode: ScoringMode = "distance"

    def to_dict(self) -> dict:
        return {
            "viewTimeMs": self.view_time_ms,
            "guessTimeMs": self.guess_time_ms,
            "totalRounds": self.total_rounds,
            "minPlayers": self.min_players,
            "scoringMode": self.scoring_mode,
        }


@dataclass(frozen=True)
class ScheduledEvent:
    """A pending automatic transition.

    Fires only if the room is still in ``phase`` for ``round``.
    """

    phase: Phase
    round: int
    fire_at_ms: int
    next_phase: Phase


@dataclass
class Player:
    id: str
    name: str
    score: int = 0
    is_host: bool = False
    connected: bool = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "score": self.score,
            "isHost": self.is_host,
            "connected": self.connected,
        }


@dataclass
class Room:
    code: str
    owner_id: str
    mode: RoomMode = "hosted"
    owner_connected: bool = True
    phase: Phase = "lobby"
    current_round: int = 0
    settings: Settings = field(default_factory=Settings)
    players: dict[str, Player] = field(default_factory=dict)
    image_url: str | None = None
    target: Position | None = None
    placement: Placement | None = None
    round_start_time: int | None = None
    phase_ends_at_ms: int | None = None
    scheduled: ScheduledEvent | None = None
    paused_from: Phase | None = None
    paused_remaining_ms: int | None = None
    paused_next_phase: Phase | None = None
    round_submissions: set[str] = field(default_factory=set)
    expires_at_ms: int | None = None
    abandoned_since_ms: int | None = None
    created_at_ms: int = 0
    # Copied from app config at creation
    results_delay_ms: int = 5000
    cleanup_delay_ms: int = 600_000
    far_band_points: int = 10
    lock: RLock = field(default_factory=RLock, repr=False, compare=False)

    @property
    def total_rounds(self) -> int:
        return self.settings.total_rounds

    def connected_players(self) -> list[Player]:
        return [p for p in self.players.values() if p.connected]

    def has_connected_members(self) -> bool:
        if self.owner_connected and self.mode == "admin":
            return True
        return any(p.connected for p in self.players.values())
