"""Round lifecycle of a single room.

Functions here mutate one ``Room`` and return the notifications that the
change produces; they never deliver anything themselves. The caller holds
``room.lock`` for the whole call, so a command and the notifications it
emits form one step in the room's order of events.

Phases::

    lobby -> viewing -> guessing -> results -> viewing (next round)
                                            -> ended   (after the last round)

``viewing``, ``guessing`` and ``results`` can be paused and resumed. The
automatic transitions are kept in ``room.scheduled`` and fired by
``tick``.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Any

from . import events
from .errors import ConflictError, NotFoundError, PreconditionError, UnauthorizedError, ValidationError
from .events import Outbound
from .models import Phase, Player, Position, Room, ScheduledEvent, Settings
from .registry import leaderboard
from .scoring import distance_score, grid_score, random_placement


logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


SETTINGS_LIMITS = {
    "view_time_ms": (500, 60_000),
    "guess_time_ms": (1_000, 300_000),
    "total_rounds": (1, 50),
    "min_players": (1, 50),
}
SCORING_MODES = ("distance", "grid")
PAUSABLE_PHASES = ("viewing", "guessing", "results")


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


def _number(raw: dict, key: str) -> float:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValidationError(f"{key} must be a number")
    try:
        number = float(value)
    except ValueError:
        raise ValidationError(f"{key} must be a number") from None
    if not math.isfinite(number):
        raise ValidationError(f"{key} must be a finite number")
    return number


def _whole(raw: dict, key: str) -> int:
    number = _number(raw, key)
    if number != int(number):
        raise ValidationError(f"{key} must be a whole number")
    return int(number)


def _duration_ms(raw: dict, ms_key: str, sec_key: str, default: int) -> int:
    if raw.get(ms_key) is not None:
        return _whole(raw, ms_key)
    if raw.get(sec_key) is not None:
        # The admin panel sends seconds
        return int(round(_number(raw, sec_key) * 1000))
    return default


def parse_settings(raw: Any, base: Settings) -> Settings:
    if raw is None:
        return Settings(**vars(base))
    if not isinstance(raw, dict):
        raise ValidationError("settings must be an object")

    values = {
        "view_time_ms": _duration_ms(raw, "viewTimeMs", "viewTime", base.view_time_ms),
        "guess_time_ms": _duration_ms(raw, "guessTimeMs", "guessTime", base.guess_time_ms),
        "total_rounds": _whole(raw, "totalRounds") if raw.get("totalRounds") is not None else base.total_rounds,
        "min_players": _whole(raw, "minPlayers") if raw.get("minPlayers") is not None else base.min_players,
    }
    for name, value in values.items():
        low, high = SETTINGS_LIMITS[name]
        if value < low or value > high:
            raise ValidationError(f"{name} must be between {low} and {high}")

    scoring_mode = raw.get("scoringMode") or base.scoring_mode
    if scoring_mode not in SCORING_MODES:
        raise ValidationError(f"scoringMode must be one of {', '.join(SCORING_MODES)}")

    return Settings(scoring_mode=scoring_mode, **values)


def parse_position(raw: Any, bounded: bool = False) -> Position:
    if not isinstance(raw, dict):
        raise ValidationError("position must be an object with x and y")
    x = _number(raw, "x")
    y = _number(raw, "y")
    if bounded and not (0 <= x <= 100 and 0 <= y <= 100):
        raise ValidationError("position must be within 0-100")
    return Position(x=x, y=y)


# ---------------------------------------------------------------------------
# Snapshots and notification helpers
# ---------------------------------------------------------------------------


def room_public_state(room: Room) -> dict:
    return {
        "code": room.code,
        "mode": room.mode,
        "ownerId": room.owner_id,
        "ownerConnected": room.owner_connected,
        "phase": room.phase,
        "currentRound": room.current_round,
        "totalRounds": room.total_rounds,
        "settings": room.settings.to_dict(),
        "players": [p.to_dict() for p in room.players.values()],
        "playerCount": len(room.connected_players()),
        "imageUrl": room.image_url,
        "target": room.target.to_dict() if room.target else None,
        "placement": room.placement.to_dict() if room.placement else None,
        "phaseEndsAtMs": room.phase_ends_at_ms,
        "roundStartTime": room.round_start_time,
        "pausedFrom": room.paused_from,
    }


def _to_room(room: Room, event: str, payload: dict | None = None, skip_sid: str | None = None) -> Outbound:
    body = dict(payload or {})
    body["room"] = room_public_state(room)
    return Outbound(event, body, to=room.code, skip_sid=skip_sid)


def _to_owner(room: Room, event: str, payload: dict) -> list[Outbound]:
    # Host-observer channel only exists for admin rooms
    if room.mode != "admin" or not room.owner_connected:
        return []
    return [Outbound(event, payload, to=room.owner_id)]


def _round_update(room: Room, duration_ms: int) -> list[Outbound]:
    return _to_owner(
        room,
        events.ADMIN_ROUND_UPDATE,
        {"round": room.current_round, "state": room.phase, "timeRemaining": duration_ms / 1000},
    )


def require_owner(room: Room, connection_id: str, action: str) -> None:
    if connection_id != room.owner_id:
        raise UnauthorizedError(f"Only the host can {action}")


def created_notices(room: Room) -> list[Outbound]:
    state = room_public_state(room)
    if room.mode == "admin":
        payload = {"roomId": room.code, "roomCode": room.code, "room": state}
        return [Outbound(events.ADMIN_ROOM_CREATED, payload, to=room.owner_id)]
    return [Outbound(events.ROOM_CREATED, {"roomCode": room.code, "room": state}, to=room.owner_id)]


def joined_notices(room: Room, player: Player) -> list[Outbound]:
    count = len(room.connected_players())
    out = [
        Outbound(events.ROOM_JOINED, {"player": player.to_dict(), "room": room_public_state(room)}, to=player.id),
        _to_room(room, events.PLAYER_JOINED, {"player": player.to_dict(), "playerCount": count}, skip_sid=player.id),
    ]
    out += _to_owner(room, events.ADMIN_PLAYER_JOINED, {"player": player.to_dict(), "playerCount": count})
    return out


def departure_notices(room: Room, player: Player, kicked: bool = False) -> list[Outbound]:
    out = []
    if kicked:
        out.append(
            Outbound(
                events.KICKED,
                {"message": "You have been removed from the game by the host", "roomCode": room.code},
                to=player.id,
            )
        )
    payload = {
        "playerId": player.id,
        "playerName": player.name,
        "playerCount": len(room.connected_players()),
    }
    out.append(_to_room(room, events.PLAYER_LEFT, payload, skip_sid=player.id))
    out += _to_owner(room, events.ADMIN_PLAYER_LEFT, {"playerId": player.id, "playerName": player.name})
    return out


def closed_notices(room: Room) -> list[Outbound]:
    return [
        Outbound(
            events.ROOM_CLOSED,
            {"roomCode": room.code, "message": "Room has been closed by the host"},
            to=room.code,
            skip_sid=room.owner_id,
        )
    ]


# ---------------------------------------------------------------------------
# Host commands
# ---------------------------------------------------------------------------


def set_image(room: Room, image_url: str) -> list[Outbound]:
    room.image_url = image_url
    logger.info("room %s image set", room.code)
    return [_to_room(room, events.IMAGE_UPLOADED, {"imageUrl": image_url})]


def calibrate_target(room: Room, connection_id: str, position: Position) -> list[Outbound]:
    require_owner(room, connection_id, "calibrate the target")
    room.target = position
    logger.info("room %s target calibrated at (%.1f, %.1f)", room.code, position.x, position.y)
    return [_to_room(room, events.TARGET_CALIBRATED, {"position": position.to_dict()})]


def start_game(
    room: Room,
    connection_id: str,
    now: int,
    settings_raw: Any = None,
    image_url: str | None = None,
    target: Position | None = None,
) -> list[Outbound]:
    """Leave the lobby. ``image_url`` and ``target`` replace the room's own when given."""
    require_owner(room, connection_id, "start the game")
    if room.phase != "lobby":
        raise PreconditionError("Game already started")

    settings = parse_settings(settings_raw, room.settings) if settings_raw is not None else room.settings
    image_url = image_url or room.image_url
    target = target or room.target
    if not image_url or target is None:
        raise PreconditionError("Game not ready - missing image or target")
    if len(room.connected_players()) < settings.min_players:
        raise PreconditionError(f"Need at least {settings.min_players} players to start")

    room.settings = settings
    room.image_url = image_url
    room.target = target
    room.current_round = 1
    room.expires_at_ms = None
    logger.info(
        "room %s started: rounds=%d view=%dms guess=%dms scoring=%s",
        room.code,
        settings.total_rounds,
        settings.view_time_ms,
        settings.guess_time_ms,
        settings.scoring_mode,
    )

    viewing = _enter_viewing(room, now)
    out = [_to_room(room, events.GAME_STARTED)]
    out += _to_owner(room, events.ADMIN_GAME_STARTED, {"room": room_public_state(room)})
    return out + viewing


def pause_game(room: Room, connection_id: str, now: int) -> list[Outbound]:
    require_owner(room, connection_id, "pause the game")
    if room.phase not in PAUSABLE_PHASES:
        raise PreconditionError("The game can only be paused during a round")

    pending = room.scheduled
    room.paused_from = room.phase
    room.paused_remaining_ms = max(0, pending.fire_at_ms - now) if pending else 0
    room.paused_next_phase = pending.next_phase if pending else None
    room.scheduled = None
    room.phase_ends_at_ms = None
    room.phase = "paused"
    logger.info("room %s paused in %s with %dms left", room.code, room.paused_from, room.paused_remaining_ms)
    return [_to_room(room, events.GAME_PAUSED, {"pausedFrom": room.paused_from, "remainingMs": room.paused_remaining_ms})]


def resume_game(room: Room, connection_id: str, now: int) -> list[Outbound]:
    require_owner(room, connection_id, "resume the game")
    if room.phase != "paused" or room.paused_from is None:
        raise PreconditionError("The game is not paused")

    remaining = room.paused_remaining_ms or 0
    next_phase = room.paused_next_phase
    room.phase = room.paused_from
    room.paused_from = None
    room.paused_remaining_ms = None
    room.paused_next_phase = None
    if next_phase is not None:
        _schedule(room, now + remaining, next_phase)
    logger.info("room %s resumed in %s with %dms left", room.code, room.phase, remaining)

    out = [_to_room(room, events.GAME_RESUMED, {"phase": room.phase, "remainingMs": remaining})]
    if room.phase in ("viewing", "guessing"):
        out += _round_update(room, remaining)
    return out


def next_round(room: Room, connection_id: str, now: int) -> list[Outbound]:
    require_owner(room, connection_id, "advance the round")
    if room.phase == "lobby":
        raise PreconditionError("The game has not started")
    if room.phase == "ended":
        raise PreconditionError("The game has ended")
    if room.current_round >= room.total_rounds:
        raise PreconditionError("No rounds remaining")
    return _advance_round(room, now)


def end_game(room: Room, connection_id: str, now: int) -> list[Outbound]:
    require_owner(room, connection_id, "end the game")
    if room.phase == "ended":
        raise PreconditionError("The game has already ended")
    return _enter_ended(room, now)


# ---------------------------------------------------------------------------
# Player commands
# ---------------------------------------------------------------------------


def score_click(room: Room, position: Position) -> int:
    if room.settings.scoring_mode == "grid":
        if room.placement is None:
            raise PreconditionError("No placement for this round")
        return grid_score(position, room.placement)
    if room.target is None:
        raise PreconditionError("No target calibrated")
    return distance_score(position, room.target, far_points=room.far_band_points)


def submit_click(room: Room, connection_id: str, position: Position) -> list[Outbound]:
    """Score one click. Due timers must already have been applied."""
    player = room.players.get(connection_id)
    if player is None or not player.connected:
        raise NotFoundError("You are not a player in this room")
    if room.phase != "guessing":
        raise PreconditionError("Not accepting guesses right now")
    if connection_id in room.round_submissions:
        raise ConflictError("You already guessed this round")

    points = score_click(room, position)
    room.round_submissions.add(connection_id)
    player.score += points
    logger.info("room %s: %s scored %d (total %d)", room.code, player.name, points, player.score)

    board = leaderboard(room)
    out = [
        _to_room(
            room,
            events.PLAYER_SCORED,
            {
                "playerId": player.id,
                "playerName": player.name,
                "points": points,
                "position": position.to_dict(),
                "totalScore": player.score,
            },
        ),
        _to_room(room, events.LEADERBOARD_UPDATE, {"leaderboard": board}),
    ]
    out += _to_owner(
        room,
        events.ADMIN_PLAYER_SCORED,
        {"playerId": player.id, "playerName": player.name, "points": points, "leaderboard": board},
    )
    return out


# ---------------------------------------------------------------------------
# Timer-driven transitions
# ---------------------------------------------------------------------------


def _schedule(room: Room, fire_at_ms: int, next_phase: Phase) -> None:
    room.scheduled = ScheduledEvent(
        phase=room.phase,
        round=room.current_round,
        fire_at_ms=fire_at_ms,
        next_phase=next_phase,
    )
    room.phase_ends_at_ms = fire_at_ms


def tick(room: Room, now: int) -> list[Outbound]:
    """Fire every scheduled transition that is due at ``now``.

    Each transition runs at its own scheduled time, so a late tick produces
    the same timeline as a punctual one.
    """
    out: list[Outbound] = []
    while room.scheduled is not None and room.scheduled.fire_at_ms <= now:
        event = room.scheduled
        room.scheduled = None
        if room.phase != event.phase or room.current_round != event.round:
            logger.debug(
                "room %s: stale timer for %s/%d (now %s/%d)",
                room.code,
                event.phase,
                event.round,
                room.phase,
                room.current_round,
            )
            continue
        out.extend(_fire(room, event))
    return out


def _fire(room: Room, event: ScheduledEvent) -> list[Outbound]:
    at = event.fire_at_ms
    if event.next_phase == "guessing":
        return _enter_guessing(room, at)
    if event.next_phase == "results":
        return _enter_results(room, at)
    if event.next_phase == "viewing":
        return _advance_round(room, at)
    if event.next_phase == "ended":
        return _enter_ended(room, at)
    logger.warning("room %s: no transition to %s", room.code, event.next_phase)
    return []


def _enter_viewing(room: Room, at: int) -> list[Outbound]:
    room.phase = "viewing"
    room.round_start_time = at
    room.round_submissions = set()
    room.paused_from = None
    room.paused_remaining_ms = None
    room.paused_next_phase = None
    if room.settings.scoring_mode == "grid":
        room.placement = random_placement()
    _schedule(room, at + room.settings.view_time_ms, "guessing")
    logger.info("room %s round %d/%d viewing", room.code, room.current_round, room.total_rounds)

    payload = {
        "round": room.current_round,
        "totalRounds": room.total_rounds,
        "imageUrl": room.image_url,
        "targetPosition": room.target.to_dict() if room.target else None,
        "placement": room.placement.to_dict() if room.placement else None,
        "viewTimeMs": room.settings.view_time_ms,
    }
    return [_to_room(room, events.SHOW_IMAGE, payload)] + _round_update(room, room.settings.view_time_ms)


def _enter_guessing(room: Room, at: int) -> list[Outbound]:
    room.phase = "guessing"
    _schedule(room, at + room.settings.guess_time_ms, "results")
    logger.info("room %s round %d guessing", room.code, room.current_round)
    payload = {"round": room.current_round, "guessTimeMs": room.settings.guess_time_ms}
    return [_to_room(room, events.HIDE_IMAGE, payload)] + _round_update(room, room.settings.guess_time_ms)


def _enter_results(room: Room, at: int) -> list[Outbound]:
    room.phase = "results"
    last_round = room.current_round >= room.total_rounds
    _schedule(room, at + room.results_delay_ms, "ended" if last_round else "viewing")
    logger.info("room %s round %d results", room.code, room.current_round)

    if room.settings.scoring_mode == "grid" and room.placement is not None:
        correct = room.placement.center
    else:
        correct = room.target
    payload = {
        "round": room.current_round,
        "leaderboard": leaderboard(room),
        "correctPosition": correct.to_dict() if correct else None,
    }
    return [_to_room(room, events.ROUND_ENDED, payload)]


def _advance_round(room: Room, at: int) -> list[Outbound]:
    room.current_round = min(room.current_round + 1, room.total_rounds)
    return _enter_viewing(room, at)


def _enter_ended(room: Room, at: int) -> list[Outbound]:
    room.phase = "ended"
    room.scheduled = None
    room.phase_ends_at_ms = None
    room.paused_from = None
    room.paused_remaining_ms = None
    room.paused_next_phase = None
    room.expires_at_ms = at + room.cleanup_delay_ms
    board = leaderboard(room)
    logger.info("room %s ended after round %d", room.code, room.current_round)
    final = {"finalLeaderboard": board, "winner": board[0] if board else None}
    return [_to_room(room, events.GAME_ENDED, final)] + _to_owner(room, events.ADMIN_GAME_ENDED, final)


def is_expired(room: Room, now: int) -> bool:
    return room.expires_at_ms is not None and now >= room.expires_at_ms
