from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Callable

from flask import request
from flask_socketio import SocketIO, emit

from ..game import events
from ..game.engine import GameServer
from ..game.errors import GameError, ValidationError


logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 24


def _text(payload: dict, key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value.strip()


def _room_code(payload: dict) -> str:
    # The admin panel names the room `roomId`
    code = (_text(payload, "roomCode") or _text(payload, "roomId")).upper()
    if not code:
        raise ValidationError("Room code is required")
    return code


def _player_name(payload: dict) -> str:
    name = _text(payload, "playerName")
    if not name:
        raise ValidationError("Player name is required")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Player name must be at most {MAX_NAME_LENGTH} characters")
    # Avoid obvious HTML/script injection.
    if "<" in name or ">" in name:
        raise ValidationError("Player name contains invalid characters")
    # No control characters.
    if any(ord(ch) < 32 for ch in name):
        raise ValidationError("Player name contains invalid characters")
    return name


def register_socketio_handlers(socketio: SocketIO, server: GameServer, config: dict | None = None) -> None:
    cfg = config or {}
    timers_enabled = bool(cfg.get("ROOM_TIMERS_ENABLED", True))
    tick_interval = float(cfg.get("TICK_INTERVAL_SEC", 0.1))
    room_tasks: dict[str, bool] = {}
    room_tasks_lock = Lock()

    def _ensure_room_task(room_code: str) -> None:
        if not timers_enabled:
            return
        with room_tasks_lock:
            if room_tasks.get(room_code):
                return
            room_tasks[room_code] = True

        def _runner() -> None:
            logger.debug("timer task for room %s started", room_code)
            while True:
                try:
                    alive = server.pump_room(room_code)
                except Exception:
                    logger.exception("timer tick failed for room %s", room_code)
                    alive = server.registry.get(room_code) is not None
                if not alive:
                    break
                socketio.sleep(tick_interval)
            with room_tasks_lock:
                room_tasks.pop(room_code, None)
            logger.debug("timer task for room %s stopped", room_code)

        socketio.start_background_task(_runner)

    def command(*names: str) -> Callable:
        """Register a handler under one or more event names.

        Failures are reported to the sender only. The handler's return value
        becomes the ack: ``{"ok": True, ...}`` or
        ``{"ok": False, "error": <code>, "message": ...}``.
        """

        def decorator(fn: Callable[[dict], dict | None]) -> Callable:
            def bind(name: str) -> Callable:
                def handler(data: Any = None):
                    payload = data if isinstance(data, dict) else {}
                    try:
                        result = fn(payload)
                    except GameError as exc:
                        logger.info("%s rejected for %s: %s", name, request.sid, exc.message)
                        emit(events.ERROR, exc.to_payload())
                        return {"ok": False, "error": exc.code, "message": exc.message}
                    except Exception:
                        logger.exception("%s failed for %s", name, request.sid)
                        emit(events.ERROR, {"message": "Internal server error", "error": "internal_error"})
                        return {"ok": False, "error": "internal_error"}
                    return {"ok": True, **(result or {})}

                handler.__name__ = fn.__name__
                socketio.on_event(name, handler)
                return handler

            for name in names:
                bind(name)
            return fn

        return decorator

    @command("create-room")
    def create_room(payload):
        settings = payload.get("settings")
        admin_code = _text(payload, "roomCode")
        if admin_code:
            room = server.create_admin_room(request.sid, admin_code, settings)
        else:
            room = server.create_room(request.sid, _player_name(payload), settings)
        _ensure_room_task(room.code)
        return {"roomCode": room.code}

    @command("admin-create-room")
    def admin_create_room(payload):
        room = server.create_admin_room(request.sid, _room_code(payload), payload.get("settings"))
        _ensure_room_task(room.code)
        return {"roomCode": room.code, "roomId": room.code}

    @command("join-room")
    def join_room(payload):
        room_code = _room_code(payload)
        name = _player_name(payload)
        room = server.join(request.sid, room_code, name)
        _ensure_room_task(room.code)
        logger.info("%s joined room %s", name, room.code)
        return {"roomCode": room.code}

    @command("leave-room")
    def leave_room(payload):
        room = server.leave(request.sid)
        return {"roomCode": room.code if room else None}

    @command("upload-image")
    def upload_image(payload):
        # Either a data URL or the imageUrl returned by POST /api/upload
        image = payload.get("imageData") or payload.get("imageUrl")
        url = server.upload_image(request.sid, _room_code(payload), image)
        return {"imageUrl": url}

    @command("calibrate-target")
    def calibrate_target(payload):
        server.calibrate_target(request.sid, _room_code(payload), payload.get("position"))

    @command("start-game", "admin-start-game")
    def start_game(payload):
        room_code = _room_code(payload)
        server.start_game(
            request.sid,
            room_code,
            payload.get("settings"),
            image=payload.get("gameImage"),
            target_raw=payload.get("targetPosition"),
        )
        _ensure_room_task(room_code)

    @command("player-click")
    def player_click(payload):
        total = server.click(request.sid, _room_code(payload), payload.get("position"))
        return {"totalScore": total}

    @command("pause-game", "admin-pause-game")
    def pause_game(payload):
        server.pause(request.sid, _room_code(payload))

    @command("resume-game", "admin-resume-game")
    def resume_game(payload):
        server.resume(request.sid, _room_code(payload))

    @command("next-round", "admin-next-round")
    def next_round(payload):
        server.next_round(request.sid, _room_code(payload))

    @command("end-game", "admin-end-game")
    def end_game(payload):
        server.end_game(request.sid, _room_code(payload))

    @command("kick-player", "admin-kick-player")
    def kick_player(payload):
        player_id = _text(payload, "playerId")
        if not player_id:
            raise ValidationError("playerId is required")
        server.kick(request.sid, _room_code(payload), player_id)

    @command("close-room", "admin-close-room")
    def close_room(payload):
        server.close_room(request.sid, _room_code(payload))

    @socketio.on("disconnect")
    def on_disconnect(*_args):
        try:
            server.leave(request.sid)
        except Exception:
            logger.exception("disconnect cleanup failed for %s", request.sid)
