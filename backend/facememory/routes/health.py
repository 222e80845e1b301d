from __future__ import annotations

from datetime import datetime, timezone

from flask import Blueprint, jsonify

from ..context import game_server

bp = Blueprint("health", __name__)


@bp.get("/health")
def health():
    stats = game_server().stats()
    return jsonify(
        {
            "status": "healthy",
            "activeRooms": stats["activeRooms"],
            "uptimeSec": stats["uptimeSec"],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )
