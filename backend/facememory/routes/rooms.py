from __future__ import annotations

from flask import Blueprint, jsonify

from ..context import game_server
from ..game.errors import RoomNotFound

bp = Blueprint("rooms", __name__)


@bp.get("/rooms/<code>")
def get_room(code: str):
    try:
        state = game_server().snapshot(code.upper())
    except RoomNotFound:
        return jsonify({"error": "room_not_found"}), 404
    return jsonify(state)


@bp.get("/rooms/<code>/leaderboard")
def get_leaderboard(code: str):
    try:
        board = game_server().leaderboard(code.upper())
    except RoomNotFound:
        return jsonify({"error": "room_not_found"}), 404
    return jsonify({"roomCode": code.upper(), "leaderboard": board})
