from __future__ import annotations

from flask import current_app

from .game.engine import GameServer


EXTENSION_KEY = "facememory"


def game_server() -> GameServer:
    return current_app.extensions[EXTENSION_KEY]
