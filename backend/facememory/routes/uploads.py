from __future__ import annotations

import io

from flask import Blueprint, abort, jsonify, request, send_file

from ..context import game_server
from ..game.errors import ValidationError

bp = Blueprint("uploads", __name__)


@bp.post("/api/upload")
def upload():
    file = request.files.get("image")
    if file is None or not file.filename:
        return jsonify({"error": "No image uploaded"}), 400

    try:
        url = game_server().store_upload(file.read(), file.mimetype)
    except ValidationError as exc:
        return jsonify({"error": exc.message}), 400

    return jsonify({"success": True, "imageUrl": url})


@bp.get("/uploads/<name>")
def serve_upload(name: str):
    stored = game_server().images.load(name)
    if stored is None:
        abort(404)
    blob, mimetype = stored
    return send_file(io.BytesIO(blob), mimetype=mimetype, max_age=3600)
