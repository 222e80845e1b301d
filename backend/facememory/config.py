import os
from pathlib import Path


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev")

    # CORS
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")

    # Reverse proxy / IP headers
    TRUST_PROXY_HEADERS = os.environ.get("TRUST_PROXY_HEADERS", "1") == "1"

    # Socket.IO async mode; empty picks eventlet or threading per platform
    SOCKETIO_ASYNC_MODE = os.environ.get("SOCKETIO_ASYNC_MODE", "").strip()

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Room defaults (overridable per room from create-room / start-game)
    DEFAULT_VIEW_TIME_MS = int(os.environ.get("DEFAULT_VIEW_TIME_MS", "5000"))
    DEFAULT_GUESS_TIME_MS = int(os.environ.get("DEFAULT_GUESS_TIME_MS", "20000"))
    DEFAULT_TOTAL_ROUNDS = int(os.environ.get("DEFAULT_TOTAL_ROUNDS", "10"))
    DEFAULT_MIN_PLAYERS = int(os.environ.get("DEFAULT_MIN_PLAYERS", "2"))
    DEFAULT_SCORING_MODE = os.environ.get("DEFAULT_SCORING_MODE", "distance")

    # Points for the 50-100 distance band
    FAR_BAND_POINTS = int(os.environ.get("FAR_BAND_POINTS", "10"))

    # Game clock
    RESULTS_DURATION_MS = int(os.environ.get("RESULTS_DURATION_MS", "5000"))
    ROOM_CLEANUP_SEC = int(os.environ.get("ROOM_CLEANUP_SEC", "600"))
    ABANDONED_ROOM_TTL_SEC = int(os.environ.get("ABANDONED_ROOM_TTL_SEC", "600"))
    TICK_INTERVAL_SEC = float(os.environ.get("TICK_INTERVAL_SEC", "0.1"))
    ROOM_TIMERS_ENABLED = os.environ.get("ROOM_TIMERS_ENABLED", "1") == "1"

    # Images: "memory" keeps blobs in-process, "disk" writes under UPLOAD_DIR
    IMAGE_STORE = os.environ.get("IMAGE_STORE", "memory")
    UPLOAD_DIR = os.environ.get(
        "UPLOAD_DIR", str(Path(__file__).resolve().parents[1] / "uploads")
    )
    MAX_IMAGE_BYTES = int(os.environ.get("MAX_IMAGE_BYTES", str(5 * 1024 * 1024)))
    # HTTP uploads not claimed by a room within this window are dropped
    UPLOAD_CLAIM_TTL_SEC = int(os.environ.get("UPLOAD_CLAIM_TTL_SEC", "600"))
