"""Storage for round images.

Images arrive as base64 data URLs over the socket, or as multipart uploads
over HTTP. Either way they are stored once and referenced by a
``/uploads/<name>`` URL that the HTTP layer serves.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from threading import RLock
from typing import Any, Mapping

from werkzeug.utils import secure_filename

from .errors import ValidationError


logger = logging.getLogger(__name__)

URL_PREFIX = "/uploads/"

EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
}
MIMETYPES = {ext: mimetype for mimetype, ext in EXTENSIONS.items()}
MIMETYPES["jpeg"] = "image/jpeg"

_DATA_URL = re.compile(r"^data:(image/[a-z0-9.+-]+);base64,(.*)$", re.IGNORECASE | re.DOTALL)


def decode_data_url(data_url: Any) -> tuple[bytes, str]:
    if not isinstance(data_url, str) or not data_url.strip():
        raise ValidationError("imageData is required")

    match = _DATA_URL.match(data_url.strip())
    if not match:
        raise ValidationError("imageData must be a base64 image data URL")

    mimetype = match.group(1).lower()
    try:
        blob = base64.b64decode(match.group(2), validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("imageData is not valid base64") from None
    return blob, mimetype


def name_from_url(url: str | None) -> str | None:
    if not url or not url.startswith(URL_PREFIX):
        return None
    name = url[len(URL_PREFIX):]
    return name if name and name == secure_filename(name) else None


class ImageStore(ABC):
    """Blob storage keyed by generated file names."""

    def __init__(self, max_bytes: int = 5 * 1024 * 1024) -> None:
        self.max_bytes = max_bytes

    def save_data_url(self, data_url: Any) -> str:
        blob, mimetype = decode_data_url(data_url)
        return self.save(blob, mimetype)

    def save(self, blob: bytes, mimetype: str) -> str:
        ext = EXTENSIONS.get((mimetype or "").lower())
        if ext is None:
            raise ValidationError("Only PNG, JPEG, GIF and WebP images are allowed")
        if not blob:
            raise ValidationError("Image is empty")
        if len(blob) > self.max_bytes:
            raise ValidationError(f"Image is larger than {self.max_bytes} bytes")

        name = f"game-{int(time.time() * 1000)}-{uuid.uuid4().hex}.{ext}"
        self._write(name, blob, MIMETYPES[ext])
        logger.info("stored image %s (%d bytes)", name, len(blob))
        return URL_PREFIX + name

    @abstractmethod
    def load(self, name: str) -> tuple[bytes, str] | None: ...

    def discard(self, url: str | None) -> None:
        name = name_from_url(url)
        if name:
            self._remove(name)

    @abstractmethod
    def _write(self, name: str, blob: bytes, mimetype: str) -> None: ...

    @abstractmethod
    def _remove(self, name: str) -> None: ...


class MemoryImageStore(ImageStore):
    """Keeps blobs in process memory; they go away with the room."""

    def __init__(self, max_bytes: int = 5 * 1024 * 1024) -> None:
        super().__init__(max_bytes)
        self._lock = RLock()
        self._blobs: dict[str, tuple[bytes, str]] = {}

    def load(self, name: str) -> tuple[bytes, str] | None:
        with self._lock:
            return self._blobs.get(name)

    def _write(self, name: str, blob: bytes, mimetype: str) -> None:
        with self._lock:
            self._blobs[name] = (blob, mimetype)

    def _remove(self, name: str) -> None:
        with self._lock:
            self._blobs.pop(name, None)


class DiskImageStore(ImageStore):
    def __init__(self, directory: str | Path, max_bytes: int = 5 * 1024 * 1024) -> None:
        super().__init__(max_bytes)
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def load(self, name: str) -> tuple[bytes, str] | None:
        safe = secure_filename(name)
        path = self.directory / safe
        if safe != name or not path.is_file():
            return None
        mimetype = MIMETYPES.get(path.suffix.lstrip(".").lower(), "application/octet-stream")
        return path.read_bytes(), mimetype

    def _write(self, name: str, blob: bytes, mimetype: str) -> None:
        (self.directory / name).write_bytes(blob)

    def _remove(self, name: str) -> None:
        try:
            (self.directory / name).unlink()
        except FileNotFoundError:
            pass
        except OSError:
            logger.exception("could not remove image %s", name)


def make_image_store(config: Mapping[str, Any]) -> ImageStore:
    kind = str(config.get("IMAGE_STORE", "memory")).lower()
    max_bytes = int(config.get("MAX_IMAGE_BYTES", 5 * 1024 * 1024))
    if kind == "disk":
        return DiskImageStore(config.get("UPLOAD_DIR", "uploads"), max_bytes=max_bytes)
    if kind != "memory":
        raise ValueError(f"Unknown IMAGE_STORE {kind!r}")
    return MemoryImageStore(max_bytes=max_bytes)
