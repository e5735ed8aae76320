import logging
import os
import re
import time
from pathlib import Path

from fastapi import UploadFile

from app.core.config import get_settings
from app.core.exceptions import ValidationFailed

logger = logging.getLogger(__name__)

ALLOWED_PHOTO_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_name(filename: str | None) -> str:
    base = os.path.basename(filename or "photo")
    return _UNSAFE_CHARS.sub("_", base) or "photo"


async def save_photo(upload: UploadFile | None) -> str | None:
    """Write an uploaded visitor photo under UPLOAD_DIR and return its relative path."""
    if upload is None or not upload.filename:
        return None

    settings = get_settings()
    if upload.content_type and upload.content_type not in ALLOWED_PHOTO_TYPES:
        raise ValidationFailed({"photo": "Photo must be a JPEG, PNG, WebP or GIF image"})

    content = await upload.read()
    if not content:
        raise ValidationFailed({"photo": "Photo is empty"})
    if len(content) > settings.MAX_PHOTO_BYTES:
        raise ValidationFailed({"photo": f"Photo must be at most {settings.MAX_PHOTO_BYTES // (1024 * 1024)} MB"})

    directory = Path(settings.UPLOAD_DIR)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{int(time.time() * 1000)}-{_safe_name(upload.filename)}"
    path.write_bytes(content)
    return path.as_posix()


def discard_photo(path: str | None) -> None:
    if not path:
        return
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("could not remove photo %s: %s", path, exc)
