"""Upload validation helpers: filename sanity, size cap, content sniffing."""

import io
import uuid
from pathlib import Path

from fastapi import UploadFile
from PIL import Image, UnidentifiedImageError

from ..config import settings
from ..errors import BadRequestError, ServiceError

DOCUMENT_EXTENSIONS = (".docx", ".csv", ".json", ".txt")


def validate_upload_filename(filename: str) -> None:
    if not filename or len(filename) > 200:
        raise BadRequestError("invalid filename")
    if "/" in filename or "\\" in filename or filename.startswith("."):
        raise BadRequestError("invalid filename path")


def read_upload(file: UploadFile, max_bytes: int = None) -> bytes:
    """Read at most `max_bytes` (+1 to detect overflow) from the upload."""
    limit = max_bytes or settings.MAX_UPLOAD_BYTES
    validate_upload_filename(file.filename)
    content = file.file.read(limit + 1)
    if len(content) > limit:
        raise ServiceError("file too large", status_code=413)
    if not content:
        raise BadRequestError("empty file")
    return content


def sniff_upload_kind(payload: bytes, filename: str, content_type: str = None) -> str:
    """Return `pdf`, `image` or `document`; anything else is rejected with 415."""
    lower = filename.lower()
    if payload[:4] == b"%PDF":
        return "pdf"
    if lower.endswith(DOCUMENT_EXTENSIONS):
        return "document"
    try:
        Image.open(io.BytesIO(payload)).verify()
        return "image"
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise ServiceError("unsupported file content; expected image, PDF or document", status_code=415)


def store_media(payload: bytes, filename: str) -> str:
    """Write `payload` under MEDIA_ROOT with a random name; returns the stored name."""
    root = Path(settings.MEDIA_ROOT)
    root.mkdir(parents=True, exist_ok=True)
    stored_name = f"{uuid.uuid4().hex}{Path(filename).suffix.lower()}"
    (root / stored_name).write_bytes(payload)
    return stored_name


def remove_media(stored_name: str) -> None:
    path = Path(settings.MEDIA_ROOT) / stored_name
    if path.exists():
        path.unlink()
