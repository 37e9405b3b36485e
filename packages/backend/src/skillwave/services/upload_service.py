"""Chat attachment uploads — stored on local disk, served as static files."""

import random
import time
from pathlib import Path

import structlog

from skillwave.config import settings
from skillwave.errors import PayloadTooLargeError, ValidationError

logger = structlog.get_logger()

ALLOWED_EXTENSIONS = {
    ".jpeg", ".jpg", ".png", ".gif", ".pdf",
    ".doc", ".docx", ".txt", ".zip", ".rar",
}

ALLOWED_MIME_TYPES = {
    "image/jpeg",
    "image/png",
    "image/gif",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "application/zip",
    "application/x-zip-compressed",
    "application/x-rar-compressed",
    "application/vnd.rar",
}

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif"}


def check_file_type(filename: str, content_type: str) -> str:
    """Return the lowercased extension, or raise ValidationError.

    Both the extension and the declared MIME type must be allowed.
    """
    ext = Path(filename or "").suffix.lower()
    mime = (content_type or "").split(";")[0].strip().lower()
    if ext not in ALLOWED_EXTENSIONS or mime not in ALLOWED_MIME_TYPES:
        raise ValidationError("Invalid file type")
    return ext


def file_type_for(ext: str) -> str:
    return "image" if ext in IMAGE_EXTENSIONS else "file"


def generate_filename(ext: str) -> str:
    """file-<millis>-<random><ext>"""
    millis = int(time.time() * 1000)
    return f"file-{millis}-{random.randint(0, 10**9)}{ext}"


class UploadStore:
    """Writes uploaded bytes under a directory with collision-free names."""

    def __init__(self, root: str | Path | None = None, max_bytes: int | None = None):
        self.root = Path(root or settings.upload_dir)
        self.max_bytes = max_bytes if max_bytes is not None else settings.max_upload_bytes

    def check_size(self, size: int) -> None:
        if size > self.max_bytes:
            raise PayloadTooLargeError(
                f"File too large (limit {self.max_bytes // (1024 * 1024)} MB)"
            )

    def save(self, content: bytes, ext: str) -> str:
        """Persist bytes and return the generated file name."""
        self.check_size(len(content))
        self.root.mkdir(parents=True, exist_ok=True)
        name = generate_filename(ext)
        (self.root / name).write_bytes(content)
        logger.info("upload.saved", file_name=name, size=len(content))
        return name


def get_upload_store() -> UploadStore:
    """FastAPI dependency."""
    return UploadStore()
