"""
Prescription Uploads

Validates prescription files (size, type) and writes them to the upload
directory with asyncio.to_thread for non-blocking file I/O.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Dict, Optional
from uuid import uuid4

from app.quotation.collaborators import PrescriptionStorage
from app.quotation.errors import DependencyFailure, ValidationError

logger = logging.getLogger(__name__)

UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", "./uploads/prescriptions"))
UPLOAD_BASE_URL = os.getenv("UPLOAD_BASE_URL", "/uploads/prescriptions").rstrip("/")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))

# content type -> stored file extension
ALLOWED_TYPES: Dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "application/pdf": ".pdf",
}


def _write_file(filepath: Path, content: bytes) -> None:
    """Write file synchronously (called via to_thread)."""
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with open(filepath, "wb") as f:
        f.write(content)


# === Global accessor ===

_uploader: Optional["PrescriptionUploader"] = None


def get_prescription_uploader() -> "PrescriptionUploader":
    global _uploader
    if _uploader is None:
        _uploader = PrescriptionUploader()
    return _uploader


def set_prescription_uploader(uploader: Optional["PrescriptionUploader"]) -> None:
    global _uploader
    _uploader = uploader


class PrescriptionUploader(PrescriptionStorage):
    def __init__(
        self,
        upload_dir: Optional[Path] = None,
        base_url: str = UPLOAD_BASE_URL,
        max_bytes: int = MAX_UPLOAD_BYTES,
    ):
        self._dir = upload_dir or UPLOAD_DIR
        self._base_url = base_url.rstrip("/")
        self._max_bytes = max_bytes

    def validate(self, filename: str, content: bytes, content_type: str) -> str:
        """Check size and type; returns the extension to store under."""
        if not content:
            raise ValidationError("The uploaded file is empty", fields=["file"])
        if len(content) > self._max_bytes:
            limit_mb = self._max_bytes / (1024 * 1024)
            raise ValidationError(f"File too large. Maximum size is {limit_mb:g}MB", fields=["file"])
        extension = ALLOWED_TYPES.get((content_type or "").lower())
        if extension is None:
            allowed = ", ".join(ALLOWED_TYPES)
            raise ValidationError(
                f"File type {content_type} is not allowed. Allowed types: {allowed}",
                fields=["file"],
            )
        return extension

    async def store(self, filename: str, content: bytes, content_type: str) -> str:
        extension = self.validate(filename, content, content_type)
        stored_name = f"{uuid4().hex}{extension}"

        try:
            await asyncio.to_thread(_write_file, self._dir / stored_name, content)
        except OSError as e:
            logger.error(f"Failed to store prescription {filename}: {e}")
            raise DependencyFailure("file upload", str(e)) from e

        url = f"{self._base_url}/{stored_name}"
        logger.info(f"Stored prescription {filename} ({len(content)} bytes) as {url}")
        return url
