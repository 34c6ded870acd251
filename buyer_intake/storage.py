"""Local disk storage for profile images."""

import logging
import mimetypes
import re
import uuid
from pathlib import Path

from .config import UPLOAD_DIR
from .errors import LeadIntakeError

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}
MAX_IMAGE_BYTES = 5 * 1024 * 1024

_KEY_RE = re.compile(r"^[0-9a-f]{32}\.(png|jpg|gif|webp)$")


class UploadNotFound(LeadIntakeError):
    status_code = 404
    message = "File not found"


class InvalidUpload(LeadIntakeError):
    status_code = 400
    message = "Image must be PNG, JPEG, GIF or WebP and at most 5 MB"


class LocalFileStore:
    """Stores blobs under a directory, addressed by generated keys."""

    def __init__(self, root: str | Path = UPLOAD_DIR):
        self.root = Path(root)

    def save_image(self, content: bytes, content_type: str | None) -> str:
        extension = ALLOWED_IMAGE_TYPES.get((content_type or "").split(";")[0].strip())
        if extension is None or not content or len(content) > MAX_IMAGE_BYTES:
            raise InvalidUpload()
        self.root.mkdir(parents=True, exist_ok=True)
        key = f"{uuid.uuid4().hex}{extension}"
        (self.root / key).write_bytes(content)
        logger.info(f"Stored upload {key} ({len(content)} bytes)")
        return key

    def path_for(self, key: str) -> Path:
        # Keys are generated here; anything else cannot name a stored file.
        if not _KEY_RE.match(key):
            raise UploadNotFound()
        path = self.root / key
        if not path.is_file():
            raise UploadNotFound()
        return path

    @staticmethod
    def media_type(key: str) -> str:
        return mimetypes.guess_type(key)[0] or "application/octet-stream"

    @staticmethod
    def url_for(key: str) -> str:
        return f"/api/uploads/{key}"
