"""Receipt upload validation and storage.

Content is sniffed rather than trusted from the client: PDFs by their
`%PDF` magic bytes, images by letting Pillow identify and verify them.
Files are written under `<UPLOAD_DIR>/receipts` and exposed by the app
under `/uploads/receipts/<name>`.
"""

import io
import time
import uuid
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

RECEIPT_TYPES = {
    "JPEG": ("image/jpeg", "jpg"),
    "PNG": ("image/png", "png"),
    "WEBP": ("image/webp", "webp"),
}
PDF_TYPE = ("application/pdf", "pdf")
ALLOWED_CONTENT_TYPES = [t for t, _ in RECEIPT_TYPES.values()] + [PDF_TYPE[0]]

GUIDELINES = {
    "File Size": "Maximum 5MB",
    "Supported Formats": "JPEG, PNG, WebP, PDF",
    "Image Quality": "Ensure receipt text is clearly readable",
    "Content": "Receipt should show payment amount, date, and method",
    "Privacy": "Remove or blur sensitive personal information if needed",
}


class UnsupportedUpload(ValueError):
    """Raised when uploaded bytes are not an accepted file type."""


def sniff(payload: bytes, allow_pdf: bool = True) -> tuple:
    """Return `(content_type, extension)` for an accepted upload."""
    if payload[:4] == b"%PDF":
        if allow_pdf:
            return PDF_TYPE
        raise UnsupportedUpload("Invalid file type. Only JPEG, PNG and WebP images are allowed.")
    try:
        with Image.open(io.BytesIO(payload)) as img:
            fmt = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise UnsupportedUpload("Invalid file type. Only JPEG, PNG, WebP, and PDF are allowed.") from exc
    if fmt not in RECEIPT_TYPES:
        raise UnsupportedUpload("Invalid file type. Only JPEG, PNG, WebP, and PDF are allowed.")
    return RECEIPT_TYPES[fmt]


def receipt_name(user_id: int, extension: str, now: Optional[float] = None) -> str:
    millis = int((time.time() if now is None else now) * 1000)
    return f"receipt_{user_id}_{millis}.{extension}"


def random_name(extension: str) -> str:
    return f"{uuid.uuid4().hex}.{extension}"


def save(upload_dir: Path, filename: str, payload: bytes) -> str:
    """Write the payload to `<upload_dir>/receipts` and return its public URL."""
    target_dir = Path(upload_dir) / "receipts"
    target_dir.mkdir(parents=True, exist_ok=True)
    (target_dir / filename).write_bytes(payload)
    return f"/uploads/receipts/{filename}"
