# services/validators.py
import io
import os

from fastapi import UploadFile
from PIL import Image

import config
from errors import ImageTooLarge, InvalidImage

ALLOWED_MIMES = {"image/jpeg", "image/png", "image/jpg"}  # include common alias
ALLOWED_EXTS = {".jpg", ".jpeg", ".png"}

# map extension -> canonical MIME
EXT_TO_MIME = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
}

CHUNK = 1 * 1024 * 1024  # 1 MB


def sanitize_filename(name: str) -> str:
    name = (name or "").replace("\\", "/")
    return os.path.basename(name)


def validate_mime_and_ext(file: UploadFile) -> str:
    """Return the canonical MIME type of an accepted upload."""
    ct = (file.content_type or "").lower()
    if ct not in ALLOWED_MIMES:
        raise InvalidImage(f"{file.filename}: only JPEG/PNG supported")

    _, ext = os.path.splitext(file.filename or "")
    ext = ext.lower()
    if ext not in ALLOWED_EXTS:
        raise InvalidImage(f"{file.filename}: only .jpg/.jpeg/.png files allowed")

    # Enforce MIME matches extension (treat image/jpg as image/jpeg)
    canonical_ct = "image/jpeg" if ct in {"image/jpeg", "image/jpg"} else ct
    if canonical_ct != EXT_TO_MIME[ext]:
        raise InvalidImage(f"{file.filename}: MIME type does not match file extension")
    return canonical_ct


def read_upload_with_cap(file: UploadFile, max_bytes: int | None = None) -> bytes:
    """Stream an UploadFile to memory with a hard cap."""
    cap = max_bytes if max_bytes is not None else config.MAX_UPLOAD_BYTES
    total = 0
    chunks = []
    while True:
        chunk = file.file.read(CHUNK)
        if not chunk:
            break
        total += len(chunk)
        if total > cap:
            raise ImageTooLarge(f"{file.filename}: exceeds {cap} bytes")
        chunks.append(chunk)
    return b"".join(chunks)


def sniff_image(raw_bytes: bytes, filename: str = ""):
    try:
        img = Image.open(io.BytesIO(raw_bytes))
        img.verify()
    except Exception:
        raise InvalidImage(f"{filename}: invalid or corrupted image")
