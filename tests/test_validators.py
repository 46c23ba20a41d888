# tests/test_validators.py
import io
import pytest
from starlette.datastructures import UploadFile as StarletteUploadFile, Headers
from PIL import Image

from errors import ImageTooLarge, InvalidImage
from services.validators import (
    read_upload_with_cap, sanitize_filename, sniff_image, validate_mime_and_ext
)


def test_sanitize_filename_strips_paths():
    assert sanitize_filename("../../etc/passwd") == "passwd"
    assert sanitize_filename("C:\\temp\\evil.png") == "evil.png"
    assert sanitize_filename("") == ""

def _upload_file(name: str, mime: str, data: bytes):
    # Starlette UploadFile reads content_type from headers
    return StarletteUploadFile(
        filename=name,
        file=io.BytesIO(data),
        headers=Headers({"content-type": mime}),
    )

def test_validate_mime_and_ext_accepts_jpeg_png():
    for name, ct, expected in [
        ("a.jpg",  "image/jpeg", "image/jpeg"),
        ("a.JPEG", "image/jpg",  "image/jpeg"),
        ("a.png",  "image/png",  "image/png"),
    ]:
        uf = _upload_file(name, ct, b"dummy")
        assert validate_mime_and_ext(uf) == expected

@pytest.mark.parametrize("name,ct", [
    ("a.gif","image/gif"),     # unsupported mime/ext
    ("a.txt","text/plain"),    # unsupported mime/ext
    ("a.jpg","image/png"),     # mime/ext mismatch
    ("a.png","image/jpeg"),    # mime/ext mismatch
    ("a.gif","image/jpeg"),    # unsupported ext
])
def test_validate_mime_and_ext_rejects_invalid(name, ct):
    uf = _upload_file(name, ct, b"dummy")
    with pytest.raises(InvalidImage) as ex:
        validate_mime_and_ext(uf)
    assert ex.value.status_code == 415

def test_read_upload_with_cap():
    uf = _upload_file("a.png", "image/png", b"x" * 100)
    assert read_upload_with_cap(uf, max_bytes=100) == b"x" * 100
    uf = _upload_file("a.png", "image/png", b"x" * 101)
    with pytest.raises(ImageTooLarge) as ex:
        read_upload_with_cap(uf, max_bytes=100)
    assert ex.value.status_code == 413

def test_sniff_image_valid_png():
    buf = io.BytesIO()
    Image.new("RGB", (2,2), (255,0,0)).save(buf, format="PNG")
    sniff_image(buf.getvalue())  # no exception

def test_sniff_image_invalid_bytes():
    with pytest.raises(InvalidImage) as ex:
        sniff_image(b"not an image at all", "x.png")
    assert ex.value.status_code == 415
