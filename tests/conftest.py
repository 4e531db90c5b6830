import json
import os
from pathlib import Path

import pytest
from PIL import Image

# Keep test runs from writing logs/app.log into the checkout
os.environ.setdefault("APP_FILE_LOG", "0")

JPEG_HEADER = b"\xff\xd8\xff\xe0" + b"\x00" * 16
PNG_HEADER = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<< /Root 1 0 R >>\n%%EOF\n"


def make_jpeg(path: Path, size=(64, 48), make="Canon", model="EOS R5", taken="2024:05:01 10:30:00") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    exif = Image.Exif()
    if make:
        exif[0x010F] = make
    if model:
        exif[0x0110] = model
    if taken:
        exif[0x0132] = taken
    Image.new("RGB", size, "red").save(path, "JPEG", exif=exif.tobytes())
    return path


def make_png(path: Path, size=(20, 10)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGBA", size, (0, 0, 255, 255)).save(path, "PNG")
    return path


def write_sidecar(asset: Path, **data) -> Path:
    json_path = asset.with_suffix(".json")
    json_path.write_text(json.dumps(data), encoding="utf-8")
    return json_path


@pytest.fixture
def site_dir(tmp_path: Path) -> Path:
    """A small site tree: two photos, a PDF and a video in two folders."""
    site = tmp_path / "site"
    beach = make_jpeg(site / "assets" / "photos" / "beach.jpg")
    write_sidecar(
        beach,
        subject="Beach at dawn",
        tags=["beach", "Sunrise"],
        person=["Ana"],
        category=["travel"],
        hierarchical=["Places|Coast"],
    )
    logo = make_png(site / "assets" / "photos" / "logo.png")
    write_sidecar(logo, tags="brand, logo", product=["Widget"], category=["product"])

    brochure = site / "assets" / "docs" / "brochure.pdf"
    brochure.parent.mkdir(parents=True, exist_ok=True)
    brochure.write_bytes(PDF_BYTES)

    clip = site / "assets" / "docs" / "clip.mp4"
    clip.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 64)
    write_sidecar(clip, subject="Launch clip", duration=75.4)
    return site


@pytest.fixture(scope="session")
def rsa_private_key_pem() -> str:
    from cryptography.hazmat.primitives import serialization
    from cryptography.hazmat.primitives.asymmetric import rsa

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
