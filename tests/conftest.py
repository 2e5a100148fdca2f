from __future__ import annotations

import io
from pathlib import Path

import pytest
from PIL import Image


def create_png_bytes(width: int = 40, height: int = 20) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), "red").save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return create_png_bytes()


@pytest.fixture
def file_png(tmp_path: Path, png_bytes: bytes) -> Path:
    file_out = tmp_path / "pixel.png"
    file_out.write_bytes(png_bytes)
    return file_out
