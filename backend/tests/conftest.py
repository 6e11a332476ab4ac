import sys
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

# Ensure the backend package root is on sys.path for direct pytest runs
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from services.fonts import FontRegistry  # noqa: E402
from storage.file_storage import FileStorage  # noqa: E402


def png_bytes(size=(100, 100), color=(255, 0, 0, 255), mode="RGBA") -> bytes:
    buf = BytesIO()
    Image.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def fonts():
    # no font files: every lookup falls back to Pillow's built-in font
    return FontRegistry(default_family="Cairo")


@pytest.fixture
def storage(tmp_path):
    return FileStorage(tmp_path / "media")


@pytest.fixture
def white_background():
    return png_bytes((1000, 1400), (255, 255, 255, 255))
