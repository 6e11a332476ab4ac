from pathlib import Path

import pytest
from PIL import ImageFont

from domain.errors import FontLoadError
from services.fonts import BOLD, REGULAR, FontRegistry, normalize_family, normalize_weight, parse_font_filename


def test_family_normalization_and_arabic_aliases():
    assert normalize_family("Cairo") == "cairo"
    assert normalize_family("'Noto Sans', sans-serif") == "notosans"
    assert normalize_family("أميري") == "amiri"
    assert normalize_family("القاهرة") == "cairo"


@pytest.mark.parametrize("weight,expected", [("bold", BOLD), ("700", BOLD), (800, BOLD), ("normal", REGULAR), ("400", REGULAR), (None, REGULAR)])
def test_weight_normalization(weight, expected):
    assert normalize_weight(weight) == expected


def test_filename_parsing():
    assert parse_font_filename(Path("Cairo-Bold.ttf")) == ("cairo", BOLD)
    assert parse_font_filename(Path("Tajawal-Regular.ttf")) == ("tajawal", REGULAR)
    assert parse_font_filename(Path("Amiri.ttf")) == ("amiri", REGULAR)


def test_load_skips_missing_dirs_and_can_require_fonts(tmp_path):
    registry = FontRegistry.load([tmp_path / "absent", tmp_path])
    assert registry.families == []
    with pytest.raises(FontLoadError):
        FontRegistry.load([tmp_path], require_fonts=True)


def test_registry_falls_back_to_builtin_font():
    registry = FontRegistry()
    font = registry.get_font("Unknown Family", "bold", 30)
    assert font.getlength("abc") > 0
    # sized fonts are cached
    assert registry.get_font("Unknown Family", "700", 30) is font


def test_lookup_prefers_exact_face_then_regular_then_default(tmp_path, monkeypatch):
    loaded = []
    real_truetype = ImageFont.truetype

    def fake_truetype(font, *args, **kwargs):
        # the built-in default font is itself loaded through truetype from a buffer
        if not isinstance(font, (str, Path)):
            return real_truetype(font, *args, **kwargs)
        loaded.append(Path(font).name)
        size = args[0] if args else kwargs.get("size", 10)
        return ImageFont.load_default(size=size)

    monkeypatch.setattr(ImageFont, "truetype", fake_truetype)
    for name in ("Cairo-Regular.ttf", "Cairo-Bold.ttf", "Amiri-Regular.ttf"):
        (tmp_path / name).write_bytes(b"")
    registry = FontRegistry.load([tmp_path], default_family="Cairo")
    assert registry.families == ["amiri", "cairo"]

    registry.get_font("Cairo", "bold", 20)
    registry.get_font("Amiri", "bold", 20)
    registry.get_font("Missing", "normal", 20)
    assert loaded == ["Cairo-Bold.ttf", "Amiri-Regular.ttf", "Cairo-Regular.ttf"]
