"""
Font registry.

Fonts are scanned once at startup from a list of directories and the registry
is injected into the renderer. Family and weight come from the file name
(``Cairo-Bold.ttf`` -> family "cairo", weight "bold").
"""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from PIL import ImageFont

from domain.errors import FontLoadError

logger = logging.getLogger(__name__)

FONT_EXTENSIONS = (".ttf", ".otf", ".ttc")
REGULAR = "regular"
BOLD = "bold"

# Family names as the editor may send them (Arabic display names included).
FAMILY_ALIASES: Dict[str, str] = {
    "أميري": "amiri",
    "تجوال": "tajawal",
    "القاهرة": "cairo",
}

_BOLD_TOKENS = ("bold", "black", "heavy", "extrabold", "semibold")


def normalize_family(name: str | None) -> str:
    if not name:
        return ""
    # CSS font stacks: take the first family
    first = name.split(",")[0].strip().strip("'\"")
    alias = FAMILY_ALIASES.get(first)
    if alias:
        return alias
    return first.lower().replace(" ", "").replace("-", "").replace("_", "")


def normalize_weight(weight: str | int | None) -> str:
    if weight is None:
        return REGULAR
    text = str(weight).strip().lower()
    if text in ("bold", "bolder"):
        return BOLD
    if text.isdigit() and int(text) >= 700:
        return BOLD
    return REGULAR


def parse_font_filename(path: Path) -> Tuple[str, str]:
    """Return (family, weight) parsed from a font file name."""
    stem = path.stem
    family, _, variant = stem.partition("-")
    variant = variant.lower()
    weight = BOLD if any(tok in variant for tok in _BOLD_TOKENS) else REGULAR
    return normalize_family(family), weight


class FontRegistry:
    def __init__(self, default_family: str = "Cairo"):
        self.default_family = normalize_family(default_family)
        self._faces: Dict[Tuple[str, str], Path] = {}
        self._fonts: Dict[Tuple[str, str, int], ImageFont.ImageFont | ImageFont.FreeTypeFont] = {}
        self._lock = threading.Lock()

    @classmethod
    def load(
        cls,
        paths: Iterable[Path | str],
        default_family: str = "Cairo",
        require_fonts: bool = False,
    ) -> "FontRegistry":
        """
        Scan directories (or individual files) for fonts.

        Args:
            paths: Directories or font files. Missing entries are skipped.
            default_family: Family used when a requested family is unknown.
            require_fonts: Raise FontLoadError if nothing was registered.

        Returns:
            A populated registry.
        """
        registry = cls(default_family=default_family)
        for raw in paths:
            path = Path(raw)
            if path.is_file():
                candidates: List[Path] = [path]
            elif path.is_dir():
                candidates = sorted(p for p in path.rglob("*") if p.suffix.lower() in FONT_EXTENSIONS)
            else:
                logger.debug("[fonts] skipping missing font path %s", path)
                continue
            for font_path in candidates:
                registry.register(font_path)
        if require_fonts and not registry.families:
            raise FontLoadError(f"no fonts found in {[str(p) for p in paths]}")
        logger.info("[fonts] registered %d faces (%s)", len(registry._faces), ", ".join(registry.families) or "none")
        return registry

    def register(self, path: Path | str, family: Optional[str] = None, weight: Optional[str] = None) -> None:
        path = Path(path)
        parsed_family, parsed_weight = parse_font_filename(path)
        key = (normalize_family(family) if family else parsed_family, normalize_weight(weight) if weight else parsed_weight)
        with self._lock:
            # first registration wins so directory order defines precedence
            self._faces.setdefault(key, path)

    @property
    def families(self) -> List[str]:
        return sorted({family for family, _ in self._faces})

    def _face_path(self, family: str, weight: str) -> Optional[Path]:
        for key in ((family, weight), (family, REGULAR), (self.default_family, weight), (self.default_family, REGULAR)):
            path = self._faces.get(key)
            if path is not None:
                return path
        if self._faces:
            return self._faces[sorted(self._faces)[0]]
        return None

    def get_font(self, family: str | None, weight: str | int | None, size: int):
        """Return a sized font, falling back to the default family and then Pillow's built-in font."""
        size = max(1, int(size))
        fam = normalize_family(family) or self.default_family
        wt = normalize_weight(weight)
        key = (fam, wt, size)
        with self._lock:
            font = self._fonts.get(key)
            if font is not None:
                return font
            path = self._face_path(fam, wt)
        if path is not None:
            try:
                font = ImageFont.truetype(str(path), size)
            except OSError:
                logger.warning("[fonts] failed to load %s, using built-in font", path, exc_info=True)
                font = ImageFont.load_default(size=size)
        else:
            font = ImageFont.load_default(size=size)
        with self._lock:
            self._fonts.setdefault(key, font)
            return self._fonts[key]
