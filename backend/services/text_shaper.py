"""
Text measurement and greedy word wrapping.
"""
import unicodedata
from typing import Callable, Dict, List, Optional

from PIL import features


def _measurer(font) -> Callable[[str], float]:
    widths: Dict[str, float] = {}

    def measure(text: str) -> float:
        width = widths.get(text)
        if width is None:
            width = widths[text] = font.getlength(text)
        return width

    return measure


def _split_word(word: str, max_width: float, measure: Callable[[str], float]) -> List[str]:
    """Break an unbreakable token into chunks that fit; single characters are always kept."""
    pieces: List[str] = []
    chunk = ""
    for ch in word:
        if chunk and measure(chunk + ch) > max_width:
            pieces.append(chunk)
            chunk = ch
        else:
            chunk += ch
    pieces.append(chunk)
    return pieces


def _wrap_paragraph(paragraph: str, max_width: float, measure: Callable[[str], float]) -> List[str]:
    lines: List[str] = []
    current = ""
    for word in paragraph.split(" "):
        candidate = f"{current} {word}" if current else word
        if measure(candidate) <= max_width:
            current = candidate
            continue
        if current:
            lines.append(current)
        if measure(word) <= max_width:
            current = word
            continue
        pieces = _split_word(word, max_width, measure)
        lines.extend(pieces[:-1])
        current = pieces[-1]
    if current or not lines:
        lines.append(current)
    return lines


def wrap_text(text: str, max_width_px: Optional[float], font) -> List[str]:
    """
    Greedy word-wrap ``text`` so no line is wider than ``max_width_px``.

    Empty text yields no lines. A non-positive width means unconstrained:
    each hard line break still starts a new line, nothing else wraps.
    """
    if not text:
        return []
    paragraphs = text.replace("\r\n", "\n").split("\n")
    if max_width_px is None or max_width_px <= 0:
        return paragraphs
    measure = _measurer(font)
    lines: List[str] = []
    for paragraph in paragraphs:
        lines.extend(_wrap_paragraph(paragraph, max_width_px, measure))
    return lines


def is_rtl(text: str) -> bool:
    """True when the first strong directional character is right-to-left."""
    for ch in text:
        bidi = unicodedata.bidirectional(ch)
        if bidi in ("R", "AL"):
            return True
        if bidi == "L":
            return False
    return False


def text_direction(text: str) -> Optional[str]:
    # direction= needs libraqm; basic layout draws logical order
    if is_rtl(text) and features.check_feature("raqm"):
        return "rtl"
    return None
