"""
Layout resolution: percentage positions and logical style values to device pixels.

The editor authors every template on a canvas REFERENCE_WIDTH pixels wide.
All size-like values (font size, shadow blur/offset, border width) are
multiplied by ``output_width / REFERENCE_WIDTH`` so that any output resolution
reproduces the preview's relative appearance.
"""
import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Tuple, Type

from PIL import ImageColor

from domain.errors import InvalidDimensions
from domain.models import (
    RGBA,
    Field,
    FieldValue,
    ImageField,
    Position,
    ResolvedField,
    ResolvedImage,
    ResolvedShadow,
    ResolvedText,
    ShadowStyle,
    TextField,
)

logger = logging.getLogger(__name__)

REFERENCE_WIDTH = 1000
FONT_SIZE_MIN = 14
FONT_SIZE_MAX = 60
# Unconstrained text may run to within this many pixels of the canvas edges.
DEFAULT_TEXT_INSET_PX = 100
BORDER_WIDTH = 2

_RGBA_FN = re.compile(
    r"^rgba?\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*(?:,\s*([0-9]*\.?[0-9]+)\s*)?\)$", re.IGNORECASE
)


@dataclass(frozen=True)
class LayoutFrame:
    """
    Coordinate frame fields are resolved against.

    ``width``/``height`` are the dimensions percentages refer to. When the
    canvas was trimmed, ``offset_x``/``offset_y`` hold the crop origin and
    resolved coordinates are re-based onto the cropped raster.
    """
    width: int
    height: int
    scale: float
    offset_x: int = 0
    offset_y: int = 0


def validate_dimensions(width: int, height: int) -> None:
    if width is None or height is None or width <= 0 or height <= 0:
        raise InvalidDimensions(f"output size must be positive, got {width}x{height}")


def compute_scale_factor(output_width: int) -> float:
    if output_width is None or output_width <= 0:
        raise InvalidDimensions(f"output width must be positive, got {output_width}")
    return output_width / REFERENCE_WIDTH


def make_frame(width: int, height: int, scale_width: int | None = None, offset: Tuple[int, int] = (0, 0)) -> LayoutFrame:
    validate_dimensions(width, height)
    scale = compute_scale_factor(scale_width if scale_width is not None else width)
    return LayoutFrame(width=width, height=height, scale=scale, offset_x=offset[0], offset_y=offset[1])


def resolve_position(position: Position, output_width: int, output_height: int) -> Tuple[int, int]:
    validate_dimensions(output_width, output_height)
    return (
        round(position.x_pct / 100 * output_width),
        round(position.y_pct / 100 * output_height),
    )


def clamp_font_size(size: float) -> float:
    return max(FONT_SIZE_MIN, min(FONT_SIZE_MAX, size))


def parse_color(value: str | None, default: RGBA = (0, 0, 0, 255)) -> RGBA:
    """Parse CSS-ish colors, including ``rgba()`` with a fractional alpha."""
    if not value:
        return default
    text = value.strip()
    m = _RGBA_FN.match(text)
    if m:
        r, g, b = (max(0, min(255, int(m.group(i)))) for i in (1, 2, 3))
        alpha = m.group(4)
        if alpha is None:
            a = 255
        else:
            a_val = float(alpha)
            # CSS alpha is 0..1; tolerate 0..255 integers as well
            a = round(a_val * 255) if a_val <= 1 else int(a_val)
        return (r, g, b, max(0, min(255, a)))
    try:
        rgb = ImageColor.getrgb(text)
    except ValueError:
        logger.debug("[layout] unparseable color %r, using default", value)
        return default
    if len(rgb) == 3:
        return (rgb[0], rgb[1], rgb[2], 255)
    return (rgb[0], rgb[1], rgb[2], rgb[3])


def resolve_shadow(shadow: ShadowStyle, scale: float) -> ResolvedShadow | None:
    if not shadow.enabled:
        return None
    return ResolvedShadow(
        color=parse_color(shadow.color, (0, 0, 0, 128)),
        blur_px=max(0.0, shadow.blur * scale),
        offset_x_px=shadow.offset_x * scale,
        offset_y_px=shadow.offset_y * scale,
    )


Resolver = Callable[[Field, FieldValue, LayoutFrame], ResolvedField]
_RESOLVERS: Dict[Type[Field], Resolver] = {}


def register_resolver(field_type: Type[Field]):
    """Decorator to register a resolver for a field class (and its subclasses)."""
    def decorator(func: Resolver) -> Resolver:
        _RESOLVERS[field_type] = func
        return func
    return decorator


def resolve_field(field: Field, content: FieldValue, frame: LayoutFrame) -> ResolvedField:
    """Resolve one field's style and position into device pixels."""
    for cls in type(field).__mro__:
        resolver = _RESOLVERS.get(cls)
        if resolver is not None:
            return resolver(field, content, frame)
    raise ValueError(f"No resolver registered for {type(field).__name__}")


def _anchor(field: Field, frame: LayoutFrame) -> Tuple[int, int]:
    px, py = resolve_position(field.position, frame.width, frame.height)
    return px - frame.offset_x, py - frame.offset_y


@register_resolver(TextField)
def resolve_text(field: TextField, content: FieldValue, frame: LayoutFrame) -> ResolvedText:
    style = field.style
    x, y = _anchor(field, frame)
    if style.max_width_pct:
        max_width = round(style.max_width_pct / 100 * frame.width)
    else:
        max_width = frame.width - DEFAULT_TEXT_INSET_PX
    text = content.decode("utf-8", "replace") if isinstance(content, bytes) else str(content)
    return ResolvedText(
        field_name=field.name,
        content=text,
        x=x,
        y=y,
        font_family=style.font_family,
        font_weight=style.font_weight,
        font_size_px=max(1, round(clamp_font_size(style.font_size) * frame.scale)),
        color=parse_color(style.color),
        align=style.align,
        vertical_align=style.vertical_align,
        max_width_px=max_width,
        line_height=style.line_height if style.line_height > 0 else 1.3,
        shadow=resolve_shadow(style.shadow, frame.scale),
        rotation_deg=field.rotation_deg,
    )


@register_resolver(ImageField)
def resolve_image(field: ImageField, content: FieldValue, frame: LayoutFrame) -> ResolvedImage:
    style = field.style
    x, y = _anchor(field, frame)
    return ResolvedImage(
        field_name=field.name,
        source=content,
        x=x,
        y=y,
        max_width_px=max(1, round(style.max_width_pct / 100 * frame.width)),
        max_height_px=max(1, round(style.max_height_pct / 100 * frame.height)),
        rounded=style.rounded,
        border_width_px=max(1, round(BORDER_WIDTH * frame.scale)) if style.border else 0,
        border_color=parse_color(style.border_color),
        shadow=resolve_shadow(style.shadow, frame.scale),
        rotation_deg=field.rotation_deg,
    )
