"""
Draws one resolved field onto the canvas.

Each field is drawn into its own transparent layer centered on the field's
anchor. The layer is rotated about that center and alpha-composited onto the
canvas only once drawing has succeeded, so a failing field never leaves
partial pixels behind.
"""
import logging
import math
from io import BytesIO
from typing import Optional, Tuple

from PIL import Image, ImageChops, ImageDraw, ImageFilter, ImageOps

from domain.errors import FieldRenderFailure, ImageFetchError
from domain.models import (
    RGBA,
    ResolvedField,
    ResolvedImage,
    ResolvedShadow,
    ResolvedText,
    TextAlign,
    VerticalAlign,
)
from services.fonts import FontRegistry
from services.image_source import CompositeImageSource, ImageSource
from services.text_shaper import text_direction, wrap_text

logger = logging.getLogger(__name__)

LAYER_PADDING = 4

_ANCHORS = {
    TextAlign.LEFT: "lm",
    TextAlign.CENTER: "mm",
    TextAlign.RIGHT: "rm",
}


def fit_box(src_w: int, src_h: int, max_w: int, max_h: int) -> Tuple[int, int]:
    """
    Largest box with the source aspect ratio inside ``max_w`` x ``max_h``.

    The limiting dimension is chosen by orientation; the source is never
    enlarged beyond its own size.
    """
    if src_w <= 0 or src_h <= 0:
        raise ValueError(f"invalid source size {src_w}x{src_h}")
    aspect = src_w / src_h
    if aspect >= 1:
        w = min(max_w, src_w)
        h = w / aspect
        if h > max_h:
            h = max_h
            w = h * aspect
    else:
        h = min(max_h, src_h)
        w = h * aspect
        if w > max_w:
            w = max_w
            h = w / aspect
    return max(1, round(w)), max(1, round(h))


def _colorize(mask: Image.Image, color: RGBA) -> Image.Image:
    """RGBA layer of a flat color whose alpha is ``mask`` scaled by the color's alpha."""
    layer = Image.new("RGBA", mask.size, (color[0], color[1], color[2], 0))
    if color[3] < 255:
        alpha = color[3]
        mask = mask.point(lambda v: v * alpha // 255)
    layer.putalpha(mask)
    return layer


def _shadow_layer(mask: Image.Image, shadow: ResolvedShadow) -> Image.Image:
    shifted = Image.new("L", mask.size, 0)
    shifted.paste(mask, (round(shadow.offset_x_px), round(shadow.offset_y_px)))
    if shadow.blur_px > 0:
        # canvas shadowBlur is roughly twice the gaussian standard deviation
        shifted = shifted.filter(ImageFilter.GaussianBlur(shadow.blur_px / 2))
    return _colorize(shifted, shadow.color)


def _shadow_extent(shadow: Optional[ResolvedShadow]) -> float:
    if shadow is None:
        return 0.0
    return max(abs(shadow.offset_x_px), abs(shadow.offset_y_px)) + shadow.blur_px * 2


def _composite_at(canvas: Image.Image, layer: Image.Image, left: int, top: int) -> None:
    """alpha_composite ``layer`` at (left, top), clipping to the canvas bounds."""
    dx0, dy0 = max(0, left), max(0, top)
    dx1 = min(canvas.width, left + layer.width)
    dy1 = min(canvas.height, top + layer.height)
    if dx0 >= dx1 or dy0 >= dy1:
        return
    source = (dx0 - left, dy0 - top, dx1 - left, dy1 - top)
    canvas.alpha_composite(layer, dest=(dx0, dy0), source=source)


class FieldRenderer:
    def __init__(self, fonts: FontRegistry, image_source: Optional[ImageSource] = None):
        self.fonts = fonts
        self.image_source = image_source or CompositeImageSource()

    def render(self, canvas: Image.Image, resolved: ResolvedField) -> None:
        """
        Draw ``resolved`` onto ``canvas`` (RGBA, modified in place).

        Raises:
            FieldRenderFailure: the field could not be drawn; canvas is unchanged.
        """
        try:
            if isinstance(resolved, ResolvedText):
                drawn = self._text_layer(resolved)
            elif isinstance(resolved, ResolvedImage):
                drawn = self._image_layer(resolved)
            else:
                raise TypeError(f"unsupported resolved field {type(resolved).__name__}")
            if drawn is None:
                return
            layer, radius = drawn
            rotation = resolved.rotation_deg % 360
            if rotation:
                # positive degrees turn clockwise on screen; PIL rotates counter-clockwise
                layer = layer.rotate(-rotation, resample=Image.BICUBIC)
        except FieldRenderFailure:
            raise
        except Exception as exc:
            raise FieldRenderFailure(resolved.field_name, f"{type(exc).__name__}: {exc}") from exc
        _composite_at(canvas, layer, resolved.x - radius, resolved.y - radius)

    def _text_layer(self, r: ResolvedText) -> Optional[Tuple[Image.Image, int]]:
        font = self.fonts.get_font(r.font_family, r.font_weight, r.font_size_px)
        lines = wrap_text(r.content, r.max_width_px, font)
        if not lines:
            return None
        line_h = r.font_size_px * r.line_height
        total = line_h * len(lines)
        if r.vertical_align is VerticalAlign.MIDDLE:
            first_y = -total / 2 + line_h / 2
        elif r.vertical_align is VerticalAlign.BOTTOM:
            first_y = -total
        else:
            first_y = 0.0

        widest = max(font.getlength(line) for line in lines)
        if r.align is TextAlign.CENTER:
            reach_x = widest / 2
        else:
            reach_x = widest
        reach_y = max(abs(first_y - line_h), abs(first_y + total))
        pad = LAYER_PADDING + _shadow_extent(r.shadow)
        radius = math.ceil(math.hypot(reach_x + pad, reach_y + pad))
        size = 2 * radius + 1

        anchor = _ANCHORS[r.align]
        mask = Image.new("L", (size, size), 0)
        draw = ImageDraw.Draw(mask)
        for i, line in enumerate(lines):
            if not line:
                continue
            draw.text(
                (radius, radius + first_y + i * line_h),
                line,
                font=font,
                fill=255,
                anchor=anchor,
                direction=text_direction(line),
            )
        layer = _colorize(mask, r.color)
        if r.shadow is not None:
            layer = Image.alpha_composite(_shadow_layer(mask, r.shadow), layer)
        return layer, radius

    def _load_image(self, source) -> Image.Image:
        data = source if isinstance(source, bytes) else self.image_source.fetch(source)
        try:
            with Image.open(BytesIO(data)) as img:
                img.load()
                img = ImageOps.exif_transpose(img)
                return img.convert("RGBA")
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            raise ImageFetchError("<field image>", f"undecodable image: {exc}") from exc

    def _image_layer(self, r: ResolvedImage) -> Tuple[Image.Image, int]:
        src = self._load_image(r.source)
        w, h = fit_box(src.width, src.height, r.max_width_px, r.max_height_px)
        img = src.resize((w, h), Image.LANCZOS) if (w, h) != src.size else src

        diameter = min(w, h)
        circle = ((w - diameter) // 2, (h - diameter) // 2, (w - diameter) // 2 + diameter - 1, (h - diameter) // 2 + diameter - 1)
        if r.rounded:
            clip = Image.new("L", (w, h), 0)
            ImageDraw.Draw(clip).ellipse(circle, fill=255)
            img.putalpha(ImageChops.multiply(img.getchannel("A"), clip))

        pad = LAYER_PADDING + r.border_width_px + _shadow_extent(r.shadow)
        radius = math.ceil(math.hypot(w / 2 + pad, h / 2 + pad))
        size = 2 * radius + 1
        left, top = radius - w // 2, radius - h // 2

        layer = Image.new("RGBA", (size, size), (0, 0, 0, 0))
        if r.shadow is not None:
            alpha = Image.new("L", (size, size), 0)
            alpha.paste(img.getchannel("A"), (left, top))
            layer.alpha_composite(_shadow_layer(alpha, r.shadow))
        layer.alpha_composite(img, dest=(left, top))

        if r.border_width_px:
            draw = ImageDraw.Draw(layer)
            if r.rounded:
                box = (left + circle[0], top + circle[1], left + circle[2], top + circle[3])
                draw.ellipse(box, outline=r.border_color, width=r.border_width_px)
            else:
                draw.rectangle((left, top, left + w - 1, top + h - 1), outline=r.border_color, width=r.border_width_px)
        return layer, radius
