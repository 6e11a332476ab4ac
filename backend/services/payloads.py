"""
Template-store payloads -> domain fields.

Field records arrive as the editor stores them (camelCase keys, a free-form
``style`` object). Each record becomes exactly one closed field kind; style
keys that do not apply to that kind are ignored and malformed values fall
back to defaults instead of failing the render.
"""
import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from domain import models
from domain.models import (
    ImageField,
    ImageStyle,
    Position,
    ShadowStyle,
    StaticImageField,
    StaticTextField,
    TextAlign,
    TextField,
    TextStyle,
    VerticalAlign,
)
from services.compositor import DESIGN_FIELDS_KEY
from settings import settings

logger = logging.getLogger(__name__)


def _num(value: Any, default: Optional[float]) -> Optional[float]:
    if value is None or isinstance(value, bool) or value == "":
        return default
    try:
        number = float(str(value).strip().removesuffix("px").removesuffix("%"))
    except ValueError:
        return default
    return number if math.isfinite(number) else default


def _flag(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _text(value: Any, default: str) -> str:
    return value.strip() if isinstance(value, str) and value.strip() else default


def _enum(enum_cls, value: Any, default):
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return default


def _shadow(raw: Any) -> ShadowStyle:
    if not isinstance(raw, Mapping):
        return ShadowStyle()
    base = ShadowStyle()
    return ShadowStyle(
        enabled=_flag(raw.get("enabled")),
        color=_text(raw.get("color"), base.color),
        blur=_num(raw.get("blur"), base.blur),
        offset_x=_num(raw.get("offsetX"), base.offset_x),
        offset_y=_num(raw.get("offsetY"), base.offset_y),
    )


def text_style_from(style: Mapping[str, Any]) -> TextStyle:
    base = TextStyle(font_family=settings.RENDER_DEFAULT_FONT_FAMILY)
    return TextStyle(
        font_family=_text(style.get("fontFamily"), base.font_family),
        font_size=_num(style.get("fontSize"), base.font_size),
        font_weight=str(style.get("fontWeight") or base.font_weight),
        color=_text(style.get("color"), base.color),
        align=_enum(TextAlign, style.get("align", style.get("textAlign")), base.align),
        vertical_align=_enum(VerticalAlign, style.get("verticalPosition"), base.vertical_align),
        max_width_pct=_num(style.get("maxWidth"), None),
        line_height=_num(style.get("lineHeight"), base.line_height),
        shadow=_shadow(style.get("textShadow")),
    )


def image_style_from(style: Mapping[str, Any]) -> ImageStyle:
    base = ImageStyle()
    shadow = style.get("imageShadow", style.get("textShadow"))
    return ImageStyle(
        max_width_pct=_num(style.get("imageMaxWidth"), base.max_width_pct),
        max_height_pct=_num(style.get("imageMaxHeight"), base.max_height_pct),
        border=_flag(style.get("imageBorder")),
        border_color=_text(style.get("color"), base.border_color),
        rounded=_flag(style.get("imageRounded")),
        shadow=_shadow(shadow),
    )


class PositionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    x: Optional[float] = None
    y: Optional[float] = None

    @field_validator("x", "y")
    @classmethod
    def _finite(cls, value: Optional[float]) -> Optional[float]:
        # NaN or infinite coordinates fall back to the centre
        if value is None or not math.isfinite(value):
            return None
        return value


class FieldPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[Union[str, int]] = None
    name: str
    type: str = "text"
    is_static: bool = Field(False, alias="isStatic")
    static_content: Optional[str] = Field(None, alias="staticContent")
    position: Optional[PositionPayload] = None
    z_index: Optional[int] = Field(None, alias="zIndex")
    visible: Optional[bool] = True
    rotation: Optional[float] = 0.0
    display_order: Optional[int] = Field(0, alias="displayOrder")
    style: Optional[Dict[str, Any]] = None

    def kind(self) -> models.FieldKind:
        kind = (self.type or "text").strip().lower()
        if kind == "static_image" or (kind == "image" and self.is_static):
            return models.FieldKind.STATIC_IMAGE
        if kind == "static_text" or self.is_static:
            return models.FieldKind.STATIC_TEXT
        if kind == "image":
            return models.FieldKind.IMAGE
        # text, number, date, select and anything newer render as text
        return models.FieldKind.TEXT

    def depth(self) -> int:
        if self.z_index is not None:
            return self.z_index
        layer = _num((self.style or {}).get("layer"), None)
        return int(layer) if layer is not None else 1

    def to_domain(self) -> models.Field:
        style = self.style or {}
        pos = self.position or PositionPayload()
        common = dict(
            name=self.name,
            id=None if self.id is None else str(self.id),
            position=Position(
                x_pct=50.0 if pos.x is None else pos.x,
                y_pct=50.0 if pos.y is None else pos.y,
            ),
            depth=self.depth(),
            visible=True if self.visible is None else self.visible,
            rotation_deg=_num(self.rotation, 0.0) or 0.0,
            display_order=self.display_order or 0,
        )
        kind = self.kind()
        if kind is models.FieldKind.STATIC_IMAGE:
            return StaticImageField(style=image_style_from(style), static_content=self.static_content or "", **common)
        if kind is models.FieldKind.IMAGE:
            return ImageField(style=image_style_from(style), **common)
        if kind is models.FieldKind.STATIC_TEXT:
            return StaticTextField(style=text_style_from(style), static_content=self.static_content or "", **common)
        return TextField(style=text_style_from(style), **common)


def parse_fields(records: Sequence[Any]) -> List[models.Field]:
    """Convert stored field records; malformed records are logged and dropped."""
    fields: List[models.Field] = []
    for i, record in enumerate(records or []):
        if isinstance(record, models.Field):
            fields.append(record)
            continue
        try:
            fields.append(FieldPayload.model_validate(record).to_domain())
        except ValidationError as exc:
            logger.warning("[payload] dropping field record #%d: %s", i, exc.errors(include_url=False))
    return fields


def extract_field_override(values: Mapping[str, Any]) -> Optional[List[models.Field]]:
    """Field list carried under the reserved design key, if any."""
    raw = values.get(DESIGN_FIELDS_KEY)
    if not isinstance(raw, list) or not raw:
        return None
    fields = parse_fields(raw)
    return fields or None
