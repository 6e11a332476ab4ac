"""
Layer compositor: decides which fields render and in which order.
"""
import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence

from PIL import Image

from domain.errors import FieldRenderFailure
from domain.models import Field, FieldDiagnostic, FieldValue, ImageField, StaticImageField, StaticTextField
from services.field_renderer import FieldRenderer
from services.layout_resolver import LayoutFrame, resolve_field

logger = logging.getLogger(__name__)

# Value-map key that carries a caller-customized field list.
DESIGN_FIELDS_KEY = "_designFields"


@dataclass(frozen=True)
class RenderItem:
    field: Field
    content: FieldValue


def field_content(field: Field, values: Mapping[str, Any]) -> Optional[FieldValue]:
    """The content a field would draw, or None when there is nothing to draw."""
    if isinstance(field, (StaticTextField, StaticImageField)):
        return field.static_content or None
    value = values.get(field.name)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, bytes):
        # raw bytes only make sense as an image
        return value if isinstance(field, ImageField) and value else None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value if value.strip() else None
    return None


def collect_renderable(fields: Sequence[Field], values: Mapping[str, Any]) -> List[RenderItem]:
    """Visible fields with content, in declaration order."""
    items: List[RenderItem] = []
    for field in fields:
        if not field.visible:
            continue
        content = field_content(field, values)
        if content is None:
            logger.debug("[compose] skipping %s: no value", field.name)
            continue
        items.append(RenderItem(field=field, content=content))
    return items


def order_layers(items: Sequence[RenderItem]) -> List[RenderItem]:
    # sorted() is stable, so equal keys keep declaration order
    return sorted(items, key=lambda item: (item.field.depth, item.field.display_order))


class LayerCompositor:
    def __init__(self, renderer: FieldRenderer):
        self.renderer = renderer

    def sort_and_render(self, canvas: Image.Image, items: Sequence[RenderItem], frame: LayoutFrame) -> List[FieldDiagnostic]:
        """
        Draw ``items`` bottom to top onto ``canvas``.

        Returns:
            Diagnostics for fields that failed and were skipped.
        """
        diagnostics: List[FieldDiagnostic] = []
        ordered = order_layers(items)
        logger.debug("[compose] layer order: %s", [item.field.name for item in ordered])
        for item in ordered:
            try:
                try:
                    resolved = resolve_field(item.field, item.content, frame)
                except Exception as exc:
                    raise FieldRenderFailure(item.field.name, f"layout failed: {type(exc).__name__}: {exc}") from exc
                self.renderer.render(canvas, resolved)
            except FieldRenderFailure as exc:
                logger.warning("[field] skipped %s: %s", exc.field_name, exc.detail, exc_info=True)
                diagnostics.append(FieldDiagnostic(field_name=exc.field_name, reason=exc.detail))
        return diagnostics
