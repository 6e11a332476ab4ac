"""
Core domain models for the certificate/card renderer.
These are framework-agnostic and can be used across all services.
"""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Dict, Optional, Sequence, Tuple, Union


class FieldKind(str, Enum):
    """Kind of a placeable field."""
    TEXT = "text"
    IMAGE = "image"
    STATIC_TEXT = "static_text"  # literal text carried by the field itself
    STATIC_IMAGE = "static_image"  # literal image reference carried by the field itself


class QualityTier(str, Enum):
    """
    Named encode presets.

    - PREVIEW: small and fast, used while editing
    - LOW / MEDIUM: lossy deliverables
    - HIGH: requested container, default lossless, lightly sharpened
    - DOWNLOAD: native size, trimmed, maximum lossless compression
    """
    PREVIEW = "preview"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    DOWNLOAD = "download"


class OutputContainer(str, Enum):
    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"

    @property
    def extension(self) -> str:
        return "jpg" if self is OutputContainer.JPEG else self.value

    @property
    def pil_format(self) -> str:
        return self.value.upper()


class TextAlign(str, Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class VerticalAlign(str, Enum):
    TOP = "top"
    MIDDLE = "middle"
    BOTTOM = "bottom"


@dataclass(frozen=True)
class Position:
    """Field anchor (its center) as percentages of the canvas."""
    x_pct: float = 50.0
    y_pct: float = 50.0


@dataclass(frozen=True)
class ShadowStyle:
    enabled: bool = False
    color: str = "rgba(0,0,0,0.5)"
    blur: float = 3.0  # logical px at the reference width
    offset_x: float = 2.0
    offset_y: float = 2.0


@dataclass(frozen=True)
class TextStyle:
    font_family: str = "Cairo"
    font_size: float = 24.0  # logical px, clamped before scaling
    font_weight: str = "normal"
    color: str = "#000000"
    align: TextAlign = TextAlign.CENTER
    vertical_align: VerticalAlign = VerticalAlign.TOP
    max_width_pct: Optional[float] = None
    line_height: float = 1.3
    shadow: ShadowStyle = field(default_factory=ShadowStyle)


@dataclass(frozen=True)
class ImageStyle:
    max_width_pct: float = 25.0
    max_height_pct: float = 25.0
    border: bool = False
    border_color: str = "#000000"
    rounded: bool = False
    shadow: ShadowStyle = field(default_factory=ShadowStyle)


@dataclass(frozen=True)
class Field:
    """
    One placeable unit on the canvas.

    Concrete kinds are the subclasses below; each carries only the style
    relevant to it.
    """
    name: str
    id: Optional[str] = None
    position: Position = field(default_factory=Position)
    depth: int = 1
    visible: bool = True
    rotation_deg: float = 0.0
    display_order: int = 0

    kind: ClassVar[FieldKind]

    @property
    def is_static(self) -> bool:
        return self.kind in (FieldKind.STATIC_TEXT, FieldKind.STATIC_IMAGE)


@dataclass(frozen=True)
class TextField(Field):
    style: TextStyle = field(default_factory=TextStyle)

    kind: ClassVar[FieldKind] = FieldKind.TEXT


@dataclass(frozen=True)
class StaticTextField(TextField):
    static_content: str = ""

    kind: ClassVar[FieldKind] = FieldKind.STATIC_TEXT


@dataclass(frozen=True)
class ImageField(Field):
    style: ImageStyle = field(default_factory=ImageStyle)

    kind: ClassVar[FieldKind] = FieldKind.IMAGE


@dataclass(frozen=True)
class StaticImageField(ImageField):
    static_content: str = ""  # path, URL or data: URI

    kind: ClassVar[FieldKind] = FieldKind.STATIC_IMAGE


# Background / image references: raw bytes, a local path, or a URL / data: URI.
ImageReference = Union[bytes, str, Path]
FieldValue = Union[str, bytes]


@dataclass
class RenderRequest:
    """Caller-supplied unit of work."""
    background: ImageReference
    fields: Sequence[Field]
    values: Dict[str, Any] = field(default_factory=dict)
    width: Optional[int] = None
    height: Optional[int] = None
    quality: QualityTier = QualityTier.MEDIUM
    container: Optional[OutputContainer] = None


@dataclass(frozen=True)
class CacheEntry:
    fingerprint: str
    encoded_bytes: bytes
    created_at: float
    stored_path: Optional[Path] = None
    container: Optional[OutputContainer] = None
    width: int = 0
    height: int = 0


@dataclass(frozen=True)
class FieldDiagnostic:
    """A field that was skipped because it failed to draw."""
    field_name: str
    reason: str


@dataclass(frozen=True)
class RenderOutput:
    data: bytes
    path: Optional[Path]
    container: OutputContainer
    quality: QualityTier
    width: int
    height: int
    fingerprint: str
    from_cache: bool = False
    diagnostics: Tuple[FieldDiagnostic, ...] = ()


# Resolved layout: every value in device pixels, every default applied.

RGBA = Tuple[int, int, int, int]


@dataclass(frozen=True)
class ResolvedShadow:
    color: RGBA
    blur_px: float
    offset_x_px: float
    offset_y_px: float


@dataclass(frozen=True)
class ResolvedText:
    field_name: str
    content: str
    x: int
    y: int
    font_family: str
    font_weight: str
    font_size_px: int
    color: RGBA
    align: TextAlign
    vertical_align: VerticalAlign
    max_width_px: int
    line_height: float
    shadow: Optional[ResolvedShadow] = None
    rotation_deg: float = 0.0


@dataclass(frozen=True)
class ResolvedImage:
    field_name: str
    source: ImageReference
    x: int
    y: int
    max_width_px: int
    max_height_px: int
    rounded: bool = False
    border_width_px: int = 0
    border_color: RGBA = (0, 0, 0, 255)
    shadow: Optional[ResolvedShadow] = None
    rotation_deg: float = 0.0


ResolvedField = Union[ResolvedText, ResolvedImage]


@dataclass(frozen=True)
class CropBox:
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def as_pil_box(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.right, self.bottom)
