"""
Certificate / card rendering entry point.

Pipeline per request:
    cache lookup -> background load -> (download: content trim) ->
    layout + layer compositing -> encode -> atomic write -> cache store
"""
import logging
import time
from io import BytesIO
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from PIL import Image, ImageDraw, ImageOps

from domain.errors import BackgroundUnavailable, ImageFetchError, OutputWriteError
from domain.models import (
    CacheEntry,
    Field,
    ImageReference,
    OutputContainer,
    QualityTier,
    RenderOutput,
    RenderRequest,
)
from services.compositor import LayerCompositor, collect_renderable
from services.content_trimmer import trim
from services.encode_pipeline import PREVIEW_WIDTH, EncodedImage, choose_container, encode_with_preview
from services.field_renderer import FieldRenderer
from services.fonts import FontRegistry
from services.image_source import CompositeImageSource, ImageSource
from services.layout_resolver import LayoutFrame, make_frame, validate_dimensions
from services.payloads import extract_field_override
from services.render_cache import RenderCache, compute_fingerprint
from settings import settings
from storage.file_storage import FileStorage

logger = logging.getLogger(__name__)

CERTIFICATE_SIZE = (2480, 3508)  # A4 at 300dpi
MISSING_BACKGROUND_TEXT = "Template image not found"
MISSING_BACKGROUND_COLOR = "#cccccc"
MISSING_BACKGROUND_FONT_SIZE = 20
WHITE = (255, 255, 255, 255)
# Tiers whose canvas, downscaled, is exactly what a preview render would draw.
_PREVIEW_WARMABLE = (QualityTier.LOW, QualityTier.MEDIUM, QualityTier.HIGH)


def preview_size(width: int, height: int) -> Tuple[int, int]:
    return PREVIEW_WIDTH, max(1, round(height * PREVIEW_WIDTH / width))


class CardRenderer:
    def __init__(
        self,
        fonts: FontRegistry,
        cache: Optional[RenderCache] = None,
        image_source: Optional[ImageSource] = None,
        storage: Optional[FileStorage] = None,
        secondary_preview: Optional[bool] = None,
        default_size: Optional[Tuple[int, int]] = None,
    ):
        self.fonts = fonts
        self.cache = cache
        self.image_source = image_source or CompositeImageSource()
        self.storage = storage or FileStorage(settings.RENDER_MEDIA_ROOT)
        self.secondary_preview = settings.RENDER_SECONDARY_PREVIEW if secondary_preview is None else secondary_preview
        self.default_size = default_size or (settings.RENDER_DEFAULT_WIDTH, settings.RENDER_DEFAULT_HEIGHT)
        self.field_renderer = FieldRenderer(fonts, self.image_source)
        self.compositor = LayerCompositor(self.field_renderer)

    # -- sizing -----------------------------------------------------------

    def target_size(self, request: RenderRequest) -> Tuple[int, int]:
        """Output size for non-download tiers; raises InvalidDimensions."""
        width = self.default_size[0] if request.width is None else request.width
        height = self.default_size[1] if request.height is None else request.height
        validate_dimensions(width, height)
        if QualityTier(request.quality) is QualityTier.PREVIEW:
            return preview_size(width, height)
        return width, height

    # -- cache helpers (backend failures are treated as misses) ------------

    def _cache_get(self, fingerprint: str) -> Optional[CacheEntry]:
        if self.cache is None:
            return None
        try:
            return self.cache.get(fingerprint)
        except Exception:
            logger.warning("[cache] lookup failed, rendering uncached", exc_info=True)
            return None

    def _cache_put(self, fingerprint: str, encoded: EncodedImage, path) -> None:
        if self.cache is None:
            return
        try:
            self.cache.put(fingerprint, encoded.data, path, container=encoded.container, width=encoded.width, height=encoded.height)
        except Exception:
            logger.warning("[cache] store failed for %s", fingerprint[:12], exc_info=True)

    # -- background -------------------------------------------------------

    def _load_background(self, reference: ImageReference) -> Image.Image:
        try:
            data = reference if isinstance(reference, bytes) else self.image_source.fetch(reference)
            with Image.open(BytesIO(data)) as img:
                img.load()
                return ImageOps.exif_transpose(img).convert("RGBA")
        except ImageFetchError as exc:
            raise BackgroundUnavailable(exc.detail) from exc
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            raise BackgroundUnavailable(f"undecodable background: {exc}") from exc

    def blank_canvas(self, width: int, height: int) -> Image.Image:
        canvas = Image.new("RGBA", (width, height), WHITE)
        font = self.fonts.get_font(None, "normal", MISSING_BACKGROUND_FONT_SIZE)
        ImageDraw.Draw(canvas).text(
            (width / 2, height / 2), MISSING_BACKGROUND_TEXT, font=font, fill=MISSING_BACKGROUND_COLOR, anchor="mm"
        )
        return canvas

    def _prepare_canvas(self, request: RenderRequest, tier: QualityTier) -> Tuple[Image.Image, LayoutFrame]:
        try:
            background = self._load_background(request.background)
        except BackgroundUnavailable as exc:
            logger.warning("[render] background unavailable (%s); using blank canvas", exc.detail)
            width, height = self.target_size(request)
            return self.blank_canvas(width, height), make_frame(width, height)

        if tier is QualityTier.DOWNLOAD:
            native_w, native_h = background.size
            trimmed = trim(background)
            box = trimmed.crop_box
            frame = make_frame(native_w, native_h, scale_width=box.width, offset=(box.x, box.y))
            return trimmed.raster, frame

        width, height = self.target_size(request)
        canvas = Image.new("RGBA", (width, height), WHITE)
        if background.size != (width, height):
            background = background.resize((width, height), Image.LANCZOS)
        canvas.alpha_composite(background)
        return canvas, make_frame(width, height)

    # -- main entry -------------------------------------------------------

    def effective_fields(self, request: RenderRequest) -> List[Field]:
        override = extract_field_override(request.values)
        if override is not None:
            logger.info("[render] using %d caller-supplied design fields", len(override))
            return override
        return list(request.fields)

    def fingerprint(self, request: RenderRequest, fields: Sequence[Field]) -> str:
        tier = QualityTier(request.quality)
        if tier is QualityTier.DOWNLOAD:
            # native size comes from the template itself
            width, height = request.width, request.height
            if width is not None or height is not None:
                validate_dimensions(1 if width is None else width, 1 if height is None else height)
        else:
            width, height = self.target_size(request)
        container = choose_container(tier, request.container)
        return compute_fingerprint(request.background, fields, request.values, tier, width, height, container)

    def render(self, request: RenderRequest) -> RenderOutput:
        """
        Render a request to an encoded file.

        Raises:
            InvalidDimensions: non-positive width/height
            EncodeFailure: the raster could not be encoded even raw
            OutputWriteError: the encoded file could not be written
        """
        started = time.perf_counter()
        tier = QualityTier(request.quality)
        fields = self.effective_fields(request)
        fingerprint = self.fingerprint(request, fields)

        cached = self._cache_get(fingerprint)
        if cached is not None:
            logger.info("[cache] hit %s (%s)", fingerprint[:12], tier.value)
            return RenderOutput(
                data=cached.encoded_bytes,
                path=cached.stored_path,
                container=cached.container or choose_container(tier, request.container),
                quality=tier,
                width=cached.width,
                height=cached.height,
                fingerprint=fingerprint,
                from_cache=True,
            )
        logger.info("[cache] miss %s (%s)", fingerprint[:12], tier.value)

        canvas, frame = self._prepare_canvas(request, tier)
        items = collect_renderable(fields, request.values)
        diagnostics = self.compositor.sort_and_render(canvas, items, frame)

        warm = self.secondary_preview and self.cache is not None and tier in _PREVIEW_WARMABLE
        primary, secondary = encode_with_preview(canvas, tier, request.container, with_preview=warm)

        filename = f"{fingerprint[:16]}-{tier.value}.{primary.container.extension}"
        try:
            path = self.storage.write_atomic(filename, primary.data)
        except OSError as exc:
            raise OutputWriteError(f"could not write {filename}: {exc}") from exc
        self._cache_put(fingerprint, primary, path)
        if secondary is not None:
            self._warm_preview(request, fields, canvas.size, secondary)

        logger.info(
            "[render] %s %dx%d, %d fields (%d skipped) in %.0fms -> %s",
            tier.value, primary.width, primary.height, len(items), len(diagnostics),
            (time.perf_counter() - started) * 1000, path,
        )
        return RenderOutput(
            data=primary.data,
            path=path,
            container=primary.container,
            quality=tier,
            width=primary.width,
            height=primary.height,
            fingerprint=fingerprint,
            diagnostics=tuple(diagnostics),
        )

    def _warm_preview(self, request: RenderRequest, fields: Sequence[Field], canvas_size: Tuple[int, int], encoded: EncodedImage) -> None:
        """
        Store the secondary preview encode under the preview fingerprint.

        The warmed bytes are a LANCZOS downscale of the full-size canvas, while
        a cold preview request draws directly at preview width. Both have the
        same size and layout, but they are not byte-identical, so a preview
        request returns different bytes depending on whether a larger tier was
        rendered first.
        """
        if (encoded.width, encoded.height) != preview_size(*canvas_size) or encoded.fallback:
            return
        fingerprint = compute_fingerprint(
            request.background, fields, request.values, QualityTier.PREVIEW,
            encoded.width, encoded.height, encoded.container,
        )
        try:
            path = self.storage.write_atomic(f"{fingerprint[:16]}-preview.{encoded.container.extension}", encoded.data)
        except OSError:
            logger.warning("[render] could not store warmed preview", exc_info=True)
            return
        self._cache_put(fingerprint, encoded, path)

    def render_certificate(
        self,
        background: ImageReference,
        fields: Sequence[Field],
        values: Optional[Mapping[str, Any]] = None,
    ) -> RenderOutput:
        """Print-ready certificate: A4 at 300dpi, high quality PNG."""
        width, height = CERTIFICATE_SIZE
        return self.render(
            RenderRequest(
                background=background,
                fields=list(fields),
                values=dict(values or {}),
                width=width,
                height=height,
                quality=QualityTier.HIGH,
                container=OutputContainer.PNG,
            )
        )
