"""
Quality-tiered encoding of a finished raster.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from io import BytesIO
from typing import Dict, Optional, Tuple

from PIL import Image, ImageFilter

from domain.errors import EncodeFailure
from domain.models import OutputContainer, QualityTier

logger = logging.getLogger(__name__)

PREVIEW_WIDTH = 800
LOW_WIDTH = 1000
WHITE = (255, 255, 255)


@dataclass(frozen=True)
class TierPolicy:
    resize_width: Optional[int]
    container: OutputContainer
    quality: int
    png_compress_level: int = 6
    sharpen: bool = False
    flatten: bool = False
    optimize: bool = False
    fast: bool = False


TIER_POLICIES: Dict[QualityTier, TierPolicy] = {
    QualityTier.PREVIEW: TierPolicy(PREVIEW_WIDTH, OutputContainer.WEBP, quality=65, png_compress_level=3, fast=True),
    QualityTier.LOW: TierPolicy(LOW_WIDTH, OutputContainer.JPEG, quality=75),
    QualityTier.MEDIUM: TierPolicy(None, OutputContainer.JPEG, quality=85),
    QualityTier.HIGH: TierPolicy(None, OutputContainer.PNG, quality=95, sharpen=True),
    QualityTier.DOWNLOAD: TierPolicy(None, OutputContainer.PNG, quality=100, png_compress_level=9, flatten=True, optimize=True),
}


@dataclass(frozen=True)
class EncodedImage:
    data: bytes
    container: OutputContainer
    width: int
    height: int
    fallback: bool = False


def choose_container(tier: QualityTier, requested: Optional[OutputContainer] = None) -> OutputContainer:
    """Container a tier encodes to, honouring the request where the tier allows it."""
    tier = QualityTier(tier)
    requested = OutputContainer(requested) if requested else None
    if tier is QualityTier.DOWNLOAD:
        return OutputContainer.PNG
    if tier is QualityTier.HIGH:
        return requested or OutputContainer.PNG
    # lossy tiers: swap between the two lossy containers only
    if requested in (OutputContainer.JPEG, OutputContainer.WEBP):
        return requested
    return TIER_POLICIES[tier].container


def flatten(image: Image.Image, background: Tuple[int, int, int] = WHITE) -> Image.Image:
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        base = Image.new("RGB", rgba.size, background)
        base.paste(rgba, mask=rgba.getchannel("A"))
        return base
    return image.convert("RGB")


def _prepare(raster: Image.Image, policy: TierPolicy, container: OutputContainer) -> Image.Image:
    image = raster
    if policy.resize_width and image.width > policy.resize_width:
        height = max(1, round(image.height * policy.resize_width / image.width))
        image = image.resize((policy.resize_width, height), Image.LANCZOS)
    if policy.sharpen:
        image = image.filter(ImageFilter.UnsharpMask(radius=1, percent=60, threshold=3))
    if policy.flatten or container is OutputContainer.JPEG:
        image = flatten(image)
    return image


def _save(image: Image.Image, container: OutputContainer, policy: TierPolicy) -> bytes:
    buf = BytesIO()
    if container is OutputContainer.PNG:
        image.save(buf, format="PNG", compress_level=policy.png_compress_level, optimize=policy.optimize)
    elif container is OutputContainer.JPEG:
        image.save(buf, format="JPEG", quality=policy.quality, optimize=not policy.fast)
    else:
        image.save(buf, format="WEBP", quality=policy.quality, method=0 if policy.fast else 4)
    return buf.getvalue()


def _save_raw(raster: Image.Image, container: OutputContainer) -> bytes:
    buf = BytesIO()
    image = raster.convert("RGB") if container is OutputContainer.JPEG else raster
    image.save(buf, format=container.pil_format)
    return buf.getvalue()


def encode(
    raster: Image.Image,
    tier: QualityTier,
    requested: Optional[OutputContainer] = None,
) -> EncodedImage:
    """
    Encode ``raster`` for ``tier``.

    If the tier's parameters fail, the unmodified raster is saved once more
    in the same container with library defaults.

    Raises:
        EncodeFailure: the fallback save failed as well.
    """
    tier = QualityTier(tier)
    policy = TIER_POLICIES[tier]
    container = choose_container(tier, requested)
    started = time.perf_counter()
    try:
        image = _prepare(raster, policy, container)
        data = _save(image, container, policy)
        size = image.size
        fallback = False
    except Exception:
        logger.warning("[encode] %s/%s failed, retrying with raw raster", tier.value, container.value, exc_info=True)
        try:
            data = _save_raw(raster, container)
        except Exception as exc:
            raise EncodeFailure(f"{tier.value}/{container.value}: {exc}") from exc
        size = raster.size
        fallback = True
    logger.info(
        "[encode] %s -> %s %dx%d %d bytes in %.0fms",
        tier.value, container.value, size[0], size[1], len(data), (time.perf_counter() - started) * 1000,
    )
    return EncodedImage(data=data, container=container, width=size[0], height=size[1], fallback=fallback)


def encode_with_preview(
    raster: Image.Image,
    tier: QualityTier,
    requested: Optional[OutputContainer] = None,
    with_preview: bool = True,
) -> Tuple[EncodedImage, Optional[EncodedImage]]:
    """
    Encode the primary tier and, concurrently, a best-effort preview copy.

    The preview task works on its own copy of the raster. Its failure is
    logged and reported as None; it never affects the primary result.
    """
    tier = QualityTier(tier)
    if not with_preview or tier is QualityTier.PREVIEW:
        return encode(raster, tier, requested), None
    preview_raster = raster.copy()
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="encode") as pool:
        primary_future = pool.submit(encode, raster, tier, requested)
        preview_future = pool.submit(encode, preview_raster, QualityTier.PREVIEW, None)
        primary = primary_future.result()
        try:
            preview = preview_future.result()
        except Exception:
            logger.warning("[encode] secondary preview encode failed", exc_info=True)
            preview = None
    return primary, preview
