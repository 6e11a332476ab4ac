"""
Thumbnail presets for rendered cards.
"""
import logging
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Dict, Iterable, Optional, Union

from PIL import Image, ImageOps

from storage.file_storage import FileStorage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThumbnailPreset:
    width: int
    height: int
    quality: int


THUMBNAIL_PRESETS: Dict[str, ThumbnailPreset] = {
    "small": ThumbnailPreset(150, 150, 75),
    "medium": ThumbnailPreset(300, 300, 80),
    "large": ThumbnailPreset(600, 600, 85),
    "card": ThumbnailPreset(400, 250, 80),
    "gallery": ThumbnailPreset(250, 200, 75),
}


def thumbnail_name(image_path: Union[str, Path], size: str) -> str:
    return f"{Path(image_path).stem}_{size}.webp"


def make_thumbnail(image: Image.Image, preset: ThumbnailPreset) -> bytes:
    # cover-fit: fill the preset box, cropping the overflow around the center
    fitted = ImageOps.fit(image, (preset.width, preset.height), method=Image.LANCZOS, centering=(0.5, 0.5))
    buf = BytesIO()
    fitted.save(buf, format="WEBP", quality=preset.quality)
    return buf.getvalue()


def generate_thumbnails(
    image_path: Union[str, Path],
    storage: FileStorage,
    sizes: Optional[Iterable[str]] = None,
) -> Dict[str, Path]:
    """
    Write WebP thumbnails of ``image_path`` for each requested preset.

    Unknown preset names are ignored; a preset that fails is logged and left
    out of the result.

    Returns:
        Mapping of preset name to written path
    """
    src = Path(image_path)
    if not src.exists():
        raise FileNotFoundError(src)
    wanted = list(sizes) if sizes is not None else list(THUMBNAIL_PRESETS)
    out: Dict[str, Path] = {}
    with Image.open(src) as img:
        img.load()
        base = ImageOps.exif_transpose(img)
        if base.mode not in ("RGB", "RGBA"):
            base = base.convert("RGBA")
        for size in wanted:
            preset = THUMBNAIL_PRESETS.get(size)
            if preset is None:
                logger.warning("[thumbs] unknown preset %r", size)
                continue
            try:
                data = make_thumbnail(base, preset)
                out[size] = storage.write_atomic(thumbnail_name(src, size), data, storage.get_thumbnails_dir())
            except Exception:
                logger.warning("[thumbs] %s failed for %s", size, src, exc_info=True)
    return out


def delete_thumbnails(image_path: Union[str, Path], storage: FileStorage) -> int:
    """Remove every preset thumbnail of ``image_path``; returns how many existed."""
    removed = 0
    thumbs_dir = storage.get_thumbnails_dir()
    for size in THUMBNAIL_PRESETS:
        if storage.delete_file(thumbs_dir / thumbnail_name(image_path, size)):
            removed += 1
    return removed
