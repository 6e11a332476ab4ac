"""
Content trimming for native-size downloads.

Templates are often uploaded on a larger canvas with transparent or white
padding; trimming to the bounding box of the real content keeps downloads
from carrying that dead space.

Near-white pixels count as background even when opaque. White design
elements touching the padding can therefore be cropped away.
"""
import logging
from dataclasses import dataclass

import numpy as np
from PIL import Image

from domain.models import CropBox

logger = logging.getLogger(__name__)

ALPHA_THRESHOLD = 10
NEAR_WHITE_THRESHOLD = 240
TRIM_MARGIN = 5


@dataclass(frozen=True)
class TrimResult:
    crop_box: CropBox
    raster: Image.Image


def find_content_box(raster: Image.Image, margin: int = TRIM_MARGIN) -> CropBox:
    width, height = raster.size
    arr = np.asarray(raster.convert("RGBA"))
    alpha = arr[:, :, 3]
    near_white = (arr[:, :, 0] > NEAR_WHITE_THRESHOLD) & (arr[:, :, 1] > NEAR_WHITE_THRESHOLD) & (arr[:, :, 2] > NEAR_WHITE_THRESHOLD)
    content = (alpha > ALPHA_THRESHOLD) & ~near_white

    rows = np.flatnonzero(content.any(axis=1))
    cols = np.flatnonzero(content.any(axis=0))
    if rows.size == 0 or cols.size == 0:
        return CropBox(0, 0, width, height)

    x0 = max(0, int(cols[0]) - margin)
    y0 = max(0, int(rows[0]) - margin)
    x1 = min(width, int(cols[-1]) + 1 + margin)
    y1 = min(height, int(rows[-1]) + 1 + margin)
    return CropBox(x0, y0, x1 - x0, y1 - y0)


def trim(raster: Image.Image, margin: int = TRIM_MARGIN) -> TrimResult:
    box = find_content_box(raster, margin=margin)
    if (box.width, box.height) == raster.size:
        return TrimResult(crop_box=box, raster=raster.copy())
    logger.info("[trim] %sx%s -> %sx%s at (%s,%s)", raster.width, raster.height, box.width, box.height, box.x, box.y)
    return TrimResult(crop_box=box, raster=raster.crop(box.as_pil_box()))
