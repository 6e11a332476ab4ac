"""Render a single certificate/card from JSON field and value files.

Usage:
    python -m scripts.render_card --background template.png --fields fields.json --values values.json \
        [--quality preview|low|medium|high|download] [--width 1200] [--height 1600] \
        [--container png|jpeg|webp] [--media-root media] [--font-dir fonts ...] [--thumbnails small,card]

``fields.json`` holds the stored field records (a list, or an object with a
"fields" list); ``values.json`` the value map. Prints the written path.
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, List, Optional

from dotenv import load_dotenv

load_dotenv()

from domain.errors import EncodeFailure, InvalidDimensions, OutputWriteError  # noqa: E402
from domain.models import OutputContainer, QualityTier, RenderRequest  # noqa: E402
from services.card_renderer import CardRenderer  # noqa: E402
from services.fonts import FontRegistry  # noqa: E402
from services.image_source import register_heif_opener  # noqa: E402
from services.payloads import parse_fields  # noqa: E402
from services.render_cache import RenderCache  # noqa: E402
from services.thumbnails import generate_thumbnails  # noqa: E402
from settings import settings  # noqa: E402
from storage.file_storage import FileStorage  # noqa: E402

logger = logging.getLogger("render_card")


def _read_json(path: Optional[str], default: Any) -> Any:
    if not path:
        return default
    return json.loads(Path(path).read_text(encoding="utf-8"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Render a certificate or card image.")
    parser.add_argument("--background", required=True, help="Template image path or URL.")
    parser.add_argument("--fields", required=True, help="JSON file with the field records.")
    parser.add_argument("--values", default=None, help="JSON file with the value map.")
    parser.add_argument("--quality", choices=[t.value for t in QualityTier], default=QualityTier.MEDIUM.value)
    parser.add_argument("--width", type=int, default=None)
    parser.add_argument("--height", type=int, default=None)
    parser.add_argument("--container", choices=[c.value for c in OutputContainer], default=None)
    parser.add_argument("--media-root", default=settings.RENDER_MEDIA_ROOT, help="Output root directory.")
    parser.add_argument("--font-dir", action="append", default=None, help="Font directory (repeatable).")
    parser.add_argument("--thumbnails", default="", help="Comma-separated thumbnail presets to generate.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    if not logging.getLogger().handlers:
        logging.basicConfig(level=settings.RENDER_LOG_LEVEL.upper(), format="%(message)s")
    args = build_parser().parse_args(argv)
    register_heif_opener()

    raw_fields = _read_json(args.fields, [])
    if isinstance(raw_fields, dict):
        raw_fields = raw_fields.get("fields", [])
    values = _read_json(args.values, {})

    fonts = FontRegistry.load(args.font_dir or settings.RENDER_FONT_DIRS, default_family=settings.RENDER_DEFAULT_FONT_FAMILY)
    storage = FileStorage(args.media_root)
    request = RenderRequest(
        background=args.background,
        fields=parse_fields(raw_fields),
        values=values,
        width=args.width,
        height=args.height,
        quality=QualityTier(args.quality),
        container=OutputContainer(args.container) if args.container else None,
    )
    # one-shot process: no background sweeper
    with RenderCache(sweep_interval_seconds=0) as cache:
        renderer = CardRenderer(fonts, cache=cache, storage=storage, secondary_preview=False)
        try:
            output = renderer.render(request)
        except (InvalidDimensions, EncodeFailure, OutputWriteError) as exc:
            logger.error("render failed: %s", exc)
            return 2

    for diag in output.diagnostics:
        logger.warning("skipped field %s: %s", diag.field_name, diag.reason)
    print(output.path)

    presets = [p.strip() for p in args.thumbnails.split(",") if p.strip()]
    if presets:
        for size, path in generate_thumbnails(output.path, storage, presets).items():
            print(f"{size}: {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
