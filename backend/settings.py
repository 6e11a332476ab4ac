import os
from pathlib import Path
from typing import List

# Basic settings helper to read environment configuration.


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def _as_int(val: str | None, default: int) -> int:
    if val is None or not val.strip():
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _as_float(val: str | None, default: float) -> float:
    if val is None or not val.strip():
        return default
    try:
        return float(val)
    except ValueError:
        return default


def _as_paths(val: str | None, default: str) -> List[Path]:
    raw = val if val else default
    return [Path(p) for p in raw.split(os.pathsep) if p.strip()]


class Settings:
    def __init__(self) -> None:
        self.RENDER_MEDIA_ROOT: str = os.getenv("RENDER_MEDIA_ROOT", "media")
        self.RENDER_FONT_DIRS: List[Path] = _as_paths(os.getenv("RENDER_FONT_DIRS"), "fonts")
        self.RENDER_DEFAULT_FONT_FAMILY: str = os.getenv("RENDER_DEFAULT_FONT_FAMILY", "Cairo")
        self.RENDER_DEFAULT_WIDTH: int = _as_int(os.getenv("RENDER_DEFAULT_WIDTH"), 1200)
        self.RENDER_DEFAULT_HEIGHT: int = _as_int(os.getenv("RENDER_DEFAULT_HEIGHT"), 1600)
        self.RENDER_CACHE_CAPACITY: int = _as_int(os.getenv("RENDER_CACHE_CAPACITY"), 200)
        self.RENDER_CACHE_TTL_SECONDS: float = _as_float(os.getenv("RENDER_CACHE_TTL_SECONDS"), 12 * 3600)
        self.RENDER_CACHE_SWEEP_SECONDS: float = _as_float(os.getenv("RENDER_CACHE_SWEEP_SECONDS"), 30 * 60)
        self.RENDER_SECONDARY_PREVIEW: bool = _as_bool(os.getenv("RENDER_SECONDARY_PREVIEW"), True)
        self.IMAGE_FETCH_TIMEOUT: float = _as_float(os.getenv("IMAGE_FETCH_TIMEOUT"), 10.0)
        self.IMAGE_FETCH_MAX_BYTES: int = _as_int(os.getenv("IMAGE_FETCH_MAX_BYTES"), 25 * 1024 * 1024)
        self.RENDER_LOG_LEVEL: str = os.getenv("RENDER_LOG_LEVEL", "INFO")


settings = Settings()
