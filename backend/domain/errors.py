"""
Typed failures raised by the rendering engine.

Only InvalidDimensions, EncodeFailure and OutputWriteError ever reach a
caller; the rest are absorbed by the pipeline stage that owns the fallback.
"""
from typing import Optional


class RenderError(Exception):
    """Base class for all rendering errors."""

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail


class InvalidDimensions(RenderError):
    """Requested output width/height is not positive."""


class BackgroundUnavailable(RenderError):
    """Background bytes could not be obtained or decoded."""


class FieldRenderFailure(RenderError):
    """A single field failed to draw; the field is skipped."""

    def __init__(self, field_name: str, detail: str = ""):
        super().__init__(detail)
        self.field_name = field_name

    def __str__(self) -> str:
        return f"{self.field_name}: {self.detail}"


class EncodeFailure(RenderError):
    """Both the tier encode and the raw fallback encode failed."""


class OutputWriteError(RenderError):
    """The encoded output could not be persisted to storage."""


class CacheUnavailable(RenderError):
    """The result cache cannot serve requests (e.g. it was closed)."""


class ImageFetchError(RenderError):
    """An image source could not resolve a reference to bytes."""

    def __init__(self, reference: str, detail: str = "", status_code: Optional[int] = None):
        super().__init__(detail)
        self.reference = reference
        self.status_code = status_code


class FontLoadError(RenderError):
    """No usable font could be registered."""
