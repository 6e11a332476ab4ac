from io import BytesIO

import pytest
from PIL import Image, ImageDraw

import services.card_renderer as cr
from conftest import png_bytes
from domain.errors import InvalidDimensions, OutputWriteError
from domain.models import (
    ImageField,
    ImageStyle,
    OutputContainer,
    Position,
    QualityTier,
    RenderRequest,
    TextField,
    TextStyle,
)
from services.card_renderer import CardRenderer
from services.field_renderer import FieldRenderer
from services.payloads import parse_fields
from services.render_cache import RenderCache
from storage.file_storage import FileStorage


def _decode(data):
    img = Image.open(BytesIO(data))
    img.load()
    return img


def _dark_bbox(img, threshold=100):
    return img.convert("L").point(lambda v: 255 if v < threshold else 0).getbbox()


@pytest.fixture
def cache():
    c = RenderCache(capacity=20, ttl_seconds=3600, sweep_interval_seconds=0)
    yield c
    c.close()


def _title_request(background, **overrides):
    params = dict(
        background=background,
        fields=[TextField(name="title", id="1", position=Position(50, 50), depth=1, style=TextStyle(font_size=24))],
        values={"title": "Hello"},
        width=1000,
        height=1400,
        quality=QualityTier.MEDIUM,
    )
    params.update(overrides)
    return RenderRequest(**params)


def test_medium_scenario_centers_text(fonts, storage, white_background):
    output = CardRenderer(fonts, storage=storage, secondary_preview=False).render(_title_request(white_background))
    assert output.container == OutputContainer.JPEG
    assert output.quality == QualityTier.MEDIUM
    assert output.path.exists()
    assert output.path.read_bytes() == output.data
    img = _decode(output.data)
    assert img.size == (1000, 1400)
    left, top, right, bottom = _dark_bbox(img)
    assert abs((left + right) / 2 - 500) <= 3


def test_preview_forces_fixed_width(fonts, storage, white_background):
    request = _title_request(white_background, width=1200, height=1600, quality=QualityTier.PREVIEW)
    output = CardRenderer(fonts, storage=storage).render(request)
    assert (output.width, output.height) == (800, 1067)
    img = _decode(output.data)
    assert img.format == "WEBP"
    assert img.size == (800, 1067)


def test_image_field_scenario_fits_quarter_box(fonts, storage):
    background = png_bytes((1000, 1000), (255, 255, 255, 255))
    request = RenderRequest(
        background=background,
        fields=[ImageField(name="photo", style=ImageStyle(max_width_pct=25, max_height_pct=25))],
        values={"photo": png_bytes((400, 300), (0, 0, 0, 255))},
        width=1000,
        height=1000,
        quality=QualityTier.HIGH,
    )
    output = CardRenderer(fonts, storage=storage, secondary_preview=False).render(request)
    left, top, right, bottom = _dark_bbox(_decode(output.data))
    width, height = right - left, bottom - top
    assert width <= 250 and height <= 250
    assert abs(width - 250) <= 2
    assert abs(width / height - 4 / 3) < 0.03


def test_identical_requests_render_identical_bytes(fonts, tmp_path, white_background):
    first = CardRenderer(fonts, storage=FileStorage(tmp_path / "a"), secondary_preview=False)
    second = CardRenderer(fonts, storage=FileStorage(tmp_path / "b"), secondary_preview=False)
    for tier in (QualityTier.MEDIUM, QualityTier.HIGH):
        request = _title_request(white_background, quality=tier)
        assert first.render(request).data == second.render(request).data


def test_cache_hit_skips_rendering(fonts, storage, cache, white_background, monkeypatch):
    calls = []
    real_render = FieldRenderer.render

    def spy(self, canvas, resolved):
        calls.append(resolved.field_name)
        return real_render(self, canvas, resolved)

    monkeypatch.setattr(FieldRenderer, "render", spy)
    renderer = CardRenderer(fonts, cache=cache, storage=storage)
    first = renderer.render(_title_request(white_background))
    assert calls == ["title"]

    def no_encode(*args, **kwargs):
        raise AssertionError("encode must not run on a cache hit")

    monkeypatch.setattr(cr, "encode_with_preview", no_encode)
    second = renderer.render(_title_request(white_background))
    assert calls == ["title"]
    assert second.from_cache is True
    assert second.data == first.data
    assert second.path == first.path
    assert second.fingerprint == first.fingerprint


def test_secondary_preview_warms_preview_entry(fonts, storage, cache, white_background):
    renderer = CardRenderer(fonts, cache=cache, storage=storage, secondary_preview=True)
    renderer.render(_title_request(white_background, quality=QualityTier.HIGH))
    preview = renderer.render(_title_request(white_background, quality=QualityTier.PREVIEW))
    assert preview.from_cache is True
    assert (preview.width, preview.height) == (800, 1120)
    assert preview.path.exists()


def test_closed_cache_is_treated_as_miss(fonts, storage, white_background):
    cache = RenderCache(capacity=5, ttl_seconds=60, sweep_interval_seconds=0)
    cache.close()
    output = CardRenderer(fonts, cache=cache, storage=storage).render(_title_request(white_background))
    assert output.from_cache is False
    assert _decode(output.data).size == (1000, 1400)


def test_missing_background_falls_back_to_blank_canvas(fonts, storage, tmp_path):
    request = _title_request(str(tmp_path / "missing.png"), quality=QualityTier.HIGH)
    output = CardRenderer(fonts, storage=storage, secondary_preview=False).render(request)
    img = _decode(output.data).convert("RGB")
    assert img.size == (1000, 1400)
    assert img.getpixel((5, 5)) == (255, 255, 255)
    # the marker text is a light grey
    grey = [p for p in img.crop((300, 650, 700, 750)).getdata() if p != (255, 255, 255)]
    assert grey


@pytest.mark.parametrize("width,height", [(0, 1400), (1000, -1)])
def test_invalid_dimensions_are_fatal(fonts, storage, white_background, width, height):
    with pytest.raises(InvalidDimensions):
        CardRenderer(fonts, storage=storage).render(_title_request(white_background, width=width, height=height))
    assert list(storage.get_generated_dir().iterdir()) == []


def test_design_fields_override_replaces_template_fields(fonts, storage, white_background):
    values = {
        "title": "Hello",
        "_designFields": [
            {"id": 9, "name": "stamp", "type": "image", "isStatic": True,
             "staticContent": "data:image/png;base64,", "position": {"x": 10, "y": 10}},
        ],
    }
    renderer = CardRenderer(fonts, storage=storage, secondary_preview=False)
    request = _title_request(white_background, values=values, quality=QualityTier.HIGH)
    fields = renderer.effective_fields(request)
    assert [f.name for f in fields] == ["stamp"]
    output = renderer.render(request)
    # the template's title field is not drawn and the broken stamp is reported
    assert _dark_bbox(_decode(output.data)) is None
    assert [d.field_name for d in output.diagnostics] == ["stamp"]


def test_download_trims_padding_and_rebases_fields(fonts, storage):
    template = Image.new("RGBA", (600, 400), (0, 0, 0, 0))
    ImageDraw.Draw(template).rectangle((100, 100, 299, 199), fill=(30, 60, 200, 255))
    buf = BytesIO()
    template.save(buf, format="PNG")

    marker = ImageField(name="dot", position=Position(100 * 200 / 600, 150 * 100 / 400))
    request = RenderRequest(
        background=buf.getvalue(),
        fields=[marker],
        values={"dot": png_bytes((10, 10), (255, 0, 0, 255))},
        quality=QualityTier.DOWNLOAD,
    )
    output = CardRenderer(fonts, storage=storage).render(request)
    img = _decode(output.data).convert("RGB")
    assert output.container == OutputContainer.PNG
    assert img.size == (200 + 10, 100 + 10)
    # template point (200, 150) lands at (200 - 95, 150 - 95) in the trimmed output
    assert img.getpixel((105, 55)) == (255, 0, 0)


def test_render_certificate_uses_print_preset(fonts, storage, monkeypatch):
    monkeypatch.setattr(cr, "CERTIFICATE_SIZE", (496, 702))
    background = png_bytes((248, 351), (250, 240, 220, 255))
    output = CardRenderer(fonts, storage=storage, secondary_preview=False).render_certificate(
        background, [TextField(name="name")], {"name": "Ada Lovelace"}
    )
    assert output.quality == QualityTier.HIGH
    assert output.container == OutputContainer.PNG
    assert _decode(output.data).size == (496, 702)


def test_non_finite_style_value_does_not_abort_the_render(fonts, storage, white_background):
    fields = parse_fields([
        {"name": "bad", "position": {"x": 50, "y": 20}, "style": {"maxWidth": "Infinity"}},
        {"name": "title", "position": {"x": 50, "y": 70}},
    ])
    request = RenderRequest(
        background=white_background,
        fields=fields,
        values={"bad": "Broken", "title": "Hello"},
        width=1000,
        height=1400,
        quality=QualityTier.HIGH,
    )
    output = CardRenderer(fonts, storage=storage, secondary_preview=False).render(request)
    assert output.diagnostics == ()
    img = _decode(output.data)
    assert _dark_bbox(img.crop((0, 0, 1000, 700))) is not None
    assert _dark_bbox(img.crop((0, 700, 1000, 1400))) is not None


def test_plain_string_quality_and_container(fonts, storage, cache, white_background):
    renderer = CardRenderer(fonts, cache=cache, storage=storage, secondary_preview=False)
    first = renderer.render(_title_request(white_background, quality="high", container="png"))
    assert first.container is OutputContainer.PNG
    assert first.path.suffix == ".png"
    second = renderer.render(_title_request(white_background, quality=QualityTier.HIGH, container=OutputContainer.PNG))
    assert second.from_cache is True
    assert second.fingerprint == first.fingerprint


def test_storage_write_failure_raises_typed_error(fonts, storage, cache, white_background, monkeypatch):
    def disk_full(filename, data):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(storage, "write_atomic", disk_full)
    renderer = CardRenderer(fonts, cache=cache, storage=storage, secondary_preview=False)
    with pytest.raises(OutputWriteError):
        renderer.render(_title_request(white_background))
    assert len(cache) == 0


def test_warmed_preview_matches_cold_preview_geometry(fonts, tmp_path, white_background):
    warm_cache = RenderCache(capacity=20, ttl_seconds=3600, sweep_interval_seconds=0)
    cold_cache = RenderCache(capacity=20, ttl_seconds=3600, sweep_interval_seconds=0)
    try:
        warm = CardRenderer(fonts, cache=warm_cache, storage=FileStorage(tmp_path / "warm"), secondary_preview=True)
        warm.render(_title_request(white_background, quality=QualityTier.HIGH))
        warmed = warm.render(_title_request(white_background, quality=QualityTier.PREVIEW))

        cold = CardRenderer(fonts, cache=cold_cache, storage=FileStorage(tmp_path / "cold"), secondary_preview=True)
        direct = cold.render(_title_request(white_background, quality=QualityTier.PREVIEW))
    finally:
        warm_cache.close()
        cold_cache.close()

    assert warmed.from_cache is True and direct.from_cache is False
    assert warmed.fingerprint == direct.fingerprint
    assert warmed.container == direct.container
    assert _decode(warmed.data).size == _decode(direct.data).size == (800, 1120)
