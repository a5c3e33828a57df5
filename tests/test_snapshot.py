"""Tests for ww.render.snapshot module."""

from io import BytesIO
from unittest.mock import MagicMock

import pytest
import requests
from PIL import Image

from ww.model.errors import SnapshotRenderError
from ww.model.models import REGIONS, MapStyle
from ww.render.snapshot import BASEMAP_URLS, BasemapSnapshotRenderer
from ww.render.tiles import WebMercatorProjection

SIZE = (320, 180)


def _png(color=(200, 100, 50)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", (256, 256), color).save(buf, "png")
    return buf.getvalue()


def _session(status: int = 200) -> MagicMock:
    session = MagicMock(spec=requests.Session)
    session.get.return_value = MagicMock(status_code=status, content=_png() if status == 200 else b"")
    return session


class TestBasemapSnapshotRenderer:
    """Test base map stitching with a mocked session."""

    def test_render_size_and_projection(self) -> None:
        region = REGIONS[0].viewport(SIZE)
        renderer = BasemapSnapshotRenderer(session=_session())

        snapshot = renderer.render(region, MapStyle.DARK, SIZE)

        assert snapshot.size == SIZE
        assert isinstance(snapshot.projection, WebMercatorProjection)
        x, y = snapshot.projection(region.lat, region.lon)
        assert (x, y) == pytest.approx((SIZE[0] / 2, SIZE[1] / 2))

    def test_tiles_fill_the_canvas(self) -> None:
        snapshot = BasemapSnapshotRenderer(session=_session()).render(
            REGIONS[0].viewport(SIZE), MapStyle.LIGHT, SIZE
        )

        r, g, b, _ = snapshot.image.getpixel((SIZE[0] // 2, SIZE[1] // 2))
        assert (r, g, b) == pytest.approx((200, 100, 50), abs=2)

    def test_style_selects_url_template(self) -> None:
        session = _session()

        BasemapSnapshotRenderer(session=session).render(REGIONS[0].viewport(SIZE), MapStyle.SATELLITE, SIZE)

        urls = [c.args[0] for c in session.get.call_args_list]
        prefix = BASEMAP_URLS[MapStyle.SATELLITE].split("{")[0]
        assert urls and all(u.startswith(prefix) for u in urls)

    def test_config_overrides_template(self) -> None:
        config = MagicMock(side_effect=lambda key, default=None: {
            "basemap.dark": "http://tiles.local/{z}/{x}/{y}.png",
        }.get(key, default))
        session = _session()

        BasemapSnapshotRenderer(config=config, session=session).render(REGIONS[0].viewport(SIZE), MapStyle.DARK, SIZE)

        assert all(c.args[0].startswith("http://tiles.local/") for c in session.get.call_args_list)

    def test_all_tiles_failing_raises(self) -> None:
        with pytest.raises(SnapshotRenderError):
            BasemapSnapshotRenderer(session=_session(status=500)).render(
                REGIONS[0].viewport(SIZE), MapStyle.DARK, SIZE
            )

    def test_invalid_size_raises(self) -> None:
        with pytest.raises(SnapshotRenderError):
            BasemapSnapshotRenderer(session=_session()).render(REGIONS[0].viewport(SIZE), MapStyle.DARK, (0, 100))
