"""Tests for ww.weather.fetcher module."""

from io import BytesIO
from typing import Set
from unittest.mock import MagicMock

import pytest
import requests
from PIL import Image

from ww.model.models import REGIONS, WeatherLayers
from ww.model.tile import RADAR_LAYER, SATELLITE_LAYER, TileCoordinate
from ww.render.compositor import Compositor
from ww.render.tiles import WebMercatorProjection
from ww.weather.fetcher import TileFetcher, layer_from_config


def _png(color=(0, 128, 255, 200)) -> bytes:
    buf = BytesIO()
    Image.new("RGBA", (8, 8), color).save(buf, "png")
    return buf.getvalue()


PNG = _png()


def _tiles() -> Set[TileCoordinate]:
    """A 4x3 block of z6 tiles."""
    return {TileCoordinate(x=x, y=y, z=6) for x in range(12, 16) for y in range(22, 25)}


def _session(fail=lambda url: False) -> MagicMock:
    def get(url, timeout=None):
        if fail(url):
            return MagicMock(status_code=404, content=b"")
        return MagicMock(status_code=200, content=PNG)

    session = MagicMock(spec=requests.Session)
    session.get.side_effect = get
    return session


class TestTileLayerConfig:
    """Test tile URL generation."""

    def test_radar_url(self) -> None:
        url = RADAR_LAYER.url("/v2/radar/1700000000", TileCoordinate(x=14, y=24, z=6))
        assert url == "https://tilecache.rainviewer.com/v2/radar/1700000000/512/6/14/24/2/1_1.png"

    def test_satellite_url(self) -> None:
        url = SATELLITE_LAYER.url("/v2/satellite/abc123", TileCoordinate(x=14, y=24, z=6))
        assert url == "https://tilecache.rainviewer.com/v2/satellite/abc123/512/6/14/24/0/0_0.png"

    def test_path_without_leading_slash(self) -> None:
        url = RADAR_LAYER.url("v2/radar/1", TileCoordinate(x=0, y=0, z=0))
        assert url == "https://tilecache.rainviewer.com/v2/radar/1/512/0/0/0/2/1_1.png"

    def test_radar_is_more_opaque_than_satellite(self) -> None:
        for blackout in (False, True):
            assert RADAR_LAYER.opacity_for(blackout) > SATELLITE_LAYER.opacity_for(blackout)

    def test_layer_from_config_overrides(self) -> None:
        config = MagicMock(side_effect=lambda key, default=None: {"weather.radar": {"opacity": 0.9}}.get(key, default))

        layer = layer_from_config(config, RADAR_LAYER)

        assert layer.opacity == 0.9
        assert layer.variant == RADAR_LAYER.variant

    def test_layer_from_config_without_overrides(self) -> None:
        assert layer_from_config(None, SATELLITE_LAYER) is SATELLITE_LAYER


class TestTileFetcher:
    """Test concurrent retrieval with a mocked session."""

    def test_fetch_radar_only(self) -> None:
        session = _session()
        fetcher = TileFetcher(session=session)

        result = fetcher.fetch_tiles(_tiles(), WeatherLayers(radar_path="/v2/radar/1"))

        assert len(result.radar) == 12
        assert result.satellite == []
        assert session.get.call_count == 12
        assert all(isinstance(t.image, Image.Image) for t in result.radar)

    def test_fetch_both_layers(self) -> None:
        session = _session()
        fetcher = TileFetcher(session=session)

        result = fetcher.fetch_tiles(_tiles(), WeatherLayers(radar_path="/r", satellite_path="/s"))

        assert len(result.radar) == 12
        assert len(result.satellite) == 12
        urls = [c.args[0] for c in session.get.call_args_list]
        assert sum("/r/512/" in u for u in urls) == 12
        assert sum("/s/512/" in u for u in urls) == 12

    def test_failed_tiles_are_dropped(self) -> None:
        """10 of 12 radar tiles fail; the 2 survivors are returned."""
        survivors = {"/512/6/12/22/", "/512/6/15/24/"}
        session = _session(fail=lambda url: not any(s in url for s in survivors))
        fetcher = TileFetcher(session=session)

        result = fetcher.fetch_tiles(_tiles(), WeatherLayers(radar_path="/v2/radar/1"))

        assert [str(t.tile) for t in result.radar] == ["6/12/22", "6/15/24"]
        assert session.get.call_count == 12

        size = (320, 180)
        region = REGIONS[0].viewport(size)
        canvas = Image.new("RGBA", size, (0, 0, 0, 255))
        drawn = Compositor()._draw_layer(canvas, result.radar, WebMercatorProjection(region, size), 0.7)
        assert drawn == 2

    def test_all_tiles_fail(self) -> None:
        fetcher = TileFetcher(session=_session(fail=lambda url: True))

        result = fetcher.fetch_tiles(_tiles(), WeatherLayers(radar_path="/r", satellite_path="/s"))

        assert result.radar == []
        assert result.satellite == []

    def test_transport_errors_are_dropped(self) -> None:
        session = MagicMock(spec=requests.Session)
        session.get.side_effect = requests.Timeout("slow")

        result = TileFetcher(session=session).fetch_tiles(_tiles(), WeatherLayers(radar_path="/r"))

        assert result.radar == []

    def test_undecodable_payload_is_dropped(self) -> None:
        session = MagicMock(spec=requests.Session)
        session.get.return_value = MagicMock(status_code=200, content=b"<html>rate limited</html>")

        result = TileFetcher(session=session).fetch_tiles(_tiles(), WeatherLayers(radar_path="/r"))

        assert result.radar == []

    def test_no_layers_makes_no_requests(self) -> None:
        session = _session()

        result = TileFetcher(session=session).fetch_tiles(_tiles(), WeatherLayers())

        assert result.radar == [] and result.satellite == []
        session.get.assert_not_called()

    def test_results_are_ordered(self) -> None:
        result = TileFetcher(session=_session()).fetch_tiles(_tiles(), WeatherLayers(radar_path="/r"))

        keys = [(t.tile.z, t.tile.y, t.tile.x) for t in result.radar]
        assert keys == sorted(keys)

    @pytest.mark.parametrize("max_workers", [1, 4])
    def test_pool_size_from_config(self, max_workers: int) -> None:
        config = MagicMock(side_effect=lambda key, default=None: {"fetcher.max_workers": max_workers}.get(key, default))
        fetcher = TileFetcher(config=config, session=_session())

        result = fetcher.fetch_tiles(_tiles(), WeatherLayers(radar_path="/r"))

        assert fetcher.max_workers == max_workers
        assert len(result.radar) == 12
