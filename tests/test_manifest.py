"""Tests for ww.weather.manifest module."""

from unittest.mock import MagicMock

import orjson
import pytest
import requests

from ww.model.errors import ManifestFetchError, ManifestParseError
from ww.model.models import WeatherLayers
from ww.weather.manifest import (
    DEFAULT_MANIFEST_URL,
    WeatherLayerResolver,
    fetch_manifest,
    parse_manifest,
    resolve_layers,
)


def _manifest(**kwargs) -> bytes:
    return orjson.dumps(kwargs)


RADAR = {"past": [{"path": "/v2/radar/100", "time": 100}, {"path": "/v2/radar/200", "time": 200}]}
SATELLITE = {"infrared": [{"path": "/v2/satellite/a", "time": 100}, {"path": "/v2/satellite/b", "time": 200}]}


class TestResolveLayers:
    """Test manifest bytes -> newest layer paths."""

    def test_latest_frames(self) -> None:
        layers = resolve_layers(_manifest(radar=RADAR, satellite=SATELLITE))

        assert layers.radar_path == "/v2/radar/200"
        assert layers.satellite_path == "/v2/satellite/b"

    def test_latest_is_by_time_not_position(self) -> None:
        radar = {"past": [{"path": "/v2/radar/300", "time": 300}, {"path": "/v2/radar/200", "time": 200}]}

        assert resolve_layers(_manifest(radar=radar)).radar_path == "/v2/radar/300"

    def test_equal_times_pick_the_later_entry(self) -> None:
        radar = {"past": [{"path": "/first", "time": 5}, {"path": "/second", "time": 5}]}

        assert resolve_layers(_manifest(radar=radar)).radar_path == "/second"

    def test_missing_satellite(self) -> None:
        layers = resolve_layers(_manifest(radar=RADAR))

        assert layers.radar_path == "/v2/radar/200"
        assert layers.satellite_path is None

    @pytest.mark.parametrize("satellite", [{}, [], None, {"infrared": []}, {"infrared": None}])
    def test_empty_satellite(self, satellite) -> None:
        layers = resolve_layers(_manifest(radar=RADAR, satellite=satellite))

        assert layers.radar_path == "/v2/radar/200"
        assert layers.satellite_path is None

    def test_empty_radar(self) -> None:
        layers = resolve_layers(_manifest(radar={"past": []}, satellite=SATELLITE))

        assert layers.radar_path is None
        assert layers.satellite_path == "/v2/satellite/b"

    @pytest.mark.parametrize("payload", [b"", b"not json", b"[1, 2, 3]", b'{"radar": {"past": "oops"}}'])
    def test_malformed_manifest_gives_empty_layers(self, payload: bytes) -> None:
        assert resolve_layers(payload) == WeatherLayers()

    def test_parse_manifest_raises_on_garbage(self) -> None:
        with pytest.raises(ManifestParseError):
            parse_manifest(b"{")

    def test_extra_fields_are_ignored(self) -> None:
        payload = _manifest(version="2.0", generated=1, host="https://tilecache.rainviewer.com", radar=RADAR)

        assert resolve_layers(payload).radar_path == "/v2/radar/200"


class TestWeatherLayerResolver:
    """Test manifest retrieval with a mocked session."""

    def _session(self, status: int = 200, content: bytes = b"") -> MagicMock:
        session = MagicMock(spec=requests.Session)
        session.get.return_value = MagicMock(status_code=status, content=content)
        return session

    def test_resolve(self) -> None:
        session = self._session(content=_manifest(radar=RADAR, satellite=SATELLITE))
        resolver = WeatherLayerResolver(session=session)

        layers = resolver.resolve()

        assert layers == WeatherLayers(radar_path="/v2/radar/200", satellite_path="/v2/satellite/b")
        session.get.assert_called_once_with(DEFAULT_MANIFEST_URL, timeout=15.0)

    def test_config_overrides_url(self) -> None:
        config = MagicMock(side_effect=lambda key, default=None: {
            "weather.manifest_url": "http://localhost/maps.json",
            "weather.timeout": 3,
        }.get(key, default))
        session = self._session(content=_manifest(radar=RADAR))

        WeatherLayerResolver(config=config, session=session).resolve()

        session.get.assert_called_once_with("http://localhost/maps.json", timeout=3.0)

    def test_http_error_degrades(self) -> None:
        resolver = WeatherLayerResolver(session=self._session(status=503))

        assert resolver.resolve() == WeatherLayers()

    def test_transport_error_degrades(self) -> None:
        session = MagicMock(spec=requests.Session)
        session.get.side_effect = requests.ConnectionError("offline")

        assert WeatherLayerResolver(session=session).resolve() == WeatherLayers()

    def test_fetch_manifest_raises(self) -> None:
        with pytest.raises(ManifestFetchError):
            fetch_manifest(self._session(status=404), DEFAULT_MANIFEST_URL, 1.0)
