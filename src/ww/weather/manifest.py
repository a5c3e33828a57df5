"""Weather manifest: find the newest radar and satellite frame paths."""

from typing import List, Optional

import orjson
import requests
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from ww.model.errors import ManifestFetchError, ManifestParseError
from ww.model.models import WeatherLayers
from ww.utils.utils import ConfigLookup, build_session, config_value

DEFAULT_MANIFEST_URL = "https://api.rainviewer.com/public/weather-maps.json"


class Frame(BaseModel):
    path: str
    time: int = 0


class RadarFrames(BaseModel):
    past: List[Frame] = Field(default_factory=list)


class SatelliteFrames(BaseModel):
    infrared: Optional[List[Frame]] = None


class Manifest(BaseModel):
    """
    Subset of the manifest we use:
      { radar: { past: [{path, time}] }, satellite?: { infrared?: [{path, time}] } }
    """
    radar: Optional[RadarFrames] = None
    satellite: Optional[SatelliteFrames] = None

    @field_validator("radar", "satellite", mode="before")
    @classmethod
    def _empty_as_missing(cls, value):
        # Providers send {}, [] or null when a product is unavailable
        return value or None


def _latest(frames: Optional[List[Frame]]) -> Optional[str]:
    if not frames:
        return None
    # Ties resolve to the later list entry
    latest = frames[0]
    for frame in frames[1:]:
        if frame.time >= latest.time:
            latest = frame
    return latest.path


def parse_manifest(manifest_bytes: bytes) -> Manifest:
    """
    Raises:
        ManifestParseError: Bytes are not JSON or do not match the schema
    """
    try:
        data = orjson.loads(manifest_bytes)
    except orjson.JSONDecodeError as e:
        raise ManifestParseError(f"Manifest is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ManifestParseError(f"Manifest root is {type(data).__name__}, expected object")
    try:
        return Manifest.model_validate(data)
    except ValidationError as e:
        raise ManifestParseError(f"Manifest schema mismatch: {e.error_count()} error(s)") from e


def resolve_layers(manifest_bytes: bytes) -> WeatherLayers:
    """
    Newest radar and infrared satellite paths from a manifest.

    Missing or empty frame lists give an absent layer. A malformed manifest is
    logged and yields empty layers so the base map still renders.
    """
    try:
        manifest = parse_manifest(manifest_bytes)
    except ManifestParseError as e:
        logger.warning(f"Failed to decode weather manifest: {e}")
        logger.debug(f"Raw manifest (first 500 bytes): {manifest_bytes[:500]!r}")
        return WeatherLayers()

    radar_frames = manifest.radar.past if manifest.radar else None
    infrared = manifest.satellite.infrared if manifest.satellite else None

    layers = WeatherLayers(radar_path=_latest(radar_frames), satellite_path=_latest(infrared))
    logger.debug(
        f"Manifest: {len(radar_frames or [])} radar frames, {len(infrared or [])} infrared frames"
    )
    if manifest.satellite is None:
        logger.debug("No satellite data in manifest")
    return layers


def fetch_manifest(session: requests.Session, url: str, timeout: float) -> bytes:
    """
    Raises:
        ManifestFetchError: Transport failure or non-200 status
    """
    try:
        r = session.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise ManifestFetchError(f"{url}: {e}") from e
    if r.status_code != 200:
        raise ManifestFetchError(f"{url}: HTTP {r.status_code}")
    return r.content


class WeatherLayerResolver:
    """Fetches the manifest and resolves it; failures degrade to no weather layers."""

    def __init__(self, config: Optional[ConfigLookup] = None, session: Optional[requests.Session] = None):
        self.url = str(config_value(config, "weather.manifest_url", DEFAULT_MANIFEST_URL))
        self.timeout = float(config_value(config, "weather.timeout", 15.0))
        self.session = session or build_session()

    def resolve(self) -> WeatherLayers:
        try:
            manifest_bytes = fetch_manifest(self.session, self.url, self.timeout)
        except ManifestFetchError as e:
            logger.warning(f"Failed to fetch weather manifest: {e}")
            return WeatherLayers()

        layers = resolve_layers(manifest_bytes)
        if layers.radar_path:
            logger.info(f"Radar path: {layers.radar_path}")
        if layers.satellite_path:
            logger.info(f"Satellite path: {layers.satellite_path}")
        return layers
