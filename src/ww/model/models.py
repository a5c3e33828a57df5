from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field


class MapStyle(str, Enum):
    SATELLITE = "satellite"
    DARK = "dark"
    LIGHT = "light"
    BLACKOUT = "blackout"


class GeoRegion(BaseModel):
    """
    Geographic viewport: center plus angular spans in degrees.

    The longitude span usually differs from the latitude span so that the
    region matches the display's aspect ratio.
    """
    model_config = {"frozen": True}

    lat: float
    lon: float
    lat_span: float
    lon_span: float


class RegionPreset(BaseModel):
    """Named catalog entry. `span` is the latitude span in degrees."""
    model_config = {"frozen": True}

    name: str
    lat: float
    lon: float
    span: float

    def viewport(self, size: Tuple[int, int]) -> GeoRegion:
        """Region for a display of `size` (width, height) pixels."""
        width, height = size
        aspect = width / height if height > 0 else 1.0
        return GeoRegion(lat=self.lat, lon=self.lon, lat_span=self.span, lon_span=self.span * aspect)


REGIONS: List[RegionPreset] = [
    RegionPreset(name="Continental US", lat=39.0, lon=-98.0, span=20.0),
    RegionPreset(name="North America", lat=45.0, lon=-100.0, span=45.0),
    RegionPreset(name="Pacific Northwest", lat=46.0, lon=-121.0, span=8.0),
    RegionPreset(name="Northeast US", lat=42.0, lon=-74.0, span=8.0),
    RegionPreset(name="Southeast US", lat=32.0, lon=-84.0, span=10.0),
    RegionPreset(name="Texas", lat=31.0, lon=-99.5, span=10.0),
    RegionPreset(name="Europe", lat=50.0, lon=10.0, span=25.0),
    RegionPreset(name="United Kingdom", lat=54.5, lon=-3.0, span=10.0),
    RegionPreset(name="East Asia", lat=34.0, lon=125.0, span=25.0),
    RegionPreset(name="Australia", lat=-27.0, lon=134.0, span=35.0),
]


def region_preset(index: int) -> RegionPreset:
    """Preset at `index`; out-of-range indices fall back to the first entry."""
    if 0 <= index < len(REGIONS):
        return REGIONS[index]
    return REGIONS[0]


def find_region(name_or_index: str) -> Optional[int]:
    """Resolve a CLI value (index or case-insensitive name) to a catalog index."""
    if name_or_index.isdigit():
        idx = int(name_or_index)
        return idx if 0 <= idx < len(REGIONS) else None
    for idx, preset in enumerate(REGIONS):
        if preset.name.lower() == name_or_index.strip().lower():
            return idx
    return None


class WeatherLayers(BaseModel):
    """Most recent provider path tokens; either may be absent."""
    model_config = {"frozen": True}

    radar_path: Optional[str] = None
    satellite_path: Optional[str] = None

    def masked(self, radar_enabled: bool, satellite_enabled: bool) -> "WeatherLayers":
        """Drop the layers the user has switched off."""
        return WeatherLayers(
            radar_path=self.radar_path if radar_enabled else None,
            satellite_path=self.satellite_path if satellite_enabled else None,
        )

    @property
    def has_layers(self) -> bool:
        return self.radar_path is not None or self.satellite_path is not None


class PixelRect(BaseModel):
    """Axis-aligned rectangle in image pixels, y grows downward."""
    model_config = {"frozen": True}

    left: float
    top: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    def is_degenerate(self) -> bool:
        return not (self.width > 0 and self.height > 0)


class Settings(BaseModel):
    """
    Flat user settings record consumed by the generation orchestrator.

    Frozen: a change produces a new value via `model_copy(update=...)`, so a
    cycle in flight keeps the snapshot it started with.
    """
    model_config = {"frozen": True}

    style: MapStyle = MapStyle.SATELLITE
    region_index: int = 0
    auto_refresh_enabled: bool = True
    refresh_interval_seconds: float = Field(default=600.0, gt=0)
    radar_layer_enabled: bool = True
    satellite_layer_enabled: bool = False

    @property
    def region(self) -> RegionPreset:
        return region_preset(self.region_index)


class ColorGrade(BaseModel):
    """Color-grade parameters applied to the base map under the blackout style."""
    model_config = {"frozen": True}

    brightness: float = -0.15  # additive, on [0, 1] channel values
    contrast: float = 1.3      # scale around mid-grey
    saturation: float = 0.6    # 0 = greyscale, 1 = unchanged
    exposure_ev: float = -0.5  # stops; multiplies by 2 ** ev


BLACKOUT_GRADE = ColorGrade()
