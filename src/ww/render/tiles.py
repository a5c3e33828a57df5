"""Web-Mercator tile math: viewport -> tile grid, tile -> pixel rectangle.

Pure functions, no state and no I/O.
"""

import math
from typing import Callable, Optional, Set, Tuple

from ww.model.errors import InvalidRegionError
from ww.model.models import GeoRegion, PixelRect
from ww.model.tile import TileCoordinate

# (lat, lon) -> (x, y) in base-image pixels
Projection = Callable[[float, float], Tuple[float, float]]

# Latitude span threshold (degrees) -> zoom. Tuned for visual density of 512px tiles.
ZOOM_THRESHOLDS: Tuple[Tuple[float, int], ...] = (
    (30.0, 5),
    (15.0, 6),
    (8.0, 7),
    (4.0, 8),
)
MAX_ZOOM = 9
DEFAULT_MIN_ZOOM = 4

# Fraction added to each half-span so projection rounding never leaves an uncovered edge
BUFFER = 0.05

MAX_MERCATOR_LAT = 85.0511287798


def zoom_for_span(lat_span: float, min_zoom: int = DEFAULT_MIN_ZOOM) -> int:
    """
    Zoom level for a latitude span; wider spans give lower zoom.

    Args:
        lat_span: Latitude span in degrees
        min_zoom: Floor for the result

    Returns:
        Zoom level in [max(min_zoom, 5), max(min_zoom, 9)]
    """
    zoom = MAX_ZOOM
    for threshold, z in ZOOM_THRESHOLDS:
        if lat_span >= threshold:
            zoom = z
            break
    return max(zoom, min_zoom)


def lat_lon_to_tile(lat: float, lon: float, zoom: int) -> Tuple[int, int]:
    """Tile indices containing (lat, lon), clamped into the zoom's grid."""
    n = 2 ** zoom
    lat = max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, lat))
    x = math.floor((lon + 180.0) / 360.0 * n)
    lat_rad = math.radians(lat)
    y = math.floor((1.0 - math.asinh(math.tan(lat_rad)) / math.pi) / 2.0 * n)
    return min(max(x, 0), n - 1), min(max(y, 0), n - 1)


def tile_bounds(tile: TileCoordinate) -> Tuple[float, float, float, float]:
    """
    Geographic bounds of a tile.

    Returns:
        (west, south, east, north) in degrees
    """
    n = 2.0 ** tile.z
    west = tile.x / n * 360.0 - 180.0
    east = (tile.x + 1) / n * 360.0 - 180.0
    north = math.degrees(math.atan(math.sinh(math.pi * (1 - 2 * tile.y / n))))
    south = math.degrees(math.atan(math.sinh(math.pi * (1 - 2 * (tile.y + 1) / n))))
    return west, south, east, north


def _check_finite(region: GeoRegion) -> None:
    values = (region.lat, region.lon, region.lat_span, region.lon_span)
    if not all(math.isfinite(v) for v in values):
        raise InvalidRegionError(f"Region has non-finite coordinates: {region}")


def tile_range_for_region(
    region: GeoRegion,
    pixel_size: Optional[Tuple[int, int]] = None,
    min_zoom: int = DEFAULT_MIN_ZOOM,
) -> Set[TileCoordinate]:
    """
    Tiles covering the region expanded by BUFFER on each side.

    Args:
        region: Viewport to cover
        pixel_size: (width, height) of the image the tiles will be drawn on
        min_zoom: Zoom floor

    Returns:
        Non-empty set of tiles forming a full rectangle of indices

    Raises:
        InvalidRegionError: Non-finite coordinates or a non-positive pixel size
    """
    _check_finite(region)
    if pixel_size is not None and (pixel_size[0] <= 0 or pixel_size[1] <= 0):
        raise InvalidRegionError(f"Invalid pixel size {pixel_size}")

    z = zoom_for_span(abs(region.lat_span), min_zoom=min_zoom)

    half_lat = abs(region.lat_span) / 2 * (1 + BUFFER)
    half_lon = abs(region.lon_span) / 2 * (1 + BUFFER)
    min_lat = region.lat - half_lat
    max_lat = region.lat + half_lat
    min_lon = max(-180.0, region.lon - half_lon)
    max_lon = min(180.0, region.lon + half_lon)

    # NW corner gives the smallest indices, SE corner the largest
    min_x, min_y = lat_lon_to_tile(max_lat, min_lon, z)
    max_x, max_y = lat_lon_to_tile(min_lat, max_lon, z)

    return {
        TileCoordinate(x=x, y=y, z=z)
        for x in range(min_x, max_x + 1)
        for y in range(min_y, max_y + 1)
    }


def tile_to_pixel_rect(tile: TileCoordinate, projection: Projection) -> PixelRect:
    """
    Pixel rectangle a tile occupies in the base image.

    Projects the north-west and south-east corners; the result may be
    degenerate (zero or negative area), which callers treat as "draw nothing".
    """
    west, south, east, north = tile_bounds(tile)
    left, top = projection(north, west)
    right, bottom = projection(south, east)
    return PixelRect(left=left, top=top, width=right - left, height=bottom - top)


class WebMercatorProjection:
    """
    Geographic <-> pixel mapping for an image showing `region` in Web-Mercator.

    The longitude span fixes the scale; the image is centered on the region
    center. Pixel y grows downward (row 0 is the north edge).
    """

    def __init__(self, region: GeoRegion, size: Tuple[int, int]):
        _check_finite(region)
        if region.lon_span <= 0:
            raise InvalidRegionError(f"Region needs a positive longitude span: {region}")
        self.region = region
        self.width, self.height = size
        # World width in pixels at the (fractional) zoom that fits lon_span into width
        self.world_size = self.width * 360.0 / region.lon_span
        self._cx = self._lon_to_unit(region.lon) * self.world_size
        self._cy = self._lat_to_unit(region.lat) * self.world_size

    @staticmethod
    def _lon_to_unit(lon: float) -> float:
        return (lon + 180.0) / 360.0

    @staticmethod
    def _lat_to_unit(lat: float) -> float:
        lat = max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, lat))
        return (1.0 - math.asinh(math.tan(math.radians(lat))) / math.pi) / 2.0

    @property
    def zoom(self) -> float:
        """Fractional zoom for 256px tiles."""
        return math.log2(self.world_size / 256.0)

    def origin(self) -> Tuple[float, float]:
        """World pixel coordinates of the image's top-left corner."""
        return self._cx - self.width / 2.0, self._cy - self.height / 2.0

    def point(self, lat: float, lon: float) -> Tuple[float, float]:
        x0, y0 = self.origin()
        return (
            self._lon_to_unit(lon) * self.world_size - x0,
            self._lat_to_unit(lat) * self.world_size - y0,
        )

    __call__ = point

    def coordinate(self, x: float, y: float) -> Tuple[float, float]:
        """Inverse of point(): pixel -> (lat, lon)."""
        x0, y0 = self.origin()
        ux = (x + x0) / self.world_size
        uy = (y + y0) / self.world_size
        lon = ux * 360.0 - 180.0
        lat = math.degrees(math.atan(math.sinh(math.pi * (1 - 2 * uy))))
        return lat, lon
