"""Base map snapshot: region + style in, image + pixel projection out.

`SnapshotRenderer` is the interface the orchestrator depends on.
`BasemapSnapshotRenderer` implements it by stitching public XYZ basemap tiles.
"""

import math
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, List, Optional, Protocol, Tuple

import requests
from PIL import Image
from loguru import logger
from pydantic import BaseModel

from ww.model.errors import SnapshotRenderError, TileFetchError
from ww.model.models import GeoRegion, MapStyle
from ww.render.tiles import Projection, WebMercatorProjection
from ww.utils.utils import ConfigLookup, build_session, config_value, download_image


class Snapshot(BaseModel):
    """Rendered base map and the projection that maps (lat, lon) into its pixels."""
    model_config = {"arbitrary_types_allowed": True}

    image: Any  # PIL.Image.Image
    projection: Projection

    @property
    def size(self) -> Tuple[int, int]:
        return self.image.size


class SnapshotRenderer(Protocol):
    def render(self, region: GeoRegion, style: MapStyle, size: Tuple[int, int]) -> Snapshot:
        """Raises SnapshotRenderError on failure."""
        ...


BASEMAP_URLS: Dict[MapStyle, str] = {
    MapStyle.SATELLITE: "https://server.arcgisonline.com/ArcGIS/rest/services/World_Imagery/MapServer/tile/{z}/{y}/{x}",
    MapStyle.DARK: "https://a.basemaps.cartocdn.com/dark_all/{z}/{x}/{y}.png",
    MapStyle.BLACKOUT: "https://a.basemaps.cartocdn.com/dark_all/{z}/{x}/{y}.png",
    MapStyle.LIGHT: "https://a.basemaps.cartocdn.com/light_all/{z}/{x}/{y}.png",
}

BACKGROUNDS: Dict[MapStyle, Tuple[int, int, int, int]] = {
    MapStyle.SATELLITE: (0, 0, 0, 255),
    MapStyle.DARK: (14, 14, 14, 255),
    MapStyle.BLACKOUT: (14, 14, 14, 255),
    MapStyle.LIGHT: (242, 242, 242, 255),
}


class BasemapSnapshotRenderer:
    """Render a viewport by stitching basemap tiles at the next integer zoom and downscaling."""

    TILE_SIZE = 256  # Basemap tile size in pixels

    def __init__(
        self,
        config: Optional[ConfigLookup] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config
        self.session = session or build_session()
        self.timeout = float(config_value(config, "basemap.timeout", 20.0))
        self.max_workers = int(config_value(config, "basemap.max_workers", 16))
        self.max_zoom = int(config_value(config, "basemap.max_zoom", 18))

    def url_template(self, style: MapStyle) -> str:
        return str(config_value(self.config, f"basemap.{style.value}", BASEMAP_URLS[style]))

    def render(self, region: GeoRegion, style: MapStyle, size: Tuple[int, int]) -> Snapshot:
        width, height = size
        if width <= 0 or height <= 0:
            raise SnapshotRenderError(f"Invalid snapshot size {size}")

        try:
            projection = WebMercatorProjection(region, size)
        except ValueError as e:
            raise SnapshotRenderError(str(e)) from e

        z = min(max(math.ceil(projection.zoom), 0), self.max_zoom)
        scale = (self.TILE_SIZE * 2 ** z) / projection.world_size
        ox, oy = projection.origin()
        ox, oy = ox * scale, oy * scale
        stitched_w, stitched_h = math.ceil(width * scale), math.ceil(height * scale)

        logger.info(
            f"Map snapshot: center=({region.lat}, {region.lon}), "
            f"span=({region.lat_span:.2f}, {region.lon_span:.2f}), size={size}, basemap z{z}"
        )

        cells = self._cells(z, ox, oy, stitched_w, stitched_h)
        canvas = Image.new("RGBA", (stitched_w, stitched_h), BACKGROUNDS[style])
        template = self.url_template(style)
        n = 2 ** z

        placed = 0
        with ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(cells)))) as ex:
            futs = {
                ex.submit(download_image, self.session, template.format(z=z, x=tx % n, y=ty), self.timeout): (tx, ty)
                for tx, ty in cells
            }
            for fut in as_completed(futs):
                tx, ty = futs[fut]
                try:
                    tile = fut.result()
                except TileFetchError as e:
                    logger.debug(f"Basemap tile {z}/{tx % n}/{ty} dropped: {e}")
                    continue
                dest = (round(tx * self.TILE_SIZE - ox), round(ty * self.TILE_SIZE - oy))
                canvas.paste(tile.convert("RGBA"), dest)
                placed += 1

        if placed == 0:
            raise SnapshotRenderError(f"No basemap tiles could be retrieved for {style.value} at z{z}")
        if placed < len(cells):
            logger.warning(f"Basemap incomplete: {placed}/{len(cells)} tiles")

        if canvas.size != (width, height):
            canvas = canvas.resize((width, height), Image.Resampling.LANCZOS)
        return Snapshot(image=canvas, projection=projection)

    def _cells(self, z: int, ox: float, oy: float, w: int, h: int) -> List[Tuple[int, int]]:
        """Unwrapped tile columns and clamped rows overlapping the stitched canvas."""
        n = 2 ** z
        x_first = math.floor(ox / self.TILE_SIZE)
        x_last = math.floor((ox + w - 1) / self.TILE_SIZE)
        y_first = max(math.floor(oy / self.TILE_SIZE), 0)
        y_last = min(math.floor((oy + h - 1) / self.TILE_SIZE), n - 1)
        return [(tx, ty) for tx in range(x_first, x_last + 1) for ty in range(y_first, y_last + 1)]
