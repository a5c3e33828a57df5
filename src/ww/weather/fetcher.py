"""Concurrent weather tile retrieval with per-tile failure tolerance."""

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Iterable, List, NamedTuple, Optional, Tuple

import requests
from loguru import logger

from ww.model.errors import TileFetchError
from ww.model.models import WeatherLayers
from ww.model.tile import RADAR_LAYER, SATELLITE_LAYER, TileCoordinate, TileImage, TileLayerConfig
from ww.utils.utils import ConfigLookup, build_session, config_value, download_image


class FetchResult(NamedTuple):
    satellite: List[TileImage]
    radar: List[TileImage]


def layer_from_config(config: Optional[ConfigLookup], base: TileLayerConfig) -> TileLayerConfig:
    """Apply `weather.<name>.*` overrides to a layer's built-in values."""
    overrides = config_value(config, f"weather.{base.name}", {}) or {}
    if not overrides:
        return base
    return TileLayerConfig.model_validate({**base.model_dump(), **dict(overrides)})


def _sort_key(tile_image: TileImage) -> Tuple[int, int, int]:
    t = tile_image.tile
    return t.z, t.y, t.x


class TileFetcher:
    """
    Fan-out one retrieval per tile per enabled layer, fan-in at a barrier.

    A failed retrieval drops only its own tile. The call returns once every
    retrieval has finished.
    """

    def __init__(
        self,
        config: Optional[ConfigLookup] = None,
        session: Optional[requests.Session] = None,
        satellite_layer: Optional[TileLayerConfig] = None,
        radar_layer: Optional[TileLayerConfig] = None,
    ):
        self.session = session or build_session()
        self.timeout = float(config_value(config, "fetcher.timeout", 15.0))
        self.max_workers = int(config_value(config, "fetcher.max_workers", 32))
        self.satellite_layer = satellite_layer or layer_from_config(config, SATELLITE_LAYER)
        self.radar_layer = radar_layer or layer_from_config(config, RADAR_LAYER)

    def fetch_tiles(self, tiles: Iterable[TileCoordinate], layers: WeatherLayers) -> FetchResult:
        """
        Retrieve tile images for every enabled layer.

        Args:
            tiles: Tile coordinates covering the viewport
            layers: Provider path tokens; an absent path disables that layer

        Returns:
            FetchResult(satellite, radar), each sorted by (z, y, x)
        """
        tiles = list(tiles)
        jobs: List[Tuple[str, str, TileCoordinate]] = []
        if layers.satellite_path:
            logger.info(f"Fetching satellite tiles with path: {layers.satellite_path}")
            jobs += [("satellite", self.satellite_layer.url(layers.satellite_path, t), t) for t in tiles]
        else:
            logger.debug("No satellite path available")
        if layers.radar_path:
            jobs += [("radar", self.radar_layer.url(layers.radar_path, t), t) for t in tiles]

        result = FetchResult(satellite=[], radar=[])
        if not jobs:
            return result

        lock = threading.Lock()

        def _fetch_one(kind: str, url: str, tile: TileCoordinate) -> None:
            image = download_image(self.session, url, self.timeout)
            with lock:
                getattr(result, kind).append(TileImage(tile=tile, image=image))

        workers = max(1, min(self.max_workers, len(jobs)))
        dropped = 0
        with ThreadPoolExecutor(max_workers=workers) as ex:
            futs = {ex.submit(_fetch_one, kind, url, tile): (kind, tile) for kind, url, tile in jobs}
            for fut in as_completed(futs):
                kind, tile = futs[fut]
                try:
                    fut.result()
                except TileFetchError as e:
                    dropped += 1
                    logger.debug(f"{kind.capitalize()} tile {tile} dropped: {e}")
                except Exception as e:
                    dropped += 1
                    logger.error(f"{kind.capitalize()} tile {tile} failed unexpectedly: {e}")

        result.satellite.sort(key=_sort_key)
        result.radar.sort(key=_sort_key)
        logger.info(
            f"Downloaded {len(result.satellite)} satellite tiles, {len(result.radar)} radar tiles"
            + (f" ({dropped} dropped)" if dropped else "")
        )
        return result
