"""Generation orchestrator: serialises wallpaper builds and coalesces refresh requests.

At most one generation cycle runs at a time. A refresh requested while a
cycle is running is remembered as a single pending rerun, so any burst of
requests produces at most one extra cycle.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, Tuple

from PIL import Image
from loguru import logger

from ww.desktop.setter import WallpaperSetter
from ww.model.errors import ApplyError, WallpaperError
from ww.model.models import Settings, WeatherLayers
from ww.model.tile import RADAR_LAYER, SATELLITE_LAYER
from ww.render.compositor import Compositor
from ww.render.snapshot import BasemapSnapshotRenderer, SnapshotRenderer
from ww.render.tiles import DEFAULT_MIN_ZOOM, tile_range_for_region
from ww.storage.storage import create_storage
from ww.utils.utils import ConfigLookup, build_session, config_value
from ww.weather.fetcher import FetchResult, TileFetcher, layer_from_config
from ww.weather.manifest import WeatherLayerResolver

DEFAULT_SIZE = (2560, 1440)

# Settings whose change invalidates the current wallpaper
REFRESH_FIELDS = ("style", "region_index", "radar_layer_enabled", "satellite_layer_enabled")


class GenerationState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"


class GenerationListener(Protocol):
    def generation_started(self) -> None: ...

    def generation_ended(self) -> None: ...

    def wallpaper_applied(self, path: Path) -> None: ...


class NullListener:
    def generation_started(self) -> None:
        pass

    def generation_ended(self) -> None:
        pass

    def wallpaper_applied(self, path: Path) -> None:
        pass


class LayerResolver(Protocol):
    def resolve(self) -> WeatherLayers: ...


class WallpaperStore(Protocol):
    def save(self, image: Image.Image) -> Path: ...


class WallpaperApplier(Protocol):
    def apply(self, path: Path) -> bool: ...


class RefreshTimer:
    """
    Repeating timer on a daemon thread.

    Changing the interval cancels the pending tick and schedules a new one a
    full interval away; it never fires immediately.
    """

    def __init__(self, interval: float, callback: Callable[[], Any]):
        if interval <= 0:
            raise ValueError(f"Refresh interval must be positive, got {interval}")
        self._interval = float(interval)
        self._callback = callback
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._running = False

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            self._running = True
            self._schedule()

    def cancel(self) -> None:
        with self._lock:
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def set_interval(self, interval: float) -> None:
        if interval <= 0:
            raise ValueError(f"Refresh interval must be positive, got {interval}")
        with self._lock:
            self._interval = float(interval)
            if self._running:
                self._schedule()
        logger.info(f"Refresh interval set to {interval:.0f}s")

    def _schedule(self) -> None:
        # Caller holds self._lock
        if self._timer is not None:
            self._timer.cancel()
        self._timer = threading.Timer(self._interval, self._tick)
        self._timer.daemon = True
        self._timer.start()

    def _tick(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._schedule()
        try:
            self._callback()
        except Exception:
            logger.exception("Refresh timer callback failed")


class GenerationOrchestrator:
    """
    Owns the settings record and the generation state machine.

    Collaborators are injectable; anything not supplied is built from `config`.
    Cycles run on a single worker thread. Listener callbacks for the first
    cycle of a burst start on the caller's thread, all others on the worker.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        config: Optional[ConfigLookup] = None,
        size: Optional[Tuple[int, int]] = None,
        resolver: Optional[LayerResolver] = None,
        renderer: Optional[SnapshotRenderer] = None,
        fetcher: Optional[TileFetcher] = None,
        compositor: Optional[Compositor] = None,
        storage: Optional[WallpaperStore] = None,
        applier: Optional[WallpaperApplier] = None,
        listener: Optional[GenerationListener] = None,
    ):
        self._settings = settings or Settings()
        self.size = size or (
            int(config_value(config, "display.width", DEFAULT_SIZE[0])),
            int(config_value(config, "display.height", DEFAULT_SIZE[1])),
        )
        self.min_zoom = int(config_value(config, "tiles.min_zoom", DEFAULT_MIN_ZOOM))

        session = None
        if resolver is None or renderer is None or fetcher is None:
            session = build_session()
        self.resolver = resolver or WeatherLayerResolver(config, session)
        self.renderer = renderer or BasemapSnapshotRenderer(config, session)
        self.fetcher = fetcher or TileFetcher(config, session)
        self.compositor = compositor or Compositor(
            satellite_layer=layer_from_config(config, SATELLITE_LAYER),
            radar_layer=layer_from_config(config, RADAR_LAYER),
        )
        self.storage = storage or create_storage(directory=config_value(config, "storage.directory", None))
        self.applier = applier or WallpaperSetter()
        self.listener: GenerationListener = listener or NullListener()

        self._cond = threading.Condition()
        self._state = GenerationState.IDLE
        self._pending_rerun = False
        self._closed = False
        self._current_path: Optional[Path] = None
        self._last_updated: Optional[datetime] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="generation")
        self.timer = RefreshTimer(self._settings.refresh_interval_seconds, self._on_timer)

####################################################################################################################
#   State
####################################################################################################################

    @property
    def settings(self) -> Settings:
        with self._cond:
            return self._settings

    @property
    def state(self) -> GenerationState:
        with self._cond:
            return self._state

    @property
    def pending_rerun(self) -> bool:
        with self._cond:
            return self._pending_rerun

    @property
    def current_wallpaper_path(self) -> Optional[Path]:
        with self._cond:
            return self._current_path

    @property
    def last_updated(self) -> Optional[datetime]:
        with self._cond:
            return self._last_updated

####################################################################################################################
#   Triggers
####################################################################################################################

    def start(self, refresh: bool = True) -> None:
        """Arm the refresh timer and optionally build the first wallpaper."""
        self.timer.start()
        logger.info(f"Auto refresh every {self.timer.interval:.0f}s "
                    f"({'enabled' if self.settings.auto_refresh_enabled else 'disabled'})")
        if refresh:
            self.request_refresh()

    def request_refresh(self) -> bool:
        """
        Start a cycle, or mark one pending if a cycle is already running.

        Returns:
            True if a new cycle was started
        """
        with self._cond:
            if self._closed:
                logger.warning("Refresh requested after shutdown; ignored")
                return False
            if self._state == GenerationState.GENERATING:
                self._pending_rerun = True
                logger.debug("Generation in progress; refresh queued")
                return False
            self._state = GenerationState.GENERATING

        self._notify("generation_started")
        try:
            with self._cond:
                if self._closed:
                    raise RuntimeError("orchestrator is shut down")
                self._executor.submit(self._run_loop)
        except RuntimeError as e:
            logger.warning(f"Refresh not started: {e}")
            with self._cond:
                self._state = GenerationState.IDLE
                self._pending_rerun = False
                self._cond.notify_all()
            self._notify("generation_ended")
            return False
        return True

    def update_settings(self, **changes: Any) -> Settings:
        """
        Replace fields of the settings record.

        A changed style, region or layer toggle triggers a refresh. A changed
        interval reschedules the timer without refreshing.

        Raises:
            ValueError: Unknown field or invalid value
        """
        unknown = set(changes) - set(Settings.model_fields)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

        with self._cond:
            old = self._settings
            new = Settings.model_validate({**old.model_dump(), **changes})
            self._settings = new

        changed = [name for name in Settings.model_fields if getattr(old, name) != getattr(new, name)]
        if not changed:
            return new
        logger.info(f"Settings changed: {', '.join(f'{name}={getattr(new, name)}' for name in changed)}")

        if new.refresh_interval_seconds != old.refresh_interval_seconds:
            self.timer.set_interval(new.refresh_interval_seconds)
        if any(name in REFRESH_FIELDS for name in changed):
            self.request_refresh()
        return new

    def display_changed(self) -> bool:
        """Re-apply the current wallpaper to the (new) set of displays."""
        path = self.current_wallpaper_path
        if path is None:
            logger.debug("Display configuration changed; no wallpaper to re-apply")
            return False
        logger.info("Display configuration changed; re-applying wallpaper")
        return self.applier.apply(path)

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no cycle is running or pending. Returns False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: self._state == GenerationState.IDLE, timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the timer and the worker. A running cycle finishes; a pending rerun is dropped."""
        with self._cond:
            self._closed = True
            self._pending_rerun = False
        self.timer.cancel()
        self._executor.shutdown(wait=wait)
        logger.debug("Orchestrator shut down")

    def _on_timer(self) -> None:
        if not self.settings.auto_refresh_enabled:
            logger.debug("Auto refresh disabled; timer tick ignored")
            return
        logger.info("Auto refresh triggered")
        self.request_refresh()

####################################################################################################################
#   Cycle
####################################################################################################################

    def _run_loop(self) -> None:
        while True:
            self._cycle()
            self._notify("generation_ended")
            with self._cond:
                if not self._pending_rerun or self._closed:
                    self._pending_rerun = False
                    self._state = GenerationState.IDLE
                    self._cond.notify_all()
                    return
                self._pending_rerun = False
            logger.debug("Running queued refresh")
            self._notify("generation_started")

    def _cycle(self) -> Optional[Path]:
        start = time.monotonic()
        try:
            path = self.run_cycle(self.settings)
        except WallpaperError as e:
            logger.error(f"Wallpaper generation failed: {e}")
            return None
        except Exception:
            logger.exception("Wallpaper generation failed unexpectedly")
            return None

        now = datetime.now(timezone.utc)
        with self._cond:
            self._current_path = path
            self._last_updated = now
        logger.info(f"Wallpaper updated in {time.monotonic() - start:.1f}s: {path}")
        self._notify("wallpaper_applied", path)
        return path

    def run_cycle(self, settings: Settings) -> Path:
        """
        Build, save and apply one wallpaper for a settings snapshot.

        Raises:
            WallpaperError: Any stage failed; nothing is recorded
        """
        preset = settings.region
        region = preset.viewport(self.size)
        logger.info(f"Generating {settings.style.value} wallpaper for {preset.name}")

        layers = WeatherLayers()
        if settings.radar_layer_enabled or settings.satellite_layer_enabled:
            layers = self.resolver.resolve()
        layers = layers.masked(settings.radar_layer_enabled, settings.satellite_layer_enabled)

        snapshot = self.renderer.render(region, settings.style, self.size)

        fetched = FetchResult(satellite=[], radar=[])
        if layers.has_layers:
            tiles = tile_range_for_region(region, snapshot.size, min_zoom=self.min_zoom)
            logger.debug(f"Tile range: {len(tiles)} tiles at z{next(iter(tiles)).z}")
            fetched = self.fetcher.fetch_tiles(tiles, layers)

        image = self.compositor.compose(snapshot, fetched.satellite, fetched.radar, settings.style)
        path = self.storage.save(image)

        if not self.applier.apply(path):
            raise ApplyError(f"Could not apply {path}")
        return path

    def _notify(self, event: str, *args: Any) -> None:
        try:
            getattr(self.listener, event)(*args)
        except Exception:
            logger.exception(f"Listener {event} callback failed")
