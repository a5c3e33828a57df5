class WallpaperError(Exception):
    """Base class for failures inside a generation cycle."""


class InvalidRegionError(WallpaperError, ValueError):
    """Non-finite geography. Fatal to the cycle; do not retry without fixing the input."""


class ManifestFetchError(WallpaperError):
    """Weather manifest could not be retrieved. The cycle continues without weather layers."""


class ManifestParseError(WallpaperError):
    """Weather manifest bytes were not the expected JSON."""


class TileFetchError(WallpaperError):
    """A single tile could not be retrieved or decoded. Only that tile is dropped."""


class SnapshotRenderError(WallpaperError):
    """Base map could not be rendered. Fatal to the cycle."""


class CompositeResourceError(WallpaperError):
    """Image buffer allocation failed while compositing."""


class PersistenceError(WallpaperError):
    """Composited wallpaper could not be written to disk."""


class ApplyError(WallpaperError):
    """Wallpaper file could not be installed on the desktops."""
