# storage layer for composited wallpapers
from __future__ import annotations

import os
import time
from pathlib import Path
from typing import List, Optional, Union

from PIL import Image
from loguru import logger
from pydantic import BaseModel, Field

from ww.model.errors import PersistenceError


def default_directory() -> Path:
    """Platform data directory for generated wallpapers."""
    if (custom := os.getenv("WEATHERWALL_DATA")):
        return Path(custom).expanduser()
    home = Path.home()
    if os.name == "nt":
        return Path(os.getenv("LOCALAPPDATA", home / "AppData" / "Local")) / "weatherwall"
    if (home / "Library" / "Application Support").exists():
        return home / "Library" / "Application Support" / "weatherwall"
    return home / ".local" / "share" / "weatherwall"


class StorageConfig(BaseModel):
    """
    Configuration used by create_storage().
    """
    directory: Path = Field(default_factory=default_directory)
    prefix: str = Field(default="wallpaper-")

    # PNG encoder effort
    compress_level: int = Field(default=6, ge=0, le=9)

    create_directory_if_missing: bool = True


class WallpaperStorage:
    """
    Filesystem persistence for composited wallpapers.

    Each save writes a new `<prefix><unix-ts>.png` after removing previous outputs.
    """

    def __init__(self, cfg: StorageConfig):
        self._cfg = cfg
        self._root = Path(cfg.directory).expanduser()
        if cfg.create_directory_if_missing:
            self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

####################################################################################################################
#   Low-level primitives
####################################################################################################################

    def list_wallpapers(self) -> List[Path]:
        if not self._root.exists():
            return []
        return sorted(p for p in self._root.glob(f"{self._cfg.prefix}*.png") if p.is_file())

    def cleanup(self, keep: Optional[Path] = None) -> int:
        """Remove previous wallpaper files. Errors on individual files are logged and skipped."""
        removed = 0
        for p in self.list_wallpapers():
            if keep is not None and p == keep:
                continue
            try:
                p.unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"Could not remove old wallpaper {p}: {e}")
        return removed

    def _next_path(self) -> Path:
        ts = int(time.time())
        path = self._root / f"{self._cfg.prefix}{ts}.png"
        # Two saves within the same second must still get distinct names
        n = 1
        while path.exists():
            path = self._root / f"{self._cfg.prefix}{ts}-{n}.png"
            n += 1
        return path

####################################################################################################################
#   High-level operations
####################################################################################################################

    def save(self, image: Image.Image) -> Path:
        """
        Write `image` as PNG and return its path.

        Raises:
            PersistenceError: Directory or file could not be written
        """
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create wallpaper directory {self._root}: {e}") from e

        self.cleanup()
        path = self._next_path()
        try:
            image.save(path, "png", compress_level=self._cfg.compress_level)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Failed to save wallpaper to {path}: {e}") from e

        logger.info(f"Wallpaper saved to: {path}")
        return path

####################################################################################################################
# Factory
####################################################################################################################

def create_storage(
    *,
    directory: Optional[Union[str, Path]] = None,
    compress_level: int = 6,
) -> WallpaperStorage:
    """
    Create a WallpaperStorage in `directory`, or the platform data directory.
    """
    cfg = StorageConfig(compress_level=compress_level)
    if directory:
        cfg = StorageConfig(directory=Path(directory).expanduser(), compress_level=compress_level)
    return WallpaperStorage(cfg)
