"""Install a wallpaper file on every desktop."""

import os
import platform
import shutil
import subprocess
import sys
from pathlib import Path
from typing import List, Optional, Union

from loguru import logger

from ww.model.errors import ApplyError

# Path arrives as argv so it is never parsed as AppleScript
MAC_SCRIPT = """
on run argv
    tell application "System Events"
        tell every desktop
            set picture to (item 1 of argv)
        end tell
    end tell
end run
"""


def detect_desktop() -> str:
    """One of 'mac', 'windows', 'gnome', 'feh' or 'unknown'."""
    system = platform.system()
    if system == "Darwin":
        return "mac"
    if system == "Windows":
        return "windows"
    session = (os.getenv("XDG_CURRENT_DESKTOP") or os.getenv("DESKTOP_SESSION") or "").lower()
    if any(name in session for name in ("gnome", "unity", "cinnamon", "budgie")) and shutil.which("gsettings"):
        return "gnome"
    if shutil.which("feh"):
        return "feh"
    return "unknown"


class WallpaperSetter:
    """Applies a wallpaper via the platform's own tooling."""

    def __init__(self, desktop: Optional[str] = None, timeout: float = 30.0):
        self.desktop = desktop or detect_desktop()
        self.timeout = timeout

    def commands(self, path: Path) -> List[List[str]]:
        """Commands to run, in order, for the detected desktop."""
        if self.desktop == "mac":
            return [["/usr/bin/osascript", "-e", MAC_SCRIPT, str(path)]]
        if self.desktop == "gnome":
            uri = path.as_uri()
            return [
                ["gsettings", "set", "org.gnome.desktop.background", "picture-uri", uri],
                ["gsettings", "set", "org.gnome.desktop.background", "picture-uri-dark", uri],
            ]
        if self.desktop == "feh":
            return [["feh", "--no-fehbg", "--bg-fill", str(path)]]
        return []

    def apply(self, path: Union[str, Path]) -> bool:
        """
        Set `path` as the wallpaper on all desktops.

        Returns:
            True on success; failures are logged and return False
        """
        path = Path(path).resolve()
        logger.info(f"Setting wallpaper for all desktops: {path}")
        try:
            self._apply(path)
        except ApplyError as e:
            logger.error(f"Failed to set wallpaper: {e}")
            return False
        logger.info("Wallpaper set on all desktops")
        return True

    def _apply(self, path: Path) -> None:
        if not path.exists():
            raise ApplyError(f"{path} does not exist")

        if self.desktop == "windows":
            self._apply_windows(path)
            return

        commands = self.commands(path)
        if not commands:
            raise ApplyError(f"No wallpaper backend for desktop '{self.desktop}'")

        for cmd in commands:
            try:
                proc = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
            except (OSError, subprocess.SubprocessError) as e:
                raise ApplyError(f"{cmd[0]} could not run: {e}") from e
            # gsettings rejects picture-uri-dark on older GNOME; the first key is enough
            if proc.returncode != 0 and cmd is commands[0]:
                raise ApplyError(f"{cmd[0]} exited {proc.returncode}: {proc.stderr.strip()}")

    @staticmethod
    def _apply_windows(path: Path) -> None:
        if sys.platform != "win32":
            raise ApplyError("Windows backend requested on a non-Windows platform")
        import ctypes

        SPI_SETDESKWALLPAPER = 20
        SPIF_UPDATEINIFILE_SENDCHANGE = 0x01 | 0x02
        ok = ctypes.windll.user32.SystemParametersInfoW(
            SPI_SETDESKWALLPAPER, 0, str(path), SPIF_UPDATEINIFILE_SENDCHANGE
        )
        if not ok:
            raise ApplyError("SystemParametersInfoW failed")
