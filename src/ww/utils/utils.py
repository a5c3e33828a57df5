import sys
from io import BytesIO
from pathlib import Path
from typing import Any, Callable, Optional

import requests
from PIL import Image, UnidentifiedImageError
from loguru import logger

from ww.model.errors import TileFetchError

USER_AGENT = "weatherwall/0.1"

# Callable configuration lookup: config("dotted.key", default=...)
ConfigLookup = Callable[..., Any]


def setup_logging(config: ConfigLookup) -> None:
    """
    Configure loguru sinks from configuration.

    Keys:
        logging.level: stderr level (default INFO)
        logging.file: optional log file path, rotated at 5 MB
    """
    level = str(config("logging.level", default="INFO")).upper()
    logger.remove()
    logger.add(sys.stderr, level=level)

    if (log_file := config("logging.file", default=None)):
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(path, level=level, rotation="5 MB", retention=3)
        logger.debug(f"Logging to {path}")


def build_session(user_agent: str = USER_AGENT) -> requests.Session:
    """HTTP session shared by manifest, weather tile and basemap requests."""
    session = requests.Session()
    session.headers.update({"User-Agent": user_agent})
    return session


def download_image(session: requests.Session, url: str, timeout: float) -> Image.Image:
    """
    GET an image and decode it fully.

    Raises:
        TileFetchError: Transport error, non-200 status, or undecodable payload
    """
    try:
        r = session.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise TileFetchError(f"{url}: {e}") from e

    if r.status_code != 200 or not r.content:
        raise TileFetchError(f"{url}: HTTP {r.status_code}")

    try:
        img = Image.open(BytesIO(r.content))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise TileFetchError(f"{url}: undecodable image ({e})") from e
    return img


def config_value(config: Optional[ConfigLookup], key: str, default: Any) -> Any:
    """Lookup that tolerates a missing config object and None values."""
    if config is None:
        return default
    value = config(key, default=default)
    return default if value is None else value
