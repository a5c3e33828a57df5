"""Compositor: layers weather tiles over the base map snapshot."""

from typing import Optional, Sequence

import numpy as np
from PIL import Image
from loguru import logger

from ww.model.errors import CompositeResourceError
from ww.model.models import BLACKOUT_GRADE, ColorGrade, MapStyle, PixelRect
from ww.model.tile import RADAR_LAYER, SATELLITE_LAYER, TileImage, TileLayerConfig
from ww.render.snapshot import Snapshot
from ww.render.tiles import Projection, tile_to_pixel_rect

# Rec. 709 luma weights used for desaturation
_LUMA = np.array([0.2126, 0.7152, 0.0722], dtype=np.float32)

# Modes the color grade knows how to read
GRADE_MODES = ("RGB", "RGBA", "L", "LA", "P")


def apply_color_grade(image: Image.Image, grade: ColorGrade) -> Image.Image:
    """
    Brightness, contrast, saturation, then exposure, on [0, 1] channel values.

    Args:
        image: Source image (not modified)
        grade: Filter parameters

    Returns:
        New RGBA image with the source alpha preserved

    Raises:
        ValueError: Unsupported pixel format
    """
    if image.mode not in GRADE_MODES:
        raise ValueError(f"Cannot color-grade image mode {image.mode}")

    rgba = np.asarray(image.convert("RGBA"), dtype=np.float32) / 255.0
    rgb = rgba[..., :3]
    alpha = rgba[..., 3:]

    rgb = rgb + grade.brightness
    rgb = (rgb - 0.5) * grade.contrast + 0.5
    luma = (rgb @ _LUMA)[..., np.newaxis]
    rgb = luma + (rgb - luma) * grade.saturation
    rgb = rgb * (2.0 ** grade.exposure_ev)

    out = np.concatenate([np.clip(rgb, 0.0, 1.0), alpha], axis=-1)
    return Image.fromarray((out * 255.0 + 0.5).astype(np.uint8), mode="RGBA")


class Compositor:
    """
    Draws, in order: base map, satellite tiles, radar tiles.

    Radar opacity is always above satellite opacity so radar stays dominant.
    The compositor does no I/O and never modifies its inputs.
    """

    def __init__(
        self,
        grade: ColorGrade = BLACKOUT_GRADE,
        satellite_layer: TileLayerConfig = SATELLITE_LAYER,
        radar_layer: TileLayerConfig = RADAR_LAYER,
    ):
        self.grade = grade
        self.satellite_layer = satellite_layer
        self.radar_layer = radar_layer

    def compose(
        self,
        snapshot: Snapshot,
        satellite_tiles: Sequence[TileImage],
        radar_tiles: Sequence[TileImage],
        style: MapStyle,
    ) -> Image.Image:
        """
        Composite weather tiles onto the snapshot's base image.

        Args:
            snapshot: Base image plus its geographic -> pixel projection
            satellite_tiles: Decoded satellite tiles (may be empty)
            radar_tiles: Decoded radar tiles (may be empty)
            style: Map style; blackout grades the base and raises radar opacity

        Returns:
            RGBA image with exactly the base image's size

        Raises:
            CompositeResourceError: Image buffers could not be allocated
        """
        blackout = style == MapStyle.BLACKOUT
        try:
            canvas = self.prepare_base(snapshot.image, style)
            drawn_sat = self._draw_layer(
                canvas, satellite_tiles, snapshot.projection, self.satellite_layer.opacity_for(blackout)
            )
            drawn_radar = self._draw_layer(
                canvas, radar_tiles, snapshot.projection, self.radar_layer.opacity_for(blackout)
            )
        except MemoryError as e:
            raise CompositeResourceError(f"Out of memory compositing {snapshot.image.size} image") from e

        logger.debug(
            f"Composited {drawn_sat}/{len(satellite_tiles)} satellite and "
            f"{drawn_radar}/{len(radar_tiles)} radar tiles ({style.value})"
        )
        return canvas

    def prepare_base(self, image: Image.Image, style: MapStyle) -> Image.Image:
        """RGBA copy of the base image, color-graded under blackout."""
        if style == MapStyle.BLACKOUT:
            try:
                return apply_color_grade(image, self.grade)
            except (ValueError, OSError) as e:
                logger.warning(f"Blackout filter failed, using unfiltered base map: {e}")
        return image.convert("RGBA")

    def _draw_layer(
        self,
        canvas: Image.Image,
        tiles: Sequence[TileImage],
        projection: Projection,
        opacity: float,
    ) -> int:
        drawn = 0
        for tile_image in tiles:
            rect = tile_to_pixel_rect(tile_image.tile, projection)
            if self._draw_tile(canvas, tile_image.image, rect, opacity):
                drawn += 1
        return drawn

    def _draw_tile(self, canvas: Image.Image, image: Image.Image, rect: PixelRect, opacity: float) -> bool:
        """Source-over one tile into `rect`. Returns False when nothing is visible."""
        box = _pixel_box(rect)
        if box is None:
            return False
        x0, y0, x1, y1 = box

        # Visible part of the destination rectangle
        cx0, cy0 = max(x0, 0), max(y0, 0)
        cx1, cy1 = min(x1, canvas.width), min(y1, canvas.height)
        if cx1 <= cx0 or cy1 <= cy0:
            return False

        tile = image.convert("RGBA")
        if tile.size != (x1 - x0, y1 - y0):
            tile = tile.resize((x1 - x0, y1 - y0), Image.Resampling.LANCZOS)
        if (cx0, cy0, cx1, cy1) != (x0, y0, x1, y1):
            tile = tile.crop((cx0 - x0, cy0 - y0, cx1 - x0, cy1 - y0))

        if opacity < 1.0:
            alpha = tile.getchannel("A").point(lambda a: int(a * opacity + 0.5))
            tile.putalpha(alpha)

        canvas.alpha_composite(tile, dest=(cx0, cy0))
        return True


def _pixel_box(rect: PixelRect) -> Optional[tuple]:
    """Integer (x0, y0, x1, y1); adjacent tiles share edges exactly. None if empty."""
    if rect.is_degenerate():
        return None
    x0, y0 = round(rect.left), round(rect.top)
    x1, y1 = round(rect.right), round(rect.bottom)
    if x1 <= x0 or y1 <= y0:
        return None
    return x0, y0, x1, y1
