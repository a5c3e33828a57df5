from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class TileCoordinate(BaseModel):
    """Web-Mercator XYZ tile index. Valid range: 0 <= x, y < 2**z."""
    model_config = {"frozen": True}

    x: int
    y: int
    z: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_range(self) -> "TileCoordinate":
        n = 2 ** self.z
        if not (0 <= self.x < n and 0 <= self.y < n):
            raise ValueError(f"tile ({self.x}, {self.y}) outside zoom {self.z} grid of {n}x{n}")
        return self

    def __str__(self) -> str:
        return f"{self.z}/{self.x}/{self.y}"


class TileImage(BaseModel):
    """A decoded tile image. Produced by the fetcher, consumed by the compositor in the same cycle."""
    model_config = {"arbitrary_types_allowed": True}

    tile: TileCoordinate
    image: Any  # PIL.Image.Image


class TileLayerConfig(BaseModel):
    """
    Weather tile layer -> tile URL.

    Layout:
      {host}{layer_path}/{tile_size}/{z}/{x}/{y}/{color_scheme}/{variant}.png

    Examples:
      https://tilecache.rainviewer.com/v2/radar/1700000000/512/6/14/24/2/1_1.png
      https://tilecache.rainviewer.com/v2/satellite/abc123/512/6/14/24/0/0_0.png

    Radar and satellite differ only in these values.
    """
    model_config = {"frozen": True}

    name: str
    host: str = Field(default="https://tilecache.rainviewer.com")
    tile_size: int = Field(default=512)
    color_scheme: int = 0
    variant: str = "0_0"
    opacity: float = Field(default=0.5, ge=0.0, le=1.0)
    blackout_opacity: float = Field(default=0.5, ge=0.0, le=1.0)

    @field_validator("host")
    @classmethod
    def _strip_slash(cls, value: str) -> str:
        return value.rstrip("/")

    def url(self, layer_path: str, tile: TileCoordinate) -> str:
        """Generate the tile URL for a provider path token."""
        path = layer_path if layer_path.startswith("/") else f"/{layer_path}"
        return (
            f"{self.host}{path}/{self.tile_size}/{tile.z}/{tile.x}/{tile.y}/{self.color_scheme}/{self.variant}.png"
        )

    def opacity_for(self, blackout: bool) -> float:
        return self.blackout_opacity if blackout else self.opacity


RADAR_LAYER = TileLayerConfig(name="radar", color_scheme=2, variant="1_1", opacity=0.7, blackout_opacity=0.8)
SATELLITE_LAYER = TileLayerConfig(name="satellite", color_scheme=0, variant="0_0", opacity=0.5, blackout_opacity=0.5)
