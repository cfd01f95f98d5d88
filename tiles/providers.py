from __future__ import annotations

"""
Tile URL and cache-filename families.

The generated filename is the cache key: a file already present at
`local_path` is reused forever, so these templates must stay stable across
runs.

    imagery     {cache_root}/imagery_{x}_{y}_{z}.jpeg   ArcGIS World_Imagery  .../tile/{z}/{y}/{x}
    elevation   {cache_root}/topo_{x}_{y}_{z}.tiff      OpenTopography SRTMGL1 bbox query (GTiff)
                {cache_root}/topo_{x}_{y}_{z}.lerc      ArcGIS Terrain3D .../tile/{z}/{y}/{x} (257x257 LERC)
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from common.geo import tile_bounds
from common.types import RasterKind, TileCoordinate


IMAGERY_URL = "https://server.arcgisonline.com/ArcGIS/rest/services/World_Imagery/MapServer/tile/{z}/{y}/{x}"
OPENTOPOGRAPHY_URL = "https://portal.opentopography.org/API/globaldem"
ARCGIS_ELEVATION_URL = (
    "https://services.arcgisonline.com/arcgis/rest/services/WorldElevation3D/Terrain3D/ImageServer/tile/{z}/{y}/{x}"
)

ELEVATION_SOURCES = ("opentopography", "arcgis_lerc")
LERC_TILE_SIZE = 257


@dataclass(frozen=True)
class TileRequest:
    coord: TileCoordinate
    kind: RasterKind
    url: str
    local_path: Path


def mirror_x(x: int, zoom: int) -> int:
    """Column index counted from the other edge: 2**zoom - x - 1."""
    return 2 ** zoom - x - 1


def _fmt_deg(v: float) -> str:
    # Integral degrees render without a trailing ".0" (e.g. "-120", not "-120.0").
    return str(int(v)) if float(v).is_integer() else repr(float(v))


class TileProviders:
    def __init__(
        self,
        cache_root: str = "assets/images",
        elevation_source: str = "opentopography",
        api_key: Optional[str] = None,
    ):
        """
        Params:
            cache_root: directory holding every cached raster
            elevation_source: "opentopography" (bbox GTiff) or "arcgis_lerc"
            api_key: OpenTopography API key (falls back to env OPENTOPOGRAPHY_API_KEY)
        """
        if elevation_source not in ELEVATION_SOURCES:
            raise ValueError(f"elevation_source must be one of {ELEVATION_SOURCES}, got {elevation_source!r}")
        self.cache_root = Path(cache_root)
        self.elevation_source = elevation_source
        self.api_key = api_key or os.getenv("OPENTOPOGRAPHY_API_KEY")

    def request(self, coord: TileCoordinate, kind: RasterKind) -> TileRequest:
        if kind == RasterKind.IMAGERY:
            return self.imagery(coord)
        return self.elevation(coord)

    def imagery(self, coord: TileCoordinate) -> TileRequest:
        x, y, z = coord.xyz
        return TileRequest(
            coord=coord,
            kind=RasterKind.IMAGERY,
            url=IMAGERY_URL.format(z=z, y=y, x=x),
            local_path=self.cache_root / f"imagery_{x}_{y}_{z}.jpeg",
        )

    def elevation(self, coord: TileCoordinate) -> TileRequest:
        if self.elevation_source == "arcgis_lerc":
            return self._arcgis_lerc(coord)
        return self._opentopography(coord)

    @property
    def native_elevation_size(self) -> Optional[int]:
        """Side length of the elevation raster when the source has a fixed one."""
        return LERC_TILE_SIZE if self.elevation_source == "arcgis_lerc" else None

    # ----------------------------
    # Elevation families
    # ----------------------------
    def _opentopography(self, coord: TileCoordinate) -> TileRequest:
        x, y, z = coord.xyz
        west, south, east, north = tile_bounds(x, y, z)
        url = (
            f"{OPENTOPOGRAPHY_URL}?demtype=SRTMGL1"
            f"&west={_fmt_deg(west)}&east={_fmt_deg(east)}"
            f"&south={_fmt_deg(south)}&north={_fmt_deg(north)}"
            f"&outputFormat=GTiff"
        )
        if self.api_key:
            url += f"&API_Key={self.api_key}"
        return TileRequest(
            coord=coord,
            kind=RasterKind.ELEVATION,
            url=url,
            local_path=self.cache_root / f"topo_{x}_{y}_{z}.tiff",
        )

    def _arcgis_lerc(self, coord: TileCoordinate) -> TileRequest:
        x, y, z = coord.xyz
        return TileRequest(
            coord=coord,
            kind=RasterKind.ELEVATION,
            url=ARCGIS_ELEVATION_URL.format(z=z, y=y, x=x),
            local_path=self.cache_root / f"topo_{x}_{y}_{z}.lerc",
        )
