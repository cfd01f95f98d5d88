from __future__ import annotations

from typing import Tuple
import math


# -------------------------
# Slippy-map tile <-> lon/lat
# -------------------------
def deg2num(lat: float, lon: float, zoom: int) -> Tuple[int, int]:
    """
    Tile (x, y) containing (lat, lon) at `zoom` (Web Mercator, OSM scheme).

    NOTE: |lat| beyond ~85.05 deg is not rejected; tan() grows without bound
    and the row comes out negative or past 2**zoom. Callers drop the tiles
    they cannot use.
    """
    lat_rad = math.radians(lat)
    n = 2.0 ** zoom
    xtile = math.floor((lon + 180.0) / 360.0 * n)
    ytile = math.floor((1.0 - math.asinh(math.tan(lat_rad)) / math.pi) / 2.0 * n)
    return xtile, ytile


def num2deg(xtile: float, ytile: float, zoom: int) -> Tuple[float, float]:
    """NW corner (lat, lon) of tile (xtile, ytile)."""
    n = 2.0 ** zoom
    lon_deg = xtile / n * 360.0 - 180.0
    lat_rad = math.atan(math.sinh(math.pi * (1.0 - 2.0 * ytile / n)))
    return math.degrees(lat_rad), lon_deg


def tile_bounds(xtile: int, ytile: int, zoom: int) -> Tuple[float, float, float, float]:
    """(west, south, east, north) in degrees for one tile."""
    north, west = num2deg(xtile, ytile, zoom)
    south, east = num2deg(xtile + 1, ytile + 1, zoom)
    return west, south, east, north
