from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Dict, List, Tuple

from common.geo import deg2num
from common.types import TileCoordinate, Viewpoint
from common.utils import clamp_int
from tiles.providers import mirror_x


def _valid(x: int, y: int, z: int) -> bool:
    n = 2 ** z
    return 0 <= x < n and 0 <= y < n


class TilePolicy(ABC):
    """
    Which tiles a viewpoint needs and how the active set reacts to a change.

    Attributes:
        name: short label used in logs/config
        min_zoom, max_zoom: supported zoom range; viewpoints are clamped into it
        full_rebuild: tear down and re-request every tile on any change
            (instead of diffing against the active set)
        terrain: True -> elevation mesh per tile; False -> flat globe patch
    """
    name = "policy"
    full_rebuild = False
    terrain = True

    def __init__(self, min_zoom: int, max_zoom: int):
        if min_zoom > max_zoom:
            raise ValueError("min_zoom must be <= max_zoom")
        self.min_zoom = int(min_zoom)
        self.max_zoom = int(max_zoom)

    def clamp(self, vp: Viewpoint) -> Viewpoint:
        z = clamp_int(vp.zoom, self.min_zoom, self.max_zoom)
        return vp if z == vp.zoom else vp.with_zoom(z)

    @abstractmethod
    def required(self, vp: Viewpoint) -> List[TileCoordinate]:
        """Ordered, duplicate-free tiles needed for `vp` (already clamped)."""

    def texture_coord(self, coord: TileCoordinate) -> TileCoordinate:
        """Slippy tile whose imagery textures `coord`."""
        return coord

    def translation(
        self,
        coord: TileCoordinate,
        origin: TileCoordinate,
        extent: Tuple[float, float],
    ) -> Tuple[float, float, float]:
        """
        World offset of a tile mesh: tiles are laid edge to edge, `extent`
        world units apart, with the origin tile centred on (0, 0).
        """
        ex, ez = extent
        return (
            (coord.x - origin.x) * ex - ex / 2.0,
            0.0,
            (coord.y - origin.y) * ez - ez / 2.0,
        )


class SingleTilePolicy(TilePolicy):
    """The one tile under the viewpoint."""
    name = "single"

    def __init__(self, min_zoom: int = 1, max_zoom: int = 13):
        super().__init__(min_zoom, max_zoom)

    def required(self, vp: Viewpoint) -> List[TileCoordinate]:
        x, y = deg2num(vp.lat, vp.lon, vp.zoom)
        return [TileCoordinate(x, y, vp.zoom)] if _valid(x, y, vp.zoom) else []


class RegionPolicy(TilePolicy):
    """
    N x N block whose top-left tile contains the viewpoint, N = zoom - min_zoom.

    At min_zoom the block is empty; each zoom step adds a row and a column,
    so detail grows together with the covered area.
    """
    name = "region"

    def __init__(self, min_zoom: int = 9, max_zoom: int = 13):
        super().__init__(min_zoom, max_zoom)

    def block_size(self, zoom: int) -> int:
        return max(0, int(zoom) - self.min_zoom)

    def required(self, vp: Viewpoint) -> List[TileCoordinate]:
        n = self.block_size(vp.zoom)
        top_x, top_y = deg2num(vp.lat, vp.lon, vp.zoom)
        out: List[TileCoordinate] = []
        for dy in range(n):
            for dx in range(n):
                x, y = top_x + dx, top_y + dy
                if _valid(x, y, vp.zoom):
                    out.append(TileCoordinate(x, y, vp.zoom))
        return out


class GlobePolicy(TilePolicy):
    """
    (2r+1) x (2r+1) ring of globe tiles around the tile under the viewpoint,
    wrapped modulo 2**zoom on both axes.

    Globe tiles are indexed equirectangularly: column x counts 360/2**z degree
    steps westward from the antimeridian, row y counts 180/2**z degree steps
    south from the north pole. Imagery for column x is the slippy tile
    2**z - x - 1. Any change of centre tile or zoom rebuilds the whole ring.
    """
    name = "globe"
    full_rebuild = True
    terrain = False

    def __init__(self, min_zoom: int = 1, max_zoom: int = 13, ring_radius: int = 2):
        super().__init__(min_zoom, max_zoom)
        if ring_radius < 0:
            raise ValueError("ring_radius must be >= 0")
        self.ring_radius = int(ring_radius)

    @staticmethod
    def center_tile(lat: float, lon: float, zoom: int) -> Tuple[int, int]:
        n = 2 ** zoom
        col_deg = (180.0 - lon) % 360.0
        row_deg = 90.0 - lat
        x = math.floor(col_deg / (360.0 / n)) % n
        y = min(n - 1, max(0, math.floor(row_deg / (180.0 / n))))
        return x, y

    def required(self, vp: Viewpoint) -> List[TileCoordinate]:
        n = 2 ** vp.zoom
        cx, cy = self.center_tile(vp.lat, vp.lon, vp.zoom)
        r = self.ring_radius
        seen: Dict[TileCoordinate, None] = {}
        for rx in range(-r, r + 1):
            for ry in range(-r, r + 1):
                seen.setdefault(TileCoordinate((cx + rx) % n, (cy + ry) % n, vp.zoom), None)
        return list(seen)

    def texture_coord(self, coord: TileCoordinate) -> TileCoordinate:
        return TileCoordinate(mirror_x(coord.x, coord.z), coord.y, coord.z)

    def translation(self, coord, origin, extent) -> Tuple[float, float, float]:
        return (0.0, 0.0, 0.0)


def policy_from_config(cfg: Dict, mode: str | None = None) -> TilePolicy:
    v = cfg.get("viewer", {})
    mode = mode or v.get("mode", "region")
    section = v.get(mode, {})
    if mode == "region":
        return RegionPolicy(min_zoom=section.get("min_zoom", 9), max_zoom=section.get("max_zoom", 13))
    if mode == "single":
        return SingleTilePolicy(min_zoom=section.get("min_zoom", 1), max_zoom=section.get("max_zoom", 13))
    if mode == "globe":
        return GlobePolicy(
            min_zoom=section.get("min_zoom", 1),
            max_zoom=section.get("max_zoom", 13),
            ring_radius=section.get("ring_radius", 2),
        )
    raise ValueError(f"unknown viewer mode {mode!r}")
