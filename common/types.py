from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

import numpy as np


class RasterKind(str, Enum):
    IMAGERY = "imagery"
    ELEVATION = "elevation"


@dataclass(frozen=True, slots=True)
class TileCoordinate:
    """
    Slippy-map tile address.

    Attributes:
        x, y: column/row index, both in [0, 2**z).
        z: zoom level (>= 0).
    """
    x: int
    y: int
    z: int

    def __post_init__(self) -> None:
        if self.z < 0:
            raise ValueError("z must be >= 0")
        n = 2 ** self.z
        if not (0 <= self.x < n) or not (0 <= self.y < n):
            raise ValueError(f"tile ({self.x}, {self.y}) out of range for zoom {self.z}")

    @property
    def xyz(self) -> Tuple[int, int, int]:
        return (self.x, self.y, self.z)


@dataclass(frozen=True, slots=True)
class GeoPoint:
    lat: float
    lon: float

    def __post_init__(self) -> None:
        # lon is deliberately not wrapped
        if not (-90.0 <= self.lat <= 90.0):
            raise ValueError("lat out of range")


@dataclass(frozen=True, slots=True)
class Viewpoint:
    """
    Camera target handed in by the UI layer. Compared by value to detect changes.
    """
    lat: float
    lon: float
    zoom: int

    def with_zoom(self, zoom: int) -> "Viewpoint":
        return Viewpoint(lat=self.lat, lon=self.lon, zoom=int(zoom))


@dataclass(slots=True)
class HeightGrid:
    """
    Elevation samples resampled to a fixed grid.

    Attributes:
        samples: float32 array of shape (length, width); samples[y, x].
        min, max: extrema over samples (0.0 when the grid is empty).
    """
    samples: np.ndarray
    min: float
    max: float

    def __post_init__(self) -> None:
        if not isinstance(self.samples, np.ndarray):
            raise TypeError("samples must be a numpy ndarray")
        if self.samples.ndim != 2:
            raise ValueError("samples must be 2D (length, width)")
        if self.samples.dtype != np.float32:
            self.samples = self.samples.astype(np.float32, copy=False)

    @property
    def width(self) -> int:
        return int(self.samples.shape[1])

    @property
    def length(self) -> int:
        return int(self.samples.shape[0])

    @classmethod
    def from_samples(cls, samples: np.ndarray) -> "HeightGrid":
        arr = np.asarray(samples, dtype=np.float32)
        if arr.size == 0:
            return cls(samples=arr.reshape(0, 0) if arr.ndim != 2 else arr, min=0.0, max=0.0)
        return cls(samples=arr, min=float(arr.min()), max=float(arr.max()))


@dataclass(slots=True)
class TerrainMesh:
    """
    Triangle-list mesh in parallel buffers.

    Attributes:
        positions: (N, 3) float32
        normals: (N, 3) float32, not unit length
        uvs: (N, 2) float32
        indices: (M,) uint32, M a multiple of 3
    """
    positions: np.ndarray
    normals: np.ndarray
    uvs: np.ndarray
    indices: np.ndarray

    def __post_init__(self) -> None:
        n = len(self.positions)
        if len(self.normals) != n or len(self.uvs) != n:
            raise ValueError("positions/normals/uvs must have equal length")
        if len(self.indices) % 3 != 0:
            raise ValueError("indices must describe whole triangles")

    @classmethod
    def empty(cls) -> "TerrainMesh":
        return cls(
            positions=np.zeros((0, 3), dtype=np.float32),
            normals=np.zeros((0, 3), dtype=np.float32),
            uvs=np.zeros((0, 2), dtype=np.float32),
            indices=np.zeros((0,), dtype=np.uint32),
        )

    @property
    def is_empty(self) -> bool:
        return len(self.positions) == 0

    @property
    def vertex_count(self) -> int:
        return int(len(self.positions))

    @property
    def triangle_count(self) -> int:
        return int(len(self.indices) // 3)


@dataclass(slots=True)
class TileMeshDescriptor:
    """What the renderer receives for one tile."""
    coord: TileCoordinate
    mesh: TerrainMesh = field(repr=False)
    texture_path: Optional[str]
    translation: Tuple[float, float, float] = (0.0, 0.0, 0.0)
