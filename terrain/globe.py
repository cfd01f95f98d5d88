from __future__ import annotations

import math

import numpy as np

from common.types import TerrainMesh
from terrain.mesh import grid_triangles


GLOBE_RADIUS = 6000.0
PATCH_VERTICES = 8
DIST_BUFFER = 2.0


def tile_mesh(x: int, y: int, z: int, radius: float = GLOBE_RADIUS, n_vertices: int = PATCH_VERTICES) -> TerrainMesh:
    """
    Spherical patch for globe tile (x, y, z).

    Column x spans 2*pi/2**z of longitude angle (theta), row y spans
    pi/2**z of polar angle (alpha) measured from +Y. Normals point radially
    outward.
    """
    if n_vertices < 2:
        raise ValueError("n_vertices must be >= 2")
    n = 2 ** z
    theta = 2.0 * math.pi / n
    alpha = math.pi / n
    steps = n_vertices - 1

    a = alpha * y + alpha / steps * np.arange(n_vertices)   # per row
    t = theta * x + theta / steps * np.arange(n_vertices)   # per column
    tt, aa = np.meshgrid(t, a)
    r = np.sin(aa) * radius
    positions = np.stack([np.cos(tt) * r, np.cos(aa) * radius, np.sin(tt) * r], axis=-1).reshape(-1, 3)

    ww, hh = np.meshgrid(np.arange(n_vertices), np.arange(n_vertices))
    uvs = np.stack([1.0 - ww / steps, hh / steps], axis=-1).reshape(-1, 2)

    return TerrainMesh(
        positions=positions.astype(np.float32),
        normals=(positions / radius).astype(np.float32),
        uvs=uvs.astype(np.float32),
        indices=grid_triangles(n_vertices, n_vertices),
    )


def zoom_for_camera_distance(
    distance: float,
    radius: float = GLOBE_RADIUS,
    min_zoom: int = 1,
    max_zoom: int = 13,
) -> int:
    """
    Zoom level whose tiles roughly fill the view from an orbit camera at
    `distance` from the globe centre.
    """
    height = distance - radius - DIST_BUFFER
    s = math.sqrt(2.0 - math.sqrt(2.0)) * height / (2.0 * radius)
    span = 2.0 * math.asin(max(-1.0, min(1.0, s)))
    if span <= 0:
        return max_zoom
    z = math.log2(2.0 * math.pi / span)
    return int(round(max(float(min_zoom), min(float(max_zoom), z))))
