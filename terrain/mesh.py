from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Tuple, Union

import numpy as np

from common.logging_setup import get_logger
from common.types import HeightGrid, TerrainMesh
from terrain.heightmap import DecodeError, decode_heightmap


log = get_logger("terrain.mesh")


@dataclass(frozen=True)
class TerrainMeshOptions:
    width: int = 256
    length: int = 256
    height_scale: float = 0.1


def grid_triangles(width: int, length: int) -> np.ndarray:
    """
    Triangle-list indices for a row-major width x length vertex grid.

    Each quad with top-left vertex i = x + y*width becomes
        (i, i+width, i+1) and (i+1, i+width, i+width+1),
    i.e. 2*(width-1)*(length-1) triangles. Every mesh generator in the
    project uses this one winding.
    """
    if width < 2 or length < 2:
        return np.zeros((0,), dtype=np.uint32)
    xs, ys = np.meshgrid(np.arange(width - 1), np.arange(length - 1))
    i = (xs + ys * width).ravel()
    tris = np.stack([i, i + width, i + 1, i + 1, i + width, i + width + 1], axis=1)
    return tris.ravel().astype(np.uint32)


def sample_heightmap(grid: HeightGrid, height_scale: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Per-cell displaced height and normal.

    Returns:
        heights: (length, width) float32, (h - min) * 256/(max - min) * height_scale
        normals: (length, width, 3) float32, average of two neighbour cross
                 products; NOT unit length.

    Neighbour vectors carry the neighbour's raw sample * height_scale (no min
    offset, no 256/(max-min) factor) as their y component. A neighbour reads as
    0 when x >= width-1 (right), x <= 1 (left), y >= length-1 (top) or
    y <= 1 (bottom).
    """
    h = grid.samples.astype(np.float32, copy=False)
    length, width = h.shape
    span = grid.max - grid.min
    factor = 256.0 / span if span != 0 else 0.0

    heights = ((h - grid.min) * factor * height_scale).astype(np.float32)
    raw = h * np.float32(height_scale)

    right = np.zeros_like(raw)
    right[:, : width - 1] = raw[:, 1:]
    left = np.zeros_like(raw)
    left[:, 2:] = raw[:, 1 : width - 1]
    top = np.zeros_like(raw)
    top[: length - 1, :] = raw[1:, :]
    bottom = np.zeros_like(raw)
    bottom[2:, :] = raw[1 : length - 1, :]

    zeros = np.zeros_like(raw)
    ones = np.ones_like(raw)
    target = np.stack([zeros, heights, zeros], axis=-1)
    v_right = np.stack([ones, right, zeros], axis=-1)
    v_left = np.stack([-ones, left, zeros], axis=-1)
    v_top = np.stack([zeros, top, ones], axis=-1)
    v_bottom = np.stack([zeros, bottom, -ones], axis=-1)

    n1 = np.cross(v_top - target, v_right - target)
    n2 = np.cross(v_bottom - target, v_left - target)
    normals = ((n1 + n2) / 2.0).astype(np.float32)
    return heights, normals


def build_mesh(grid: HeightGrid, height_scale: float, scale_factor: float) -> TerrainMesh:
    """
    Vertex i = x + y*width sits at (x*sf, height*sf, y*sf) with uv (x/width, y/length).
    """
    if grid.samples.size == 0:
        return TerrainMesh.empty()
    length, width = grid.samples.shape
    heights, normals = sample_heightmap(grid, height_scale)

    xs, ys = np.meshgrid(np.arange(width, dtype=np.float32), np.arange(length, dtype=np.float32))
    positions = np.stack([xs * scale_factor, heights * scale_factor, ys * scale_factor], axis=-1)
    uvs = np.stack([xs / width, ys / length], axis=-1)

    return TerrainMesh(
        positions=positions.reshape(-1, 3).astype(np.float32),
        normals=normals.reshape(-1, 3),
        uvs=uvs.reshape(-1, 2).astype(np.float32),
        indices=grid_triangles(width, length),
    )


def mesh_from_heightmap(
    path: Union[str, os.PathLike],
    options: TerrainMeshOptions,
    scale_factor: float,
) -> TerrainMesh:
    """Decode + build. A raster that cannot be decoded yields an empty mesh."""
    try:
        grid = decode_heightmap(path, options.width, options.length)
    except DecodeError as e:
        log.warning("heightmap unavailable, tile omitted: %s", e)
        return TerrainMesh.empty()
    log.debug("heightmap %s: %dx%d range %.1f..%.1f", path, grid.width, grid.length, grid.min, grid.max)
    return build_mesh(grid, options.height_scale, scale_factor)
