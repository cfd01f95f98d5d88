from __future__ import annotations

import os
from typing import Union

import numpy as np
import rasterio
from rasterio.enums import Resampling
from rasterio.errors import RasterioError

from common.logging_setup import get_logger
from common.types import HeightGrid


log = get_logger("terrain.heightmap")


class DecodeError(RuntimeError):
    """Elevation raster missing, corrupt or in a format GDAL cannot read."""


def decode_heightmap(path: Union[str, os.PathLike], width: int, length: int) -> HeightGrid:
    """
    Read band 1 of an elevation raster into a (length, width) float32 grid.

    - Source larger/smaller than the target: cubic-spline resampled by GDAL.
    - Source already (length, width) (e.g. 257x257 LERC tiles): read natively.
    - nodata / NaN samples are replaced with the lowest valid sample
      (0 when the raster has no valid samples at all).

    Raises DecodeError if the file cannot be opened or read.
    """
    if width <= 0 or length <= 0:
        raise ValueError("width/length must be > 0")
    try:
        with rasterio.open(path) as ds:
            log.debug(
                "opened %s: driver=%s bands=%d size=%dx%d block=%s dtype=%s",
                path, ds.driver, ds.count, ds.width, ds.height, ds.block_shapes[0], ds.dtypes[0],
            )
            if ds.count < 1:
                raise DecodeError(f"{path}: no raster bands")
            if (ds.height, ds.width) == (length, width):
                arr = ds.read(1, masked=True)
            else:
                arr = ds.read(1, out_shape=(length, width), resampling=Resampling.cubic_spline, masked=True)
    except DecodeError:
        raise
    except (RasterioError, OSError, ValueError) as e:
        raise DecodeError(f"failed to decode {path}: {e}") from e

    data = np.ma.getdata(arr).astype(np.float32)
    valid = ~np.ma.getmaskarray(arr) & np.isfinite(data)
    # voids take the lowest valid sample so they do not stretch the height range
    fill = float(data[valid].min()) if valid.any() else 0.0
    samples = np.where(valid, data, np.float32(fill)).astype(np.float32)
    if not valid.all():
        log.debug("%s: %d void samples filled with %.1f", path, int((~valid).sum()), fill)
    return HeightGrid.from_samples(samples)
