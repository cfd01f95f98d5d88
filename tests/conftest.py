"""
Pytest configuration and shared fixtures.
"""

import os
import sys
from concurrent.futures import Executor, Future

import numpy as np
import pytest
import rasterio
from rasterio.transform import from_bounds

project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)


@pytest.fixture
def write_geotiff(tmp_path):
    """Factory fixture: write a single-band float32 GeoTIFF and return its path."""
    def _write(data, name="topo.tiff", bbox=(-120.3, 38.2, -120.2, 38.3), nodata=None):
        data = np.asarray(data, dtype=np.float32)
        h, w = data.shape
        profile = {
            "driver": "GTiff",
            "height": h,
            "width": w,
            "count": 1,
            "dtype": rasterio.float32,
            "crs": "EPSG:4326",
            "transform": from_bounds(*bbox, w, h),
        }
        if nodata is not None:
            profile["nodata"] = nodata
        path = tmp_path / name
        with rasterio.open(path, "w", **profile) as dst:
            dst.write(data, 1)
        return path
    return _write


class ManualExecutor(Executor):
    """Executor whose work only runs when the test says so."""

    def __init__(self):
        self.jobs = []
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        fut = Future()
        self.jobs.append((fut, fn, args, kwargs))
        self.submitted += 1
        return fut

    def run_all(self):
        jobs, self.jobs = self.jobs, []
        for fut, fn, args, kwargs in jobs:
            try:
                fut.set_result(fn(*args, **kwargs))
            except Exception as e:
                fut.set_exception(e)

    def shutdown(self, wait=True, *, cancel_futures=False):
        pass


@pytest.fixture
def manual_executor():
    return ManualExecutor()
