#!/usr/bin/env python3
"""
Warm the on-disk tile cache for a viewpoint, so the viewer starts without
waiting on the network.

Downloads imagery (and, outside globe mode, elevation) for every tile the
chosen viewer mode would request at each zoom, into the configured cache
root (default assets/images/). Files already on disk are left untouched.

Examples:
  python scripts/prefetch_tiles.py --lat 38.272688 --lon -120.234375 --zoom 10 11 12
  python scripts/prefetch_tiles.py --mode globe --zoom 2 3 --workers 4
"""
from __future__ import annotations

import argparse
import os
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Tuple

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from common.config import load_config
from common.logging_setup import get_logger, setup_logging
from common.types import RasterKind, TileCoordinate, Viewpoint
from tiles.fetcher import FetchError, TileFetcher
from viewer.policies import TilePolicy, policy_from_config


log = get_logger("prefetch")


def plan(policy: TilePolicy, lat: float, lon: float, zooms: List[int]) -> List[Tuple[TileCoordinate, RasterKind]]:
    jobs: List[Tuple[TileCoordinate, RasterKind]] = []
    for z in zooms:
        vp = policy.clamp(Viewpoint(lat=lat, lon=lon, zoom=z))
        for coord in policy.required(vp):
            jobs.append((policy.texture_coord(coord), RasterKind.IMAGERY))
            if policy.terrain:
                jobs.append((coord, RasterKind.ELEVATION))
    return list(dict.fromkeys(jobs))


def prefetch(fetcher: TileFetcher, jobs: List[Tuple[TileCoordinate, RasterKind]], workers: int = 4) -> Dict[str, int]:
    counts = {"cached": 0, "downloaded": 0, "failed": 0}
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futs = {}
        for coord, kind in jobs:
            was_cached = fetcher.providers.request(coord, kind).local_path.exists()
            futs[pool.submit(fetcher.fetch, coord, kind)] = (coord, kind, was_cached)
        for fut in as_completed(futs):
            coord, kind, was_cached = futs[fut]
            try:
                path = fut.result()
            except FetchError as e:
                counts["failed"] += 1
                log.warning("%s %s failed: %s", kind.value, coord.xyz, e)
                continue
            counts["cached" if was_cached else "downloaded"] += 1
            log.debug("%s %s -> %s", kind.value, coord.xyz, path)
    return counts


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default="config/params.yaml")
    ap.add_argument("--mode", choices=["single", "region", "globe"], default=None)
    ap.add_argument("--lat", type=float, required=True)
    ap.add_argument("--lon", type=float, required=True)
    ap.add_argument("--zoom", nargs="+", type=int, default=[10], help="Zoom levels to prefetch")
    ap.add_argument("--workers", type=int, default=4, help="Parallel downloads")
    args = ap.parse_args()

    cfg = load_config(args.config)
    setup_logging(cfg.get("logging", {}).get("level"))

    policy = policy_from_config(cfg, args.mode)
    fetcher = TileFetcher.from_config(cfg)
    jobs = plan(policy, args.lat, args.lon, args.zoom)
    log.info("prefetching %d rasters into %s (%s mode)", len(jobs), fetcher.providers.cache_root, policy.name)

    counts = prefetch(fetcher, jobs, workers=args.workers)
    log.info("prefetch done", extra={"extra": counts})
    print(f"[ok] {counts['downloaded']} downloaded, {counts['cached']} already cached, {counts['failed']} failed")


if __name__ == "__main__":
    main()
