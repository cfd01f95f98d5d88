from __future__ import annotations

"""
Headless driver for the tile set manager.

Stands in for the renderer: runs the frame loop, feeds a viewpoint, and logs
every spawn/despawn instead of drawing it.

Examples:
  # Region view around the default start point, 5 s at 30 Hz
  python -m viewer.app --mode region --lat 38.272688 --lon -120.234375 --zoom 10 --ticks 150

  # Same, then zoom in halfway through
  python -m viewer.app --zoom 10 --then-zoom 11 --ticks 300

  # Globe ring
  python -m viewer.app --mode globe --zoom 3

  # Globe ring, zoom picked from an orbit camera 9000 units from the centre
  python -m viewer.app --mode globe --camera-distance 9000
"""

import argparse
import time
from typing import Dict, Optional

from common.config import load_config
from common.logging_setup import get_logger, setup_logging
from common.types import GeoPoint, TileCoordinate, TileMeshDescriptor, Viewpoint
from common.utils import RateTimer
from terrain.globe import GLOBE_RADIUS, zoom_for_camera_distance
from viewer.manager import TileSetManager


log = get_logger("viewer.app")


class LoggingSceneSink:
    """SceneSink that only records and logs what a renderer would do."""

    def __init__(self) -> None:
        self.scene: Dict[TileCoordinate, TileMeshDescriptor] = {}
        self.spawned = 0
        self.despawned = 0

    def spawn(self, descriptor: TileMeshDescriptor) -> None:
        self.scene[descriptor.coord] = descriptor
        self.spawned += 1
        log.info(
            "spawn tile %s: %d vertices, %d triangles, texture=%s, at %s",
            descriptor.coord.xyz,
            descriptor.mesh.vertex_count,
            descriptor.mesh.triangle_count,
            descriptor.texture_path,
            tuple(round(v, 2) for v in descriptor.translation),
        )

    def despawn(self, coord: TileCoordinate) -> None:
        self.scene.pop(coord, None)
        self.despawned += 1
        log.info("despawn tile %s", coord.xyz)


def start_viewpoint(
    point: GeoPoint,
    zoom: int,
    *,
    camera_distance: Optional[float] = None,
    globe_radius: float = GLOBE_RADIUS,
) -> Viewpoint:
    """
    Viewpoint over `point`. With an orbit camera distance (globe mode) the zoom
    is derived from the distance instead of taken as given.
    """
    if camera_distance is not None:
        zoom = zoom_for_camera_distance(camera_distance, radius=globe_radius)
    return Viewpoint(lat=point.lat, lon=point.lon, zoom=int(zoom))


def run(
    manager: TileSetManager,
    viewpoint: Viewpoint,
    *,
    ticks: int,
    tick_hz: float = 30.0,
    then_zoom: Optional[int] = None,
) -> None:
    period = 1.0 / tick_hz if tick_hz > 0 else 0.0
    rt = RateTimer(window=max(2, int(tick_hz) or 2))
    for k in range(ticks):
        if then_zoom is not None and k == ticks // 2:
            viewpoint = viewpoint.with_zoom(then_zoom)
        manager.tick(viewpoint)
        hz = rt.tick()
        if k and tick_hz > 0 and k % int(tick_hz * 5 or 1) == 0:
            log.info("loop %.1f Hz, %d active, %d pending", hz, len(manager.active), manager.pending_count)
        if period:
            time.sleep(period)


def main() -> None:
    ap = argparse.ArgumentParser(description="Terrain tile viewer (headless)")
    ap.add_argument("--config", default="config/params.yaml")
    ap.add_argument("--mode", choices=["single", "region", "globe"], default=None, help="Override viewer.mode")
    ap.add_argument("--lat", type=float, default=None)
    ap.add_argument("--lon", type=float, default=None)
    ap.add_argument("--zoom", type=int, default=None)
    ap.add_argument("--then-zoom", type=int, default=None, help="Switch to this zoom halfway through")
    ap.add_argument(
        "--camera-distance", type=float, default=None,
        help="Orbit camera distance from the globe centre; derives --zoom (globe mode)",
    )
    ap.add_argument("--ticks", type=int, default=150, help="Frames to run")
    ap.add_argument("--tick-hz", type=float, default=30.0, help="Frame rate cap")
    args = ap.parse_args()

    cfg = load_config(args.config)
    setup_logging(cfg.get("logging", {}).get("level"))

    start = cfg.get("viewer", {}).get("start", {})
    point = GeoPoint(
        lat=args.lat if args.lat is not None else float(start.get("lat", 38.272688)),
        lon=args.lon if args.lon is not None else float(start.get("lon", -120.234375)),
    )
    vp = start_viewpoint(
        point,
        args.zoom if args.zoom is not None else int(start.get("zoom", 10)),
        camera_distance=args.camera_distance,
        globe_radius=float(cfg.get("viewer", {}).get("globe", {}).get("globe_radius", GLOBE_RADIUS)),
    )

    sink = LoggingSceneSink()
    manager = TileSetManager.from_config(cfg, sink, mode=args.mode)
    try:
        run(manager, vp, ticks=args.ticks, tick_hz=args.tick_hz, then_zoom=args.then_zoom)
    except KeyboardInterrupt:
        pass
    finally:
        manager.shutdown(wait=False)
    log.info("viewer finished: %d spawned, %d despawned, %d in scene", sink.spawned, sink.despawned, len(sink.scene))


if __name__ == "__main__":
    main()
