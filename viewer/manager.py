from __future__ import annotations

"""
Active tile set for a moving viewpoint.

Control loop contract (call `tick(viewpoint)` once per frame):
  - `update` is edge-triggered: an unchanged (clamped) viewpoint does nothing.
  - On a change, tiles no longer required are despawned and one work unit
    (fetch imagery + elevation, decode, mesh) is submitted per new tile.
  - `poll` never blocks. Finished units are checked for relevance against
    the *current* viewpoint; stale results are dropped without a trace.
  - Work is never cancelled. A unit started for a superseded viewpoint runs
    to completion and its result is discarded.
  - Only the control loop touches `active`; workers get immutable inputs and
    return a fresh TileResult.
"""

from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Set, Tuple

from common.logging_setup import get_logger
from common.types import TerrainMesh, TileCoordinate, TileMeshDescriptor, Viewpoint
from terrain.globe import GLOBE_RADIUS, tile_mesh
from terrain.mesh import TerrainMeshOptions, mesh_from_heightmap
from tiles.fetcher import FetchError, TileFetcher
from viewer.policies import TilePolicy, policy_from_config


log = get_logger("viewer.manager")


class SceneSink(Protocol):
    """Rendering side: receives meshes to insert and coordinates to remove."""

    def spawn(self, descriptor: TileMeshDescriptor) -> None: ...

    def despawn(self, coord: TileCoordinate) -> None: ...


@dataclass
class TileResult:
    coord: TileCoordinate
    mesh: TerrainMesh = field(repr=False)
    texture_path: Optional[str]


@dataclass
class _WorkUnit:
    coord: TileCoordinate
    generation: int
    future: Future


# ----------------------------
# Work units (run on the pool)
# ----------------------------
def _imagery_or_none(fetcher: TileFetcher, coord: TileCoordinate) -> Optional[str]:
    try:
        return fetcher.imagery(coord)
    except FetchError as e:
        log.warning("imagery unavailable for %s, tile will be untextured: %s", coord.xyz, e)
        return None


def build_terrain_tile(
    coord: TileCoordinate,
    texture_coord: TileCoordinate,
    fetcher: TileFetcher,
    options: TerrainMeshOptions,
    scale_factor: float,
) -> TileResult:
    """Fetch elevation + imagery and mesh the elevation. FetchError on elevation propagates."""
    topo_path = fetcher.elevation(coord)
    texture_path = _imagery_or_none(fetcher, texture_coord)
    mesh = mesh_from_heightmap(topo_path, options, scale_factor)
    return TileResult(coord=coord, mesh=mesh, texture_path=texture_path)


def build_globe_tile(
    coord: TileCoordinate,
    texture_coord: TileCoordinate,
    fetcher: TileFetcher,
    radius: float,
) -> TileResult:
    texture_path = _imagery_or_none(fetcher, texture_coord)
    mesh = tile_mesh(coord.x, coord.y, coord.z, radius=radius)
    return TileResult(coord=coord, mesh=mesh, texture_path=texture_path)


class TileSetManager:
    def __init__(
        self,
        policy: TilePolicy,
        fetcher: TileFetcher,
        sink: SceneSink,
        *,
        mesh_options: Optional[TerrainMeshOptions] = None,
        scale_factor: float = 0.3,
        globe_radius: float = GLOBE_RADIUS,
        executor: Optional[Executor] = None,
        workers: int = 8,
    ):
        self.policy = policy
        self.fetcher = fetcher
        self.sink = sink
        self.mesh_options = mesh_options or TerrainMeshOptions()
        self.scale_factor = float(scale_factor)
        self.globe_radius = float(globe_radius)
        self._own_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tile")

        self.active: Dict[TileCoordinate, TileMeshDescriptor] = {}
        self._inflight: List[_WorkUnit] = []
        self._viewpoint: Optional[Viewpoint] = None
        self._required: List[TileCoordinate] = []
        self._required_set: Set[TileCoordinate] = set()
        self._origin: Optional[TileCoordinate] = None
        self._generation = 0

    @classmethod
    def from_config(
        cls,
        cfg: Dict,
        sink: SceneSink,
        *,
        fetcher: Optional[TileFetcher] = None,
        mode: Optional[str] = None,
        executor: Optional[Executor] = None,
    ) -> "TileSetManager":
        m = cfg.get("mesh", {})
        v = cfg.get("viewer", {})
        fetcher = fetcher or TileFetcher.from_config(cfg)
        # unset grid size follows the elevation source so fixed-size tiles skip resampling
        native = fetcher.providers.native_elevation_size or 256
        width = m.get("width") or native
        length = m.get("length") or native
        return cls(
            policy_from_config(cfg, mode),
            fetcher,
            sink,
            mesh_options=TerrainMeshOptions(
                width=int(width),
                length=int(length),
                height_scale=float(m.get("height_scale", 0.1)),
            ),
            scale_factor=float(m.get("scale_factor", 0.3)),
            globe_radius=float(v.get("globe", {}).get("globe_radius", GLOBE_RADIUS)),
            executor=executor,
            workers=int(v.get("workers", 8)),
        )

    # ----------------------------
    # Public API
    # ----------------------------
    @property
    def viewpoint(self) -> Optional[Viewpoint]:
        return self._viewpoint

    @property
    def required(self) -> List[TileCoordinate]:
        return list(self._required)

    @property
    def pending_count(self) -> int:
        return len(self._inflight)

    def tick(self, viewpoint: Viewpoint) -> int:
        """One frame: react to a viewpoint change, then collect finished work."""
        self.update(viewpoint)
        return self.poll()

    def update(self, viewpoint: Viewpoint) -> bool:
        """
        Recompute the required tile set if the viewpoint changed.
        Returns True when the active set was touched.
        """
        vp = self.policy.clamp(viewpoint)
        if vp == self._viewpoint:
            return False
        prev = self._viewpoint
        self._viewpoint = vp
        required = self.policy.required(vp)

        if self.policy.full_rebuild and prev is not None and required == self._required:
            # same centre tile and zoom
            return False

        if prev is None or prev.zoom != vp.zoom or self._origin is None:
            self._origin = required[0] if required else None

        self._generation += 1
        self._required = required
        self._required_set = set(required)
        log.info(
            "viewpoint lat=%.6f lon=%.6f z=%d -> %d tiles (%s)",
            vp.lat, vp.lon, vp.zoom, len(required), self.policy.name,
        )

        if self.policy.full_rebuild:
            for coord in list(self.active):
                self._despawn(coord)
            for coord in required:
                self._submit(coord)
            return True

        for coord in [c for c in self.active if c not in self._required_set]:
            self._despawn(coord)
        inflight = {u.coord for u in self._inflight}
        for coord in required:
            if coord not in self.active and coord not in inflight:
                self._submit(coord)
        return True

    def poll(self) -> int:
        """Harvest finished work without blocking. Returns the number of tiles spawned."""
        spawned = 0
        still_running: List[_WorkUnit] = []
        for unit in self._inflight:
            if not unit.future.done():
                still_running.append(unit)
                continue
            if self._harvest(unit):
                spawned += 1
        self._inflight = still_running
        return spawned

    def shutdown(self, wait: bool = True) -> None:
        if self._own_executor:
            self.executor.shutdown(wait=wait)

    # ----------------------------
    # Internals
    # ----------------------------
    def _is_relevant(self, unit: _WorkUnit) -> bool:
        if self._viewpoint is None or unit.coord.z != self._viewpoint.zoom:
            return False
        if self.policy.full_rebuild:
            return unit.generation == self._generation
        return unit.coord in self._required_set and unit.coord not in self.active

    def _harvest(self, unit: _WorkUnit) -> bool:
        try:
            result: TileResult = unit.future.result()
        except FetchError as e:
            log.warning("tile %s skipped this cycle: %s", unit.coord.xyz, e)
            return False
        except Exception:
            log.exception("tile %s work unit failed", unit.coord.xyz)
            return False

        if not self._is_relevant(unit):
            log.debug("discarding stale tile %s", unit.coord.xyz)
            return False
        if result.mesh.is_empty:
            log.warning("tile %s produced no mesh", unit.coord.xyz)
            return False

        descriptor = TileMeshDescriptor(
            coord=result.coord,
            mesh=result.mesh,
            texture_path=result.texture_path,
            translation=self.policy.translation(result.coord, self._origin or result.coord, self._extent()),
        )
        self.active[result.coord] = descriptor
        self.sink.spawn(descriptor)
        return True

    def _extent(self) -> Tuple[float, float]:
        o = self.mesh_options
        return ((o.width - 1) * self.scale_factor, (o.length - 1) * self.scale_factor)

    def _submit(self, coord: TileCoordinate) -> None:
        texture_coord = self.policy.texture_coord(coord)
        if self.policy.terrain:
            fut = self.executor.submit(
                build_terrain_tile, coord, texture_coord, self.fetcher, self.mesh_options, self.scale_factor
            )
        else:
            fut = self.executor.submit(build_globe_tile, coord, texture_coord, self.fetcher, self.globe_radius)
        self._inflight.append(_WorkUnit(coord=coord, generation=self._generation, future=fut))

    def _despawn(self, coord: TileCoordinate) -> None:
        self.active.pop(coord, None)
        self.sink.despawn(coord)
