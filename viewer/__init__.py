"""
Viewer core: keeps the set of tile meshes in step with a moving viewpoint.

- policies.py: single tile / N x N region / wrapping globe ring
- manager.py: diffing, work submission on a thread pool, non-blocking polling
- app.py: headless frame loop for trying it out

Entry point:
    python -m viewer.app --config config/params.yaml
"""
from .manager import SceneSink, TileResult, TileSetManager
from .policies import GlobePolicy, RegionPolicy, SingleTilePolicy, TilePolicy, policy_from_config

__all__ = [
    "GlobePolicy",
    "RegionPolicy",
    "SceneSink",
    "SingleTilePolicy",
    "TilePolicy",
    "TileResult",
    "TileSetManager",
    "policy_from_config",
]
