"""
Tile retrieval and disk cache

- Builds imagery/elevation URLs and their cache filenames (providers.py)
- Downloads each raster at most once per cache path (fetcher.py)
"""
from .fetcher import FetchError, RequestCoalescer, TileFetcher, fetch_or_reuse
from .providers import TileProviders, TileRequest, mirror_x

__all__ = [
    "FetchError",
    "RequestCoalescer",
    "TileFetcher",
    "TileProviders",
    "TileRequest",
    "fetch_or_reuse",
    "mirror_x",
]
