"""
Terrain meshing

- Elevation raster -> fixed-size height grid (heightmap.py)
- Height grid -> positions/normals/uvs + triangle list (mesh.py)
- Spherical imagery patches for the globe view (globe.py)
"""
from .heightmap import DecodeError, decode_heightmap
from .mesh import TerrainMeshOptions, build_mesh, grid_triangles, mesh_from_heightmap, sample_heightmap

__all__ = [
    "DecodeError",
    "TerrainMeshOptions",
    "build_mesh",
    "decode_heightmap",
    "grid_triangles",
    "mesh_from_heightmap",
    "sample_heightmap",
]
