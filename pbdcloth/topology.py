"""
Mesh topology preprocessing: per-vertex mass, unique edges and normals.

Everything here runs on the host with numpy, once per topology change.
"""
import numpy as np

from .errors import ClothConfigError


def validate_mesh(triangles, positions):
    """Return (triangles (F, 3) int64, positions (V, 3) float64) or raise ClothConfigError."""
    pos = np.asarray(positions, dtype=np.float64)
    if pos.ndim != 2 or pos.shape[1] != 3:
        raise ClothConfigError(f"positions must have shape (V, 3), got {pos.shape}")
    if not np.isfinite(pos).all():
        raise ClothConfigError("positions contain non-finite values")

    tris = np.asarray(triangles)
    if tris.size == 0:
        return np.zeros((0, 3), dtype=np.int64), pos
    if not np.issubdtype(tris.dtype, np.integer):
        raise ClothConfigError(f"triangle indices must be integers, got {tris.dtype}")
    if tris.size % 3 != 0 or (tris.ndim == 2 and tris.shape[1] != 3) or tris.ndim > 2:
        raise ClothConfigError(f"triangle indices must form (F, 3) triples, got shape {tris.shape}")
    tris = tris.reshape(-1, 3).astype(np.int64)
    if tris.min() < 0 or tris.max() >= len(pos):
        raise ClothConfigError(
            f"triangle index out of range [0, {len(pos)}): min {tris.min()}, max {tris.max()}")
    return tris, pos


def triangle_areas(triangles, positions):
    tris, pos = validate_mesh(triangles, positions)
    v0, v1, v2 = pos[tris[:, 0]], pos[tris[:, 1]], pos[tris[:, 2]]
    return 0.5 * np.linalg.norm(np.cross(v1 - v0, v2 - v0), axis=1)


def compute_vertex_masses(triangles, positions, density):
    """
    Lump triangle mass onto vertices.

    Each triangle weighs area * density and hands a third of it to every corner.
    Vertices referenced by no triangle (or only by degenerate ones) get zero mass,
    which the solver treats as pinned.
    """
    if not np.isfinite(density) or density < 0:
        raise ClothConfigError(f"density must be non-negative, got {density!r}")
    tris, pos = validate_mesh(triangles, positions)
    masses = np.zeros(len(pos), dtype=np.float64)
    if len(tris) == 0:
        return masses.astype(np.float32)
    tri_mass = triangle_areas(tris, pos) * density
    # np.add.at accumulates repeated indices, unlike fancy-index +=
    np.add.at(masses, tris.ravel(), np.repeat(tri_mass / 3.0, 3))
    return masses.astype(np.float32)


def unique_edges(triangles):
    """Undirected edges of the mesh, each exactly once, as a sorted (E, 2) int32 array."""
    tris = np.asarray(triangles, dtype=np.int64).reshape(-1, 3)
    if len(tris) == 0:
        return np.zeros((0, 2), dtype=np.int32)
    edges = np.concatenate([tris[:, [0, 1]], tris[:, [1, 2]], tris[:, [2, 0]]])
    edges = np.sort(edges, axis=1)
    edges = edges[edges[:, 0] != edges[:, 1]]
    return np.unique(edges, axis=0).astype(np.int32)


def compute_vertex_normals(triangles, positions):
    """Area weighted vertex normals; vertices without a defined normal get (0, 0, 0)."""
    tris, pos = validate_mesh(triangles, positions)
    normals = np.zeros_like(pos)
    if len(tris) == 0:
        return normals.astype(np.float32)
    v0, v1, v2 = pos[tris[:, 0]], pos[tris[:, 1]], pos[tris[:, 2]]
    face_n = np.cross(v1 - v0, v2 - v0)  # length = 2 * area
    for k in range(3):
        np.add.at(normals, tris[:, k], face_n)
    length = np.linalg.norm(normals, axis=1, keepdims=True)
    np.divide(normals, length, out=normals, where=length > 0)
    return normals.astype(np.float32)


def grid_mesh(resolution, size=1.0, origin=(0.0, 0.0, 0.0)):
    """
    Square cloth in the xy-plane, facing +z.

    Returns (positions ((N+1)^2, 3), triangles (2 N^2, 3)); vertex k = i * (N + 1) + j
    sits at origin + (i, j, 0) * size / N.
    """
    N = int(resolution)
    if N < 1:
        raise ClothConfigError(f"grid resolution must be at least 1, got {resolution!r}")
    i, j = np.meshgrid(np.arange(N + 1), np.arange(N + 1), indexing="ij")
    pos = np.zeros(((N + 1) ** 2, 3), dtype=np.float64)
    pos[:, 0] = i.ravel() * size / N
    pos[:, 1] = j.ravel() * size / N
    pos += np.asarray(origin, dtype=np.float64)

    tris = np.zeros((2 * N * N, 3), dtype=np.int32)
    ci, cj = np.meshgrid(np.arange(N), np.arange(N), indexing="ij")
    a = (ci * (N + 1) + cj).ravel()
    b = a + 1
    c = a + N + 2
    d = a + N + 1
    tris[0::2] = np.stack([a, d, c], axis=1)
    tris[1::2] = np.stack([c, b, a], axis=1)
    return pos.astype(np.float32), tris
