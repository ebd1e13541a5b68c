"""
Constraint sets for the cloth solver.

Constraints are numpy structured arrays, one record per constraint, uploaded
as-is into the simulator's buffers. Distance and bend constraints are derived
from topology once; pin and collision constraints come from outside (authoring,
collision detection) and may change every frame.
"""
import logging

import numpy as np

from .errors import ClothConfigError
from .topology import unique_edges, validate_mesh

logger = logging.getLogger(__name__)

DISTANCE_DTYPE = np.dtype([
    ("a", np.int32),
    ("b", np.int32),
    ("rest_length", np.float32),
])

# center vertex, the two vertices of its opposite edge ("wings"), the vertex
# across that edge in the adjacent triangle (-1 when there is none) and the rest
# distance between the wing midpoint and the center/neighbor midpoint
BEND_DTYPE = np.dtype([
    ("center", np.int32),
    ("wing_a", np.int32),
    ("wing_b", np.int32),
    ("neighbor", np.int32),
    ("rest_height", np.float32),
])

PIN_DTYPE = np.dtype([
    ("vertex", np.int32),
    ("anchor", np.float32, (3,)),
    ("rest_length", np.float32),
])

COLLISION_DTYPE = np.dtype([
    ("vertex", np.int32),
    ("point", np.float32, (3,)),
    ("normal", np.float32, (3,)),
    ("thickness", np.float32),
])


def build_distance_constraints(triangles, positions):
    """One constraint per unique mesh edge, rest length taken from `positions`."""
    tris, pos = validate_mesh(triangles, positions)
    edges = unique_edges(tris)
    rest = np.linalg.norm(pos[edges[:, 1]] - pos[edges[:, 0]], axis=1)
    keep = rest > 0.0
    if not keep.all():
        logger.warning(f"Dropping {int((~keep).sum())} zero-length edge(s) from the distance constraints.")
    cons = np.zeros(int(keep.sum()), dtype=DISTANCE_DTYPE)
    cons["a"] = edges[keep, 0]
    cons["b"] = edges[keep, 1]
    cons["rest_length"] = rest[keep]
    return cons


def build_bend_constraints(triangles, positions):
    """
    Three records per triangle, one centered at each corner.

    A record acts across its wing edge, so it needs the triangle on the other
    side of that edge. The first triangle (in index order) sharing an edge gets
    the other triangle's opposite vertex as `neighbor`; boundary records and the
    second record of a shared edge keep -1 and are skipped by the solver.
    """
    tris, pos = validate_mesh(triangles, positions)
    cons = np.zeros(3 * len(tris), dtype=BEND_DTYPE)
    cons["neighbor"] = -1
    if len(tris) == 0:
        return cons
    i0, i1, i2 = tris[:, 0], tris[:, 1], tris[:, 2]
    # interleave so that records 3f, 3f+1, 3f+2 belong to triangle f
    cons["center"] = np.stack([i0, i1, i2], axis=1).ravel()
    cons["wing_a"] = np.stack([i1, i2, i0], axis=1).ravel()
    cons["wing_b"] = np.stack([i2, i0, i1], axis=1).ravel()

    # map every wing edge onto its slot in the sorted unique edge list
    NV = len(pos)
    edges = unique_edges(tris).astype(np.int64)
    wings = np.sort(np.stack([cons["wing_a"], cons["wing_b"]], axis=1).astype(np.int64), axis=1)
    slot = np.full(len(cons), -1, dtype=np.int64)
    proper = wings[:, 0] != wings[:, 1]
    slot[proper] = np.searchsorted(edges[:, 0] * NV + edges[:, 1], wings[proper, 0] * NV + wings[proper, 1])

    order = np.argsort(slot, kind="stable")
    order = order[slot[order] >= 0]
    s = slot[order]
    first = np.ones(len(s), dtype=bool)
    first[1:] = s[1:] != s[:-1]
    paired = first[:-1] & (s[1:] == s[:-1])
    cons["neighbor"][order[:-1][paired]] = cons["center"][order[1:][paired]]
    shared = np.bincount(s, minlength=len(edges))
    if (shared > 2).any():
        logger.warning(f"{int((shared > 2).sum())} edge(s) are shared by more than two triangles; "
                       f"only the first two get a bend constraint.")

    active = cons["neighbor"] >= 0
    rec = cons[active]
    h = 0.5 * (pos[rec["wing_a"]] + pos[rec["wing_b"]]) - 0.5 * (pos[rec["center"]] + pos[rec["neighbor"]])
    cons["rest_height"][active] = np.linalg.norm(h, axis=1)
    return cons


def make_pin_constraints(vertices, anchors, rest_lengths=None):
    """Attach `vertices` to fixed world-space `anchors` (rest length 0 unless given)."""
    verts = np.asarray(vertices, dtype=np.int64).reshape(-1)
    anchors = np.asarray(anchors, dtype=np.float64).reshape(-1, 3)
    if len(anchors) != len(verts):
        raise ClothConfigError(f"got {len(verts)} pinned vertices but {len(anchors)} anchors")
    cons = np.zeros(len(verts), dtype=PIN_DTYPE)
    cons["vertex"] = verts
    cons["anchor"] = anchors
    if rest_lengths is not None:
        cons["rest_length"] = np.broadcast_to(np.asarray(rest_lengths, dtype=np.float32), len(verts))
    return cons


def make_collision_constraints(vertices, points, normals, thickness=0.0):
    verts = np.asarray(vertices, dtype=np.int64).reshape(-1)
    cons = np.zeros(len(verts), dtype=COLLISION_DTYPE)
    cons["vertex"] = verts
    cons["point"] = np.broadcast_to(np.asarray(points, dtype=np.float64), (len(verts), 3))
    cons["normal"] = _unit_normals(np.broadcast_to(np.asarray(normals, dtype=np.float64), (len(verts), 3)))
    cons["thickness"] = thickness
    return cons


def plane_contacts(positions, point, normal, thickness=0.0, margin=0.0):
    """Contacts for every vertex closer than `thickness + margin` to the plane (point, normal)."""
    pos = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    n = np.asarray(normal, dtype=np.float64)
    n = n / np.linalg.norm(n)
    height = (pos - np.asarray(point, dtype=np.float64)) @ n
    verts = np.nonzero(height < thickness + margin)[0]
    return make_collision_constraints(verts, point, n, thickness)


def pin_vertices(masses, indices):
    """Copy of `masses` with the given vertices made static (mass 0)."""
    out = np.array(masses, dtype=np.float32, copy=True)
    idx = np.asarray(indices, dtype=np.int64).reshape(-1)
    if len(idx) and (idx.min() < 0 or idx.max() >= len(out)):
        raise ClothConfigError(f"pinned vertex index out of range [0, {len(out)})")
    out[idx] = 0.0
    return out


def check_constraints(cons, dtype, vertex_count, fields, optional=()):
    """
    Coerce `cons` to `dtype` and check every index field against the vertex count.

    Fields named in `optional` may also hold -1 for "no vertex".
    """
    arr = np.asarray(cons)
    if arr.dtype != dtype:
        try:
            arr = arr.astype(dtype)
        except (TypeError, ValueError):
            raise ClothConfigError(f"expected constraint records of dtype {dtype}, got {arr.dtype}") from None
    arr = arr.reshape(-1)
    for name in fields:
        idx = arr[name]
        if len(idx) and (idx.min() < 0 or idx.max() >= vertex_count):
            raise ClothConfigError(f"constraint field '{name}' index out of range [0, {vertex_count})")
    for name in optional:
        idx = arr[name]
        if len(idx) and (idx.min() < -1 or idx.max() >= vertex_count):
            raise ClothConfigError(f"constraint field '{name}' must be -1 or an index in [0, {vertex_count})")
    return arr


def check_collision_constraints(cons, vertex_count):
    """Checked copy of collision records, normals rescaled to unit length."""
    arr = check_constraints(cons, COLLISION_DTYPE, vertex_count, ("vertex",)).copy()
    if not (np.isfinite(arr["point"]).all() and np.isfinite(arr["thickness"]).all()):
        raise ClothConfigError("collision points and thicknesses must be finite")
    arr["normal"] = _unit_normals(arr["normal"])
    return arr


def _unit_normals(normals):
    n = np.asarray(normals, dtype=np.float64).reshape(-1, 3)
    if not np.isfinite(n).all():
        raise ClothConfigError("collision normals must be finite")
    length = np.linalg.norm(n, axis=1, keepdims=True)
    if (length == 0).any():
        raise ClothConfigError("collision normals must be non-zero")
    return n / length
