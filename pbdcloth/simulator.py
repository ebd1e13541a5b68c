"""
Position-based cloth simulator.

One step runs a fixed pipeline of kernel dispatches:

    predict -> iteration_count x (clear, distance, bend, pins, collisions, apply) -> commit

Positions are only committed once every iteration has finished; all
intermediate work happens on the predicted positions.
"""
import logging
import math

import numpy as np
import taichi as ti

from . import kernels
from .buffers import BufferStore
from .constraints import (BEND_DTYPE, COLLISION_DTYPE, DISTANCE_DTYPE, PIN_DTYPE, build_bend_constraints,
                          build_distance_constraints, check_collision_constraints, check_constraints,
                          pin_vertices)
from .dispatch import TaichiDispatcher
from .errors import ClothConfigError, SimulationDivergedError, SimulatorReleasedError
from .settings import ClothSettings
from .topology import compute_vertex_masses, compute_vertex_normals, validate_mesh

logger = logging.getLogger(__name__)


class ClothSimulator:
    """
    Cloth simulator built from a triangle mesh in its rest pose.

    Args:
        positions: (V, 3) rest-pose vertex positions, also the initial state.
        triangles: (F, 3) vertex indices.
        settings: ClothSettings, defaults if omitted.
        normals: (V, 3) vertex normals used to project the field force; derived from
            the mesh when omitted.
        pinned_vertices: indices of vertices made static (mass 0).
        dispatcher: object with `dispatch(kernel, item_count, *args)` and `barrier()`.
        pin_capacity, collision_capacity: maximum number of pin / collision
            records per step, vertex count by default.
    """

    def __init__(self, positions, triangles, settings=None, normals=None, pinned_vertices=None,
                 dispatcher=None, pin_capacity=None, collision_capacity=None):
        self.settings = settings if settings is not None else ClothSettings()
        self.dispatcher = dispatcher if dispatcher is not None else TaichiDispatcher()
        self._pin_capacity = pin_capacity
        self._collision_capacity = collision_capacity
        self.buffers = None
        self.set_topology(positions, triangles, normals=normals, pinned_vertices=pinned_vertices)

    @classmethod
    def from_constraints(cls, positions, masses, distance_constraints, bend_constraints=None,
                         settings=None, normals=None, dispatcher=None, pin_capacity=None,
                         collision_capacity=None):
        """Build a simulator from already derived masses and constraint records."""
        self = cls.__new__(cls)
        self.settings = settings if settings is not None else ClothSettings()
        self.dispatcher = dispatcher if dispatcher is not None else TaichiDispatcher()
        self._pin_capacity = pin_capacity
        self._collision_capacity = collision_capacity
        self.buffers = None
        _, pos = validate_mesh((), positions)
        if normals is None:
            normals = np.zeros_like(pos)
        if bend_constraints is None:
            bend_constraints = np.zeros(0, dtype=BEND_DTYPE)
        self._setup(pos, masses, normals, distance_constraints, bend_constraints)
        self.triangles = np.zeros((0, 3), dtype=np.int64)
        return self

    def set_topology(self, positions, triangles, normals=None, pinned_vertices=None):
        """(Re)derive masses and constraints from a mesh and reallocate all buffers."""
        tris, pos = validate_mesh(triangles, positions)
        masses = compute_vertex_masses(tris, pos, self.settings.density)
        if pinned_vertices is not None:
            masses = pin_vertices(masses, pinned_vertices)
        if normals is None:
            normals = compute_vertex_normals(tris, pos)
        distance = build_distance_constraints(tris, pos)
        bend = build_bend_constraints(tris, pos)
        self._setup(pos, masses, normals, distance, bend)
        self.triangles = tris

    def _setup(self, pos, masses, normals, distance, bend):
        NV = len(pos)
        if NV == 0:
            raise ClothConfigError("a cloth needs at least one vertex")
        masses = np.asarray(masses, dtype=np.float32).reshape(-1)
        if masses.shape != (NV,):
            raise ClothConfigError(f"expected {NV} masses, got {masses.shape[0]}")
        if not np.isfinite(masses).all() or (masses < 0).any():
            raise ClothConfigError("masses must be finite and non-negative")
        normals = _vec3_array(normals, NV, "normals")
        distance = check_constraints(distance, DISTANCE_DTYPE, NV, ("a", "b"))
        if (distance["a"] == distance["b"]).any():
            raise ClothConfigError("distance constraint connects a vertex to itself")
        if not (np.isfinite(distance["rest_length"]).all() and (distance["rest_length"] > 0).all()):
            raise ClothConfigError("distance constraint rest lengths must be positive")
        bend = check_constraints(bend, BEND_DTYPE, NV, ("center", "wing_a", "wing_b"), optional=("neighbor",))
        pin_capacity = NV if self._pin_capacity is None else int(self._pin_capacity)
        collision_capacity = NV if self._collision_capacity is None else int(self._collision_capacity)
        if pin_capacity < 0 or collision_capacity < 0:
            raise ClothConfigError("constraint capacities must be non-negative")

        # everything validated: only now swap in the new buffers
        store = BufferStore(pos, masses, normals, distance, bend, pin_capacity, collision_capacity)
        if self.buffers is not None:
            self.buffers.release()
        self.buffers = store
        self.diverged = False
        self.step_count = 0
        logger.info(f"Cloth ready: {NV} vertices, {len(distance)} distance and {len(bend)} bend constraints, "
                    f"{int((masses == 0).sum())} pinned.")

    @property
    def vertex_count(self):
        return self.buffers.NV

    # ---------------------------------------------------------------- step

    def step(self, dt, field_force=(0.0, 0.0, 0.0), pins=None, collisions=None):
        """
        Advance the cloth by `dt`.

        `pins` replaces the current pin constraints (they persist across steps);
        `collisions` are contacts for this step only. Returns the new positions.
        """
        self._check_alive()
        if self.diverged:
            raise SimulationDivergedError("simulation state diverged in an earlier step")
        if not _finite(dt) or dt <= 0.0:
            raise ClothConfigError(f"dt must be a positive finite number, got {dt!r}")
        force = _vec3(field_force, "field_force")
        # nothing is uploaded until every argument has been checked
        if pins is not None:
            pins = self._checked_pins(pins)
        if collisions is not None:
            collisions = check_collision_constraints(collisions, self.vertex_count)
            if len(collisions) > self.buffers.collision_capacity:
                raise ClothConfigError(f"{len(collisions)} collision constraints exceed the capacity of "
                                       f"{self.buffers.collision_capacity}")
        else:
            collisions = np.zeros(0, dtype=COLLISION_DTYPE)
        if pins is not None:
            self.buffers.upload_pins(pins)
        self.buffers.upload_collisions(collisions)

        self._predict(dt, force)
        self._solve_constraints()
        self.dispatcher.barrier()

        pred = self.buffers.read("pred")
        if not np.isfinite(pred).all():
            self.diverged = True
            bad = int((~np.isfinite(pred)).any(axis=1).sum())
            logger.error(f"Step {self.step_count}: {bad} predicted position(s) are not finite.")
            raise SimulationDivergedError(f"{bad} predicted position(s) became non-finite at step {self.step_count}")

        self._commit(dt)
        self.dispatcher.barrier()
        self.step_count += 1
        logger.debug(f"Step {self.step_count} done (dt={dt}).")
        return pred

    def _predict(self, dt, force):
        s, b = self.settings, self.buffers
        self.dispatcher.dispatch(kernels.predict_positions, b.NV, b.pos, b.vel, b.mass, b.normal, b.pred,
                                 ti.math.vec3(*s.gravity), ti.math.vec3(*force), s.damper, dt)

    def _solve_constraints(self):
        s, b = self.settings, self.buffers
        di = 1.0 / s.iteration_count
        for _ in range(s.iteration_count):
            self.dispatcher.dispatch(kernels.clear_corrections, b.NV, b.corr)
            self.dispatcher.dispatch(kernels.project_distance, b.n_distance, b.pred, b.inv_mass,
                                     b.dis_idx, b.dis_len, b.corr,
                                     s.compress_stiffness, s.stretch_stiffness, di)
            self.dispatcher.dispatch(kernels.project_bend, b.n_bend, b.pred, b.inv_mass,
                                     b.bend_idx, b.bend_height, b.corr, s.bend_stiffness, di)
            self.dispatcher.dispatch(kernels.project_pins, b.n_pin, b.pred, b.inv_mass,
                                     b.pin_vertex, b.pin_anchor, b.pin_len, b.corr, s.pin_stiffness)
            self.dispatcher.dispatch(kernels.project_collisions, b.n_collision, b.pred, b.inv_mass,
                                     b.col_vertex, b.col_point, b.col_normal, b.col_thickness, b.corr)
            self.dispatcher.dispatch(kernels.apply_corrections, b.NV, b.pred, b.corr)

    def _commit(self, dt):
        b = self.buffers
        self.dispatcher.dispatch(kernels.commit_positions, b.NV, b.pos, b.vel, b.pred, dt)

    # ------------------------------------------------- between-step access

    def positions(self):
        return self._read("pos")

    def velocities(self):
        return self._read("vel")

    def predicted_positions(self):
        return self._read("pred")

    def masses(self):
        return self._read("mass")

    def set_positions(self, positions):
        self._check_alive()
        self.buffers.write_positions(_vec3_array(positions, self.vertex_count, "positions"))

    def set_normals(self, normals):
        self._check_alive()
        self.buffers.write_normals(_vec3_array(normals, self.vertex_count, "normals"))

    def set_pin_constraints(self, pins):
        self._check_alive()
        self.buffers.upload_pins(self._checked_pins(pins))

    def _checked_pins(self, pins):
        pins = check_constraints(pins, PIN_DTYPE, self.vertex_count, ("vertex",))
        if not (np.isfinite(pins["anchor"]).all() and np.isfinite(pins["rest_length"]).all()):
            raise ClothConfigError("pin anchors and rest lengths must be finite")
        if len(pins) > self.buffers.pin_capacity:
            raise ClothConfigError(f"{len(pins)} pin constraints exceed the capacity of {self.buffers.pin_capacity}")
        return pins

    # ---------------------------------------------------------- lifecycle

    def release(self):
        """Free all buffers. Further calls are no-ops."""
        if self.buffers is not None and self.buffers.release():
            logger.info("Cloth simulator released.")

    close = release

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.release()

    def _read(self, name):
        self._check_alive()
        return self.buffers.read(name)

    def _check_alive(self):
        if self.buffers is None or self.buffers.released:
            raise SimulatorReleasedError("the cloth simulator has been released")


def _finite(x):
    try:
        return math.isfinite(x)
    except TypeError:
        return False


def _vec3(v, name):
    try:
        arr = np.asarray(v, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError):
        raise ClothConfigError(f"{name} must be a finite 3-vector, got {v!r}") from None
    if arr.shape != (3,) or not np.isfinite(arr).all():
        raise ClothConfigError(f"{name} must be a finite 3-vector, got {v!r}")
    return tuple(float(x) for x in arr)


def _vec3_array(a, n, name):
    arr = np.asarray(a, dtype=np.float32)
    if arr.shape != (n, 3):
        raise ClothConfigError(f"{name} must have shape ({n}, 3), got {arr.shape}")
    if not np.isfinite(arr).all():
        raise ClothConfigError(f"{name} contain non-finite values")
    return arr
