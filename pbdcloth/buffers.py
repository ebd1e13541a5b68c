"""
Buffer store: owns every Taichi field of one simulator.

Fields live in their own SNode tree so they can be destroyed explicitly when
the simulator is released or its topology is rebuilt. Constraint families
with no records still get a one-element placeholder (Taichi fields cannot be
empty); the real record counts are kept alongside.
"""
import logging

import numpy as np
import taichi as ti

from .constraints import COLLISION_DTYPE, PIN_DTYPE
from .errors import ClothConfigError, SimulatorReleasedError

logger = logging.getLogger(__name__)


class BufferStore:
    def __init__(self, positions, masses, normals, distance, bend, pin_capacity, collision_capacity):
        NV = len(positions)
        self.NV = NV
        self.n_distance = len(distance)
        self.n_bend = len(bend)
        self.n_pin = 0
        self.n_collision = 0
        self.pin_capacity = int(pin_capacity)
        self.collision_capacity = int(collision_capacity)

        # per-vertex
        self.pos = ti.Vector.field(3, ti.f32)
        self.vel = ti.Vector.field(3, ti.f32)
        self.mass = ti.field(ti.f32)
        self.inv_mass = ti.field(ti.f32)
        self.normal = ti.Vector.field(3, ti.f32)
        self.pred = ti.Vector.field(3, ti.f32)
        self.corr = ti.Vector.field(3, ti.f32)  # correction accumulator
        # per-constraint
        self.dis_idx = ti.Vector.field(2, ti.i32)
        self.dis_len = ti.field(ti.f32)
        self.bend_idx = ti.Vector.field(4, ti.i32)
        self.bend_height = ti.field(ti.f32)
        self.pin_vertex = ti.field(ti.i32)
        self.pin_anchor = ti.Vector.field(3, ti.f32)
        self.pin_len = ti.field(ti.f32)
        self.col_vertex = ti.field(ti.i32)
        self.col_point = ti.Vector.field(3, ti.f32)
        self.col_normal = ti.Vector.field(3, ti.f32)
        self.col_thickness = ti.field(ti.f32)

        fb = ti.FieldsBuilder()
        fb.dense(ti.i, NV).place(self.pos, self.vel, self.mass, self.inv_mass,
                                 self.normal, self.pred, self.corr)
        fb.dense(ti.i, max(self.n_distance, 1)).place(self.dis_idx, self.dis_len)
        fb.dense(ti.i, max(self.n_bend, 1)).place(self.bend_idx, self.bend_height)
        fb.dense(ti.i, max(self.pin_capacity, 1)).place(self.pin_vertex, self.pin_anchor, self.pin_len)
        fb.dense(ti.i, max(self.collision_capacity, 1)).place(
            self.col_vertex, self.col_point, self.col_normal, self.col_thickness)
        self._tree = fb.finalize()
        self.released = False

        self.pos.from_numpy(np.ascontiguousarray(positions, dtype=np.float32))
        self.pred.from_numpy(np.ascontiguousarray(positions, dtype=np.float32))
        self.vel.from_numpy(np.zeros((NV, 3), dtype=np.float32))
        self.corr.from_numpy(np.zeros((NV, 3), dtype=np.float32))
        self.normal.from_numpy(np.ascontiguousarray(normals, dtype=np.float32))
        m = np.asarray(masses, dtype=np.float32)
        inv = np.zeros_like(m)
        np.divide(1.0, m, out=inv, where=m > 0)
        self.mass.from_numpy(m)
        self.inv_mass.from_numpy(inv)
        if self.n_distance:
            self.dis_idx.from_numpy(np.stack([distance["a"], distance["b"]], axis=1).astype(np.int32))
            self.dis_len.from_numpy(distance["rest_length"].astype(np.float32))
        if self.n_bend:
            idx = np.stack([bend["center"], bend["wing_a"], bend["wing_b"], bend["neighbor"]], axis=1)
            self.bend_idx.from_numpy(idx.astype(np.int32))
            self.bend_height.from_numpy(bend["rest_height"].astype(np.float32))
        logger.debug(f"Allocated buffers: {NV} vertices, {self.n_distance} distance, {self.n_bend} bend, "
                     f"pin capacity {self.pin_capacity}, collision capacity {self.collision_capacity}.")

    def upload_pins(self, pins):
        self._check_alive()
        n = len(pins)
        if n > self.pin_capacity:
            raise ClothConfigError(f"{n} pin constraints exceed the capacity of {self.pin_capacity}")
        padded = _pad(pins, PIN_DTYPE, max(self.pin_capacity, 1))
        self.pin_vertex.from_numpy(padded["vertex"].astype(np.int32))
        self.pin_anchor.from_numpy(np.ascontiguousarray(padded["anchor"], dtype=np.float32))
        self.pin_len.from_numpy(padded["rest_length"].astype(np.float32))
        self.n_pin = n

    def upload_collisions(self, collisions):
        self._check_alive()
        n = len(collisions)
        if n > self.collision_capacity:
            raise ClothConfigError(f"{n} collision constraints exceed the capacity of {self.collision_capacity}")
        if n == 0:
            self.n_collision = 0
            return
        padded = _pad(collisions, COLLISION_DTYPE, max(self.collision_capacity, 1))
        self.col_vertex.from_numpy(padded["vertex"].astype(np.int32))
        self.col_point.from_numpy(np.ascontiguousarray(padded["point"], dtype=np.float32))
        self.col_normal.from_numpy(np.ascontiguousarray(padded["normal"], dtype=np.float32))
        self.col_thickness.from_numpy(padded["thickness"].astype(np.float32))
        self.n_collision = n

    def write_positions(self, positions):
        """Overwrite positions and predicted positions between steps."""
        self._check_alive()
        arr = np.ascontiguousarray(positions, dtype=np.float32)
        self.pos.from_numpy(arr)
        self.pred.from_numpy(arr)

    def write_normals(self, normals):
        self._check_alive()
        self.normal.from_numpy(np.ascontiguousarray(normals, dtype=np.float32))

    def read(self, name):
        """Host copy of a per-vertex buffer ('pos', 'vel', 'pred', 'mass', ...)."""
        self._check_alive()
        return getattr(self, name).to_numpy()

    def release(self):
        if self.released:
            return False
        self._tree.destroy()
        self.released = True
        logger.debug("Released simulator buffers.")
        return True

    def _check_alive(self):
        if self.released:
            raise SimulatorReleasedError("buffers have been released")


def _pad(records, dtype, size):
    out = np.zeros(size, dtype=dtype)
    out[:len(records)] = records
    return out
