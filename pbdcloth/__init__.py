"""Position-based dynamics cloth simulation on Taichi."""
from .constraints import (BEND_DTYPE, COLLISION_DTYPE, DISTANCE_DTYPE, PIN_DTYPE, build_bend_constraints,
                          build_distance_constraints, make_collision_constraints, make_pin_constraints,
                          pin_vertices, plane_contacts)
from .dispatch import TaichiDispatcher, init_taichi
from .errors import ClothConfigError, SimulationDivergedError, SimulatorReleasedError
from .logging_config import setup_logging
from .settings import ClothSettings
from .simulator import ClothSimulator
from .topology import compute_vertex_masses, compute_vertex_normals, grid_mesh, unique_edges

__version__ = "0.1.0"
