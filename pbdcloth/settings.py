"""
Cloth solver settings.

Material and solver tunables consumed as plain numbers. Values are validated
on construction so a simulator never sees an out-of-range configuration.
"""
import json
import math
from dataclasses import dataclass, fields
from typing import Any, Mapping, Tuple

from .errors import ClothConfigError

GRAVITY = (0.0, -9.8, 0.0)


@dataclass(frozen=True)
class ClothSettings:
    density: float = 1.0  # areal density, mass per unit area
    iteration_count: int = 2
    compress_stiffness: float = 0.8
    stretch_stiffness: float = 0.8
    bend_stiffness: float = 0.1
    damper: float = 1.0
    pin_stiffness: float = 1.0
    gravity: Tuple[float, float, float] = GRAVITY

    def __post_init__(self):
        # frozen dataclass: normalise the gravity container through object.__setattr__
        try:
            gravity = tuple(float(g) for g in self.gravity)
        except (TypeError, ValueError):
            raise ClothConfigError(f"gravity must be a 3-vector, got {self.gravity!r}") from None
        object.__setattr__(self, "gravity", gravity)
        self.validate()

    def validate(self) -> None:
        if not _finite(self.density) or self.density <= 0.0:
            raise ClothConfigError(f"density must be a positive number, got {self.density!r}")
        if isinstance(self.iteration_count, bool) or not isinstance(self.iteration_count, int):
            raise ClothConfigError(f"iteration_count must be an integer, got {self.iteration_count!r}")
        if self.iteration_count < 1:
            raise ClothConfigError(f"iteration_count must be at least 1, got {self.iteration_count}")
        for name in ("compress_stiffness", "stretch_stiffness", "bend_stiffness", "pin_stiffness"):
            value = getattr(self, name)
            if not _finite(value) or not 0.0 <= value <= 1.0:
                raise ClothConfigError(f"{name} must lie in [0, 1], got {value!r}")
        if not _finite(self.damper) or self.damper < 0.0:
            raise ClothConfigError(f"damper must be non-negative, got {self.damper!r}")
        if len(self.gravity) != 3 or not all(math.isfinite(g) for g in self.gravity):
            raise ClothConfigError(f"gravity must be a finite 3-vector, got {self.gravity!r}")

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "ClothSettings":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ClothConfigError(f"unknown cloth setting(s): {', '.join(unknown)}")
        return cls(**values)

    @classmethod
    def from_json(cls, path: str) -> "ClothSettings":
        with open(path, "r", encoding="utf-8") as f:
            values = json.load(f)
        if not isinstance(values, dict):
            raise ClothConfigError(f"{path}: expected a JSON object of settings")
        return cls.from_dict(values)

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _finite(value) -> bool:
    if isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except TypeError:
        return False
