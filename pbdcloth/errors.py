class ClothConfigError(ValueError):
    """Invalid settings, mesh data or per-step input."""


class SimulationDivergedError(RuntimeError):
    """Predicted positions became non-finite during a step."""


class SimulatorReleasedError(RuntimeError):
    """The simulator's buffers have already been released."""
