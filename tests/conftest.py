import pytest

from pbdcloth import ClothSettings, init_taichi
from pbdcloth.dispatch import TaichiDispatcher, kernel_name


@pytest.fixture(scope="session", autouse=True)
def taichi_cpu():
    init_taichi("cpu")


class RecordingDispatcher(TaichiDispatcher):
    """Keeps the launch order so tests can check the step pipeline."""

    def __init__(self):
        super().__init__()
        self.order = []

    def dispatch(self, kernel, item_count, *args):
        if item_count > 0:
            self.order.append(kernel_name(kernel))
        super().dispatch(kernel, item_count, *args)


@pytest.fixture
def still_settings():
    """No gravity, no damping: only the constraints move vertices."""
    return ClothSettings(iteration_count=1, compress_stiffness=1.0, stretch_stiffness=1.0,
                         damper=0.0, gravity=(0.0, 0.0, 0.0))


@pytest.fixture
def recording_dispatcher():
    return RecordingDispatcher()
