"""
Parallel work dispatch.

A kernel is a Taichi kernel whose first argument is the number of work items;
its top-level loop runs one independent invocation per item. The dispatcher
launches it and waits for completion so the next kernel sees every write.
"""
import logging
from collections import Counter

import taichi as ti

logger = logging.getLogger(__name__)

ARCHS = {
    "cpu": ti.cpu,
    "gpu": ti.gpu,
    "cuda": ti.cuda,
    "vulkan": ti.vulkan,
    "metal": ti.metal,
}


def init_taichi(arch="cpu", debug=False, profile=False, **kwargs):
    """ti.init with the float32 defaults the solver kernels are written for."""
    if arch not in ARCHS:
        raise ValueError(f"unknown taichi arch '{arch}', expected one of {sorted(ARCHS)}")
    ti.init(arch=ARCHS[arch], default_fp=ti.f32, default_ip=ti.i32,
            debug=debug, kernel_profiler=profile, **kwargs)
    logger.info(f"Taichi initialized on '{arch}' (debug={debug}, profiler={profile}).")


class TaichiDispatcher:
    """
    Launches Taichi kernels with a barrier after each one.

    `launches` counts dispatches per kernel name, which is handy for profiling
    and for checking the pipeline order in tests.
    """

    def __init__(self, sync=True):
        self.sync = sync
        self.launches = Counter()

    def dispatch(self, kernel, item_count, *args):
        if item_count <= 0:
            return
        kernel(item_count, *args)
        if self.sync:
            ti.sync()
        self.launches[kernel_name(kernel)] += 1

    def barrier(self):
        ti.sync()


def kernel_name(kernel):
    return getattr(kernel, "__name__", repr(kernel))
