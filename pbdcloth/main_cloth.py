"""
Hanging cloth demo.

    Headless, 200 steps, log to a file:   python -m pbdcloth.main_cloth -s 200 -o cloth.log
    With a preview window and some wind:  python -m pbdcloth.main_cloth --gui --wind 0 0 2
"""
import argparse
import logging

import numpy as np
import taichi as ti

from .constraints import plane_contacts
from .dispatch import init_taichi
from .logging_config import setup_logging
from .settings import ClothSettings
from .simulator import ClothSimulator
from .topology import grid_mesh

logger = logging.getLogger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(description='PBD cloth hanging from two corners')
    parser.add_argument('--resolution', '-n', type=int, default=16, help='grid cells per side')
    parser.add_argument('--steps', '-s', type=int, default=100, help='number of steps (headless mode)')
    parser.add_argument('--dt', type=float, default=1.0 / 60.0)
    parser.add_argument('--iterations', '-i', type=int, default=None, help='solver iterations per step')
    parser.add_argument('--config', '-c', type=str, default=None, help='JSON file with cloth settings')
    parser.add_argument('--wind', type=float, nargs=3, default=(0.0, 0.0, 0.0), metavar=('X', 'Y', 'Z'))
    parser.add_argument('--ground', type=float, default=None, help='height of a ground plane')
    parser.add_argument('--arch', default='cpu')
    parser.add_argument('--gui', action='store_true', help='show a ti.GUI preview')
    parser.add_argument('--output', '-o', type=str, default=None, help='log file')
    parser.add_argument('--verbose', '-v', action='store_true')
    return parser


def make_settings(args):
    settings = ClothSettings.from_json(args.config) if args.config else ClothSettings()
    if args.iterations is not None:
        values = settings.to_dict()
        values["iteration_count"] = args.iterations
        settings = ClothSettings.from_dict(values)
    return settings


def make_cloth(args, settings):
    N = args.resolution
    pos, tris = grid_mesh(N, size=1.0, origin=(0.0, 0.0, 0.0))
    pinned = [N, (N + 2) * N]  # the two corners of the top row
    return ClothSimulator(pos, tris, settings, pinned_vertices=pinned), pinned


def step_cloth(cloth, args):
    collisions = None
    if args.ground is not None:
        collisions = plane_contacts(cloth.positions(), (0.0, args.ground, 0.0), (0.0, 1.0, 0.0),
                                    thickness=0.005, margin=0.1)
    return cloth.step(args.dt, field_force=args.wind, collisions=collisions)


def display(gui, cloth, pinned):
    pos = cloth.positions()
    screen = pos[:, :2] * 0.6 + np.array([0.2, 0.3])
    tris = cloth.triangles
    gui.triangles(screen[tris[:, 0]], screen[tris[:, 1]], screen[tris[:, 2]], color=0x00FF00)
    gui.circles(screen, radius=2, color=0x0000FF)
    gui.circles(screen[pinned], radius=5, color=0xFF0000)


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.output)
    init_taichi(args.arch)

    settings = make_settings(args)
    cloth, pinned = make_cloth(args, settings)
    try:
        if args.gui:
            pause = False
            gui = ti.GUI('PBD Cloth')
            while gui.running:
                for e in gui.get_events(ti.GUI.PRESS):
                    if e.key == ti.GUI.ESCAPE:
                        gui.running = False
                    elif e.key == ti.GUI.SPACE:
                        pause = not pause
                if not pause:
                    step_cloth(cloth, args)
                display(gui, cloth, pinned)
                gui.show()
        else:
            for step in range(args.steps):
                pos = step_cloth(cloth, args)
                if step % 10 == 0 or step == args.steps - 1:
                    logger.info(f"step {step}: lowest y = {pos[:, 1].min():.4f}, "
                                f"max speed = {np.linalg.norm(cloth.velocities(), axis=1).max():.4f}")
        return cloth.positions()
    finally:
        cloth.release()


if __name__ == "__main__":
    main()
