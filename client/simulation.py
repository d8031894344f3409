"""
Synthetic pointer paths for demonstrations and tests.

Each generator returns (x, y, t_ms) tuples, suitable for
SimulatedPointerSource. Timestamps start at 0.
"""

import math
import random
from typing import List, Optional, Tuple

Point = Tuple[float, float, float]


def linear_path(
    start: Tuple[float, float] = (100.0, 100.0),
    end: Tuple[float, float] = (800.0, 600.0),
    steps: int = 150,
    step_ms: float = 15.0,
) -> List[Point]:
    """Constant-velocity straight line: the signature of a scripted bot."""
    (x0, y0), (x1, y1) = start, end
    return [
        (x0 + (x1 - x0) * i / steps, y0 + (y1 - y0) * i / steps, i * step_ms)
        for i in range(steps + 1)
    ]


def noise_path(
    start: Tuple[float, float] = (100.0, 100.0),
    end: Tuple[float, float] = (800.0, 600.0),
    steps: int = 150,
    step_ms: float = 15.0,
    amplitude: float = 50.0,
    seed: Optional[int] = None,
) -> List[Point]:
    """Straight line with uniform positional noise; jittery but evenly paced."""
    rng = random.Random(seed)
    (x0, y0), (x1, y1) = start, end
    points = []
    for i in range(steps + 1):
        x = x0 + (x1 - x0) * i / steps + (rng.random() - 0.5) * amplitude
        y = y0 + (y1 - y0) * i / steps + (rng.random() - 0.5) * amplitude
        points.append((x, y, i * step_ms))
    return points


def human_path(
    start: Tuple[float, float] = (100.0, 100.0),
    end: Tuple[float, float] = (800.0, 600.0),
    steps: int = 150,
    step_ms: float = 16.0,
    tremor: float = 2.0,
    approach_share: float = 0.8,
    seed: Optional[int] = None,
) -> List[Point]:
    """
    Path with tremor and a slow final approach.

    The first `approach_share` of the samples cover most of the distance;
    the remainder creep towards the target at a third of the pace, the way
    a hand settles on a button.
    """
    rng = random.Random(seed)
    (x0, y0), (x1, y1) = start, end
    length = math.hypot(x1 - x0, y1 - y0)
    ux, uy = (x1 - x0) / length, (y1 - y0) / length  # unit direction
    nx, ny = -uy, ux                                 # unit normal

    fast_steps = int(steps * approach_share)
    slow_steps = steps - fast_steps
    # Progress weights: fast steps count 3, slow steps count 1
    total_weight = fast_steps * 3 + slow_steps

    points = []
    progress = 0.0
    t = 0.0
    for i in range(steps + 1):
        along = length * progress / total_weight
        offset = rng.gauss(0.0, tremor)
        x = x0 + ux * along + nx * offset
        y = y0 + uy * along + ny * offset
        points.append((x, y, t))

        progress += 3 if i < fast_steps else 1
        t += step_ms + rng.uniform(-3.0, 3.0)
    return points
