r"""
Magnetic-field grid sampler for the telescope magnet.

Writes a regular 3D grid of field samples as plain text, one ``x y z bx by bz``
line per node, traversed with x as the outer, y as the middle and z as the
inner axis. Coordinates are always computed from integer indices,

.. math::

    x_i = x_0 + i\,\Delta,\qquad i = 0,\dots,\left\lceil\frac{x_1-x_0}{\Delta}\right\rceil-1,

so the node count and the boundary values never depend on accumulated
floating-point steps.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

import numpy as np
import pandas as pd
from numba import njit

from telescope_reco.field import GridField

logger = logging.getLogger(__name__)

FIELD_GRID_COLUMNS: Tuple[str, ...] = ("x", "y", "z", "bx", "by", "bz")


@dataclass(frozen=True)
class FieldGridConfig:
    r"""
    Sampled volume and magnet description (mm, T).

    A point is inside the magnet iff its x lies in any of ``magnet_x_ranges``
    (inclusive) **and** :math:`|y|\le` ``magnet_half_y`` **and**
    :math:`|z|\le` ``magnet_half_z``. Inside points get ``field``; all others
    the zero vector.
    """
    start: Tuple[float, float, float] = (-100.0, -500.0, -500.0)
    end: Tuple[float, float, float] = (1000.0, 500.0, 500.0)
    spacing: float = 10.0
    magnet_x_ranges: Tuple[Tuple[float, float], ...] = ((40.0, 50.0), (210.0, 220.0))
    magnet_half_y: float = 10.0
    magnet_half_z: float = 10.0
    field: Tuple[float, float, float] = (0.0, 0.5, 0.0)


def axis_size(start: float, end: float, spacing: float) -> int:
    """Number of nodes in ``[start, end)``: ``ceil((end - start) / spacing)``."""
    if spacing <= 0.0:
        raise ValueError("spacing must be positive.")
    q = (float(end) - float(start)) / float(spacing)
    r = round(q)
    n = int(r) if abs(q - r) < 1e-9 else math.ceil(q)
    return max(n, 0)


def grid_axes(config: FieldGridConfig = FieldGridConfig()) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Node coordinates along x, y, z, built from integer indices."""
    out = []
    for a in range(3):
        n = axis_size(config.start[a], config.end[a], config.spacing)
        out.append(float(config.start[a]) + float(config.spacing) * np.arange(n, dtype=np.float64))
    return out[0], out[1], out[2]


def grid_size(config: FieldGridConfig = FieldGridConfig()) -> int:
    nx, ny, nz = (axis_size(config.start[a], config.end[a], config.spacing) for a in range(3))
    return nx * ny * nz


def is_in_magnet(x: float, y: float, z: float, config: FieldGridConfig = FieldGridConfig()) -> bool:
    in_x = any(lo <= x <= hi for lo, hi in config.magnet_x_ranges)
    return in_x and abs(y) <= config.magnet_half_y and abs(z) <= config.magnet_half_z


def field_at(x: float, y: float, z: float, config: FieldGridConfig = FieldGridConfig()) -> Tuple[float, float, float]:
    return tuple(config.field) if is_in_magnet(x, y, z, config) else (0.0, 0.0, 0.0)


@njit(cache=True)
def _fill_samples(xs, ys, zs, x_lo, x_hi, half_y, half_z, b):
    nx, ny, nz = xs.size, ys.size, zs.size
    out = np.zeros((nx * ny * nz, 6), dtype=np.float64)
    row = 0
    for i in range(nx):
        x = xs[i]
        in_x = False
        for r in range(x_lo.size):
            if x >= x_lo[r] and x <= x_hi[r]:
                in_x = True
        for j in range(ny):
            y = ys[j]
            for k in range(nz):
                z = zs[k]
                out[row, 0] = x
                out[row, 1] = y
                out[row, 2] = z
                if in_x and abs(y) <= half_y and abs(z) <= half_z:
                    out[row, 3] = b[0]
                    out[row, 4] = b[1]
                    out[row, 5] = b[2]
                row += 1
    return out


def _kernel_args(config: FieldGridConfig):
    ranges = np.asarray(config.magnet_x_ranges, dtype=np.float64).reshape(-1, 2)
    return (
        np.ascontiguousarray(ranges[:, 0]),
        np.ascontiguousarray(ranges[:, 1]),
        float(config.magnet_half_y),
        float(config.magnet_half_z),
        np.asarray(config.field, dtype=np.float64),
    )


def sample_field_grid(config: FieldGridConfig = FieldGridConfig()) -> np.ndarray:
    r"""
    All grid samples as an ``(N, 6)`` array ``[x, y, z, bx, by, bz]`` in
    x-major / y-mid / z-minor order.
    """
    xs, ys, zs = grid_axes(config)
    return _fill_samples(xs, ys, zs, *_kernel_args(config))


def write_field_grid(path: Path | str, config: FieldGridConfig = FieldGridConfig()) -> int:
    r"""
    Stream the grid to ``path`` (no header, space separated, ``%g`` values).

    The file is written one x-slab at a time, so memory stays bounded by
    ``ny * nz`` rows.

    Returns
    -------
    int
        Number of lines written.
    """
    path = Path(path)
    xs, ys, zs = grid_axes(config)
    args = _kernel_args(config)
    n_written = 0
    with path.open("w", encoding="ascii") as fh:
        for i in range(xs.size):
            slab = _fill_samples(xs[i:i + 1], ys, zs, *args)
            np.savetxt(fh, slab, fmt="%g", delimiter=" ")
            n_written += slab.shape[0]
    logger.info("Wrote %d field samples (%dx%dx%d) to %s", n_written, xs.size, ys.size, zs.size, path)
    return n_written


def read_field_grid(path: Path | str) -> GridField:
    """Load a text dump written by :func:`write_field_grid` into an interpolating :class:`GridField`."""
    df = pd.read_csv(path, sep=r"\s+", header=None, names=list(FIELD_GRID_COLUMNS), dtype=np.float64)
    logger.info("Read %d field samples from %s", len(df), path)
    return GridField.from_samples(df.to_numpy(dtype=np.float64, copy=False))
