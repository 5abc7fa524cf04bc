from __future__ import annotations

from typing import Sequence

import numpy as np
from scipy.interpolate import RegularGridInterpolator

from telescope_reco.interfaces import MagneticField


class ConstantField(MagneticField):
    """Homogeneous field (T); the zero field by default."""

    def __init__(self, value: Sequence[float] = (0.0, 0.0, 0.0)) -> None:
        self.value = np.asarray(value, dtype=np.float64).reshape(3)

    def at(self, position: np.ndarray) -> np.ndarray:
        return self.value.copy()


class GridField(MagneticField):
    r"""
    Field map sampled on a regular 3D grid, evaluated by trilinear interpolation.

    Points outside the sampled volume evaluate to the zero field.

    Parameters
    ----------
    axes : sequence of three 1D arrays
        Strictly increasing grid coordinates along x, y, z (mm).
    values : ndarray, shape (nx, ny, nz, 3)
        Field vector at every grid node (T).
    """

    def __init__(self, axes: Sequence[np.ndarray], values: np.ndarray) -> None:
        self.axes = tuple(np.asarray(a, dtype=np.float64) for a in axes)
        self.values = np.asarray(values, dtype=np.float64)
        shape = tuple(a.size for a in self.axes) + (3,)
        if self.values.shape != shape:
            raise ValueError(f"Field values have shape {self.values.shape}, expected {shape}")
        self._interp = RegularGridInterpolator(
            self.axes, self.values, method="linear", bounds_error=False, fill_value=0.0
        )

    @classmethod
    def from_samples(cls, samples: np.ndarray) -> "GridField":
        r"""
        Build from ``(N, 6)`` rows ``x y z bx by bz`` covering a full regular grid.

        Row order does not matter; every node of the grid spanned by the
        unique x, y, z values must be present exactly once.
        """
        s = np.asarray(samples, dtype=np.float64)
        if s.ndim != 2 or s.shape[1] != 6:
            raise ValueError("Field samples must have shape (N, 6).")
        axes = [np.unique(s[:, k]) for k in range(3)]
        n = tuple(a.size for a in axes)
        if n[0] * n[1] * n[2] != s.shape[0]:
            raise ValueError(
                f"Field samples do not form a full grid: {s.shape[0]} rows for {n[0]}x{n[1]}x{n[2]} nodes"
            )
        idx = [np.searchsorted(axes[k], s[:, k]) for k in range(3)]
        values = np.zeros(n + (3,), dtype=np.float64)
        values[idx[0], idx[1], idx[2]] = s[:, 3:6]
        return cls(axes, values)

    def at(self, position: np.ndarray) -> np.ndarray:
        p = np.asarray(position, dtype=np.float64).reshape(1, 3)
        return self._interp(p)[0]
