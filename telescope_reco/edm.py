from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Tuple

import numpy as np

# |cos| or |sin| below this is an exactly perpendicular/parallel direction
DIRECTION_ZERO_TOL = 1e-12


class BoundIndex(IntEnum):
    """Layout of the 6-component bound parameter vector."""
    LOC0 = 0
    LOC1 = 1
    PHI = 2
    THETA = 3
    QOP = 4
    TIME = 5


BOUND_SIZE = len(BoundIndex)


def signed_ratio(numerator: float, denominator: float) -> float:
    r"""
    ``numerator / denominator`` that maps a zero denominator to a signed infinity.

    The sign follows IEEE-754 division: ``sign(numerator) * sign(denominator)``
    where the denominator's sign is that of its signed zero. A zero numerator
    over a zero denominator is ``nan``.
    """
    num = float(numerator)
    den = float(denominator)
    if den == 0.0:
        if num == 0.0:
            return math.nan
        return math.copysign(math.inf, num) * math.copysign(1.0, den)
    return num / den


def residual(fit: float, truth: float) -> float:
    """Signed difference ``fit - truth``; identical values (matching infinities too) give 0."""
    if fit == truth:
        return 0.0
    return float(fit) - float(truth)


def direction_from_angles(phi: float, theta: float) -> np.ndarray:
    r"""
    Unit direction :math:`(\cos\phi\sin\theta,\ \sin\phi\sin\theta,\ \cos\theta)`.

    Trigonometric factors with magnitude below :data:`DIRECTION_ZERO_TOL` are
    snapped to exact zeros, so e.g. :math:`\theta=\pi/2` gives a direction with
    an exactly zero z component.
    """
    def snap(v: float) -> float:
        return 0.0 if abs(v) < DIRECTION_ZERO_TOL else v

    st, ct = snap(math.sin(theta)), snap(math.cos(theta))
    sp, cp = snap(math.sin(phi)), snap(math.cos(phi))
    return np.array([cp * st, sp * st, ct], dtype=np.float64)


def angles_from_direction(direction: np.ndarray) -> Tuple[float, float]:
    """Global ``(phi, theta)`` of a (not necessarily unit) direction vector."""
    d = np.asarray(direction, dtype=np.float64)
    n = float(np.linalg.norm(d))
    if n == 0.0:
        raise ValueError("Direction vector has zero length.")
    phi = math.atan2(float(d[1]), float(d[0]))
    theta = math.acos(max(-1.0, min(1.0, float(d[2]) / n)))
    return phi, theta


@dataclass(frozen=True, slots=True)
class Particle:
    r"""
    A simulated truth particle.

    Only ``particle_id`` takes part in equality and hashing, so a particle can
    key the contribution multisets of the truth index.

    Attributes
    ----------
    particle_id : int
        Identity within the event.
    momentum : tuple of float
        Global momentum :math:`(p_x, p_y, p_z)` at production (GeV).
    charge : float
        Signed charge in units of :math:`e`.
    vertex : tuple of float
        Production vertex (mm).
    time : float
        Production time (ns).
    mass : float
        Rest mass (GeV).
    """
    particle_id: int
    momentum: Tuple[float, float, float] = field(compare=False)
    charge: float = field(compare=False)
    vertex: Tuple[float, float, float] = field(default=(0.0, 0.0, 0.0), compare=False)
    time: float = field(default=0.0, compare=False)
    mass: float = field(default=0.0, compare=False)

    @property
    def momentum_vector(self) -> np.ndarray:
        return np.asarray(self.momentum, dtype=np.float64)

    @property
    def p(self) -> float:
        return float(np.linalg.norm(self.momentum_vector))


@dataclass(frozen=True, order=True, slots=True)
class Measurement:
    r"""
    A 2D local measurement on a detector surface.

    Equality and ordering use ``(measurement_id, surface_link, local0, local1)``;
    variances and time are payload only.
    """
    measurement_id: int
    surface_link: int
    local0: float
    local1: float
    var_local0: float = field(default=0.0, compare=False)
    var_local1: float = field(default=0.0, compare=False)
    time: float = field(default=0.0, compare=False)

    @property
    def local(self) -> np.ndarray:
        return np.array([self.local0, self.local1], dtype=np.float64)

    @property
    def variance(self) -> np.ndarray:
        return np.array([self.var_local0, self.var_local1], dtype=np.float64)


@dataclass(slots=True)
class TruthPoint:
    """Truth global position (mm), momentum (GeV) and time (ns) where a measurement was produced."""
    position: np.ndarray
    momentum: np.ndarray
    time: float = 0.0


@dataclass(slots=True)
class BoundParameters:
    r"""
    Track parameters expressed on a surface.

    The vector layout is ``[loc0, loc1, phi, theta, qop, time]``
    (see :class:`BoundIndex`). ``phi`` and ``theta`` are the **global**
    direction angles, so the derived inverse momenta are

    .. math::

        \frac{q}{p_T} = \frac{q/p}{\sin\theta},\qquad
        \frac{q}{p_z} = \frac{q/p}{\cos\theta}\ \ (\text{signed}).
    """
    vector: np.ndarray
    surface_link: int
    covariance: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        self.vector = np.asarray(self.vector, dtype=np.float64).reshape(BOUND_SIZE)
        if self.covariance is not None:
            self.covariance = np.asarray(self.covariance, dtype=np.float64).reshape(BOUND_SIZE, BOUND_SIZE)

    @property
    def bound_local(self) -> np.ndarray:
        return self.vector[[BoundIndex.LOC0, BoundIndex.LOC1]].copy()

    @property
    def phi(self) -> float:
        return float(self.vector[BoundIndex.PHI])

    @property
    def theta(self) -> float:
        return float(self.vector[BoundIndex.THETA])

    @property
    def time(self) -> float:
        return float(self.vector[BoundIndex.TIME])

    @property
    def direction(self) -> np.ndarray:
        return direction_from_angles(self.phi, self.theta)

    def qop(self) -> float:
        return float(self.vector[BoundIndex.QOP])

    def qopT(self) -> float:
        s = math.sin(self.theta)
        if abs(s) < DIRECTION_ZERO_TOL:
            s = 0.0
        return signed_ratio(self.qop(), s)

    def qopz(self) -> float:
        c = math.cos(self.theta)
        if abs(c) < DIRECTION_ZERO_TOL:
            c = 0.0
        return signed_ratio(self.qop(), c)


@dataclass(slots=True)
class SeedState:
    """Smeared initial estimate for one truth particle, with its diagonal uncertainty model."""
    parameters: BoundParameters
    stddevs: np.ndarray
    particle_id: int

    @property
    def covariance(self) -> np.ndarray:
        return np.diag(np.asarray(self.stddevs, dtype=np.float64) ** 2)


@dataclass(slots=True)
class TruthCandidate:
    """One truth particle's measurements in path order plus its seed; the fitter input."""
    particle: Particle
    measurements: List[Measurement]
    seed: SeedState


@dataclass(slots=True)
class TrackState:
    """Fitted state on one surface: its measurement and the smoothed parameters."""
    measurement: Measurement
    smoothed: BoundParameters
    filtered: Optional[BoundParameters] = None
    chi2: float = 0.0

    @property
    def surface_link(self) -> int:
        return self.measurement.surface_link


@dataclass(slots=True)
class FitResult:
    """Summary header of a fitted track."""
    chi2: float = 0.0
    ndf: float = 0.0
    particle_id: Optional[int] = None


@dataclass(slots=True)
class FittedTrack:
    """Ordered per-surface fitted states plus the fit summary. Read-only to the core."""
    header: FitResult
    states: List[TrackState] = field(default_factory=list)


RESIDUAL_COLUMNS: Tuple[str, ...] = (
    "fit_qop", "fit_qopT", "fit_qopz",
    "truth_qop", "truth_qopT", "truth_qopz",
    "qop_residual", "qopT_residual", "qopz_residual",
)


@dataclass(frozen=True, slots=True)
class ResidualRecord:
    r"""
    Fitted and truth inverse momenta of one track, with their differences.

    The residuals are computed once on construction as ``fit - truth``
    (see :func:`residual`).
    """
    fit_qop: float
    fit_qopT: float
    fit_qopz: float
    truth_qop: float
    truth_qopT: float
    truth_qopz: float
    qop_residual: float = field(init=False)
    qopT_residual: float = field(init=False)
    qopz_residual: float = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "qop_residual", residual(self.fit_qop, self.truth_qop))
        object.__setattr__(self, "qopT_residual", residual(self.fit_qopT, self.truth_qopT))
        object.__setattr__(self, "qopz_residual", residual(self.fit_qopz, self.truth_qopz))

    def as_row(self) -> Tuple[float, ...]:
        return tuple(getattr(self, c) for c in RESIDUAL_COLUMNS)
