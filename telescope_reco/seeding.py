r"""
Smeared seed estimates for truth-matched fitting.

For a truth particle and the first measurement on its path, the unsmeared
bound vector on that measurement's surface is

.. math::

    \mathbf{b} = \bigl(l_0,\ l_1,\ \phi,\ \theta,\ q/|\mathbf{p}|,\ t\bigr),

and every component is smeared with an independent Gaussian,
:math:`b_i' = b_i + \sigma_i\,\varepsilon_i`, :math:`\varepsilon_i\sim\mathcal N(0,1)`.
The seed covariance is :math:`\mathrm{diag}(\sigma_i^2)` with

.. math::

    \sigma = \bigl(\sigma_{l},\ \sigma_{l},\ \sigma_{\alpha},\ \sigma_{\alpha},\
    f_{q/p}\,\frac{|q|}{|\mathbf{p}|},\ \sigma_t\bigr).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from telescope_reco.edm import (
    BOUND_SIZE,
    BoundParameters,
    Measurement,
    Particle,
    SeedState,
    TruthPoint,
    angles_from_direction,
)
from telescope_reco.errors import DegenerateTrajectoryError, collaborator_errors
from telescope_reco.interfaces import SurfaceGeometry

logger = logging.getLogger(__name__)

QOP_SCALES = ("particle", "event")


@dataclass
class SeedConfig:
    r"""
    Seed uncertainty model.

    Attributes
    ----------
    loc_stddev : float
        Per local axis (mm).
    angle_stddev : float
        Per direction angle, :math:`\phi` and :math:`\theta` (rad).
    time_stddev : float
        Time (ns).
    qop_fraction : float
        Relative q/p resolution :math:`f_{q/p}`.
    qop_scale : {"particle", "event"}
        Which particle's momentum scales the q/p width: the seeded particle,
        or the event's reference particle (first in load order).
    """
    loc_stddev: float = 0.02
    angle_stddev: float = 0.0085
    time_stddev: float = 1.0
    qop_fraction: float = 0.05
    qop_scale: str = "particle"

    def __post_init__(self) -> None:
        if self.qop_scale not in QOP_SCALES:
            raise ValueError(f"qop_scale must be one of {QOP_SCALES}, got {self.qop_scale!r}")


def qop_stddev(particle: Particle, fraction: float = 0.05) -> float:
    """``fraction * |q| / |p|``; a zero-momentum particle raises :class:`DegenerateTrajectoryError`."""
    p = particle.p
    if p == 0.0:
        raise DegenerateTrajectoryError(f"Particle {particle.particle_id} has zero momentum")
    return float(fraction) * abs(particle.charge) / p


class SeedGenerator:
    r"""
    Turn truth particles into smeared :class:`~telescope_reco.edm.SeedState` objects.

    Parameters
    ----------
    config : SeedConfig, optional
        Uncertainty model.
    rng : numpy.random.Generator or int or None, optional
        Random source, or a seed for :func:`numpy.random.default_rng`. Two
        generators built from the same seed produce identical seeds.
    """

    def __init__(self, config: Optional[SeedConfig] = None, rng: np.random.Generator | int | None = None) -> None:
        self.config = config if config is not None else SeedConfig()
        self.rng = rng if isinstance(rng, np.random.Generator) else np.random.default_rng(rng)

    def stddevs(self, particle: Particle, reference_particle: Optional[Particle] = None) -> np.ndarray:
        cfg = self.config
        scale_by = particle
        if cfg.qop_scale == "event" and reference_particle is not None:
            scale_by = reference_particle
        return np.array(
            [
                cfg.loc_stddev,
                cfg.loc_stddev,
                cfg.angle_stddev,
                cfg.angle_stddev,
                qop_stddev(scale_by, cfg.qop_fraction),
                cfg.time_stddev,
            ],
            dtype=np.float64,
        )

    def truth_parameters(
        self,
        particle: Particle,
        measurement: Measurement,
        geometry: SurfaceGeometry,
        truth_point: Optional[TruthPoint] = None,
    ) -> BoundParameters:
        r"""
        Unsmeared bound parameters of ``particle`` on ``measurement``'s surface.

        With a ``truth_point`` the local position is the truth global position
        mapped through ``geometry``, and direction, momentum and time come from
        the truth hit. Without one, the measured local position, the
        particle's production momentum and the measurement time are used.

        Raises
        ------
        DegenerateTrajectoryError
            Zero momentum.
        ExternalCollaboratorError
            If the geometry fails to convert the position.
        """
        link = measurement.surface_link
        if truth_point is not None:
            momentum = np.asarray(truth_point.momentum, dtype=np.float64)
        else:
            momentum = particle.momentum_vector
        p = float(np.linalg.norm(momentum))
        if p == 0.0:
            raise DegenerateTrajectoryError(
                f"Particle {particle.particle_id} has zero momentum at measurement {measurement.measurement_id}"
            )
        phi, theta = angles_from_direction(momentum)
        if truth_point is not None:
            with collaborator_errors("geometry"):
                local = geometry.global_to_bound(link, truth_point.position, momentum / p)
            t = float(truth_point.time)
        else:
            local = measurement.local
            t = float(measurement.time)
        vector = np.array([local[0], local[1], phi, theta, particle.charge / p, t], dtype=np.float64)
        return BoundParameters(vector, link)

    def generate(
        self,
        particle: Particle,
        first_measurement: Measurement,
        geometry: SurfaceGeometry,
        truth_point: Optional[TruthPoint] = None,
        reference_particle: Optional[Particle] = None,
    ) -> SeedState:
        """Smeared seed on the first measurement's surface (see :meth:`truth_parameters`)."""
        sig = self.stddevs(particle, reference_particle)
        truth = self.truth_parameters(particle, first_measurement, geometry, truth_point)
        smeared = truth.vector + sig * self.rng.standard_normal(BOUND_SIZE)
        params = BoundParameters(smeared, truth.surface_link, covariance=np.diag(sig ** 2))
        logger.debug(
            "Seed for particle %d on surface %d: %s",
            particle.particle_id, truth.surface_link, np.array2string(smeared, precision=5),
        )
        return SeedState(parameters=params, stddevs=sig, particle_id=particle.particle_id)
