r"""
Reference straight-line Kalman fitter for the telescope.

All measurement planes of a track must be parallel. The fit runs in the frame
of the first measurement's plane, with in-plane axes :math:`\mathbf u,\mathbf v`,
normal :math:`\mathbf n` and centre :math:`\mathbf c_0`. At depth
:math:`d=(\mathbf x-\mathbf c_0)\cdot\mathbf n` the state is

.. math::

    \mathbf x = (a,\ b,\ s_a,\ s_b),\qquad
    s_a = \frac{\mathrm d a}{\mathrm d d} = \frac{\hat{\mathbf t}\cdot\mathbf u}{\hat{\mathbf t}\cdot\mathbf n},\quad
    s_b = \frac{\hat{\mathbf t}\cdot\mathbf v}{\hat{\mathbf t}\cdot\mathbf n},

and transport between planes is linear,

.. math::

    F(\Delta d) = \begin{pmatrix} I_2 & \Delta d\,I_2\\ 0 & I_2 \end{pmatrix},\qquad
    H = \begin{pmatrix} I_2 & 0 \end{pmatrix}.

Measurements are updated with the Joseph form and the filtered states are
smoothed backwards with a Rauch–Tung–Striebel pass. A straight line carries
no momentum information, so :math:`q/p` (and its variance) is taken from the
seed unchanged, and the magnetic field is not consulted.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from telescope_reco.edm import (
    BoundIndex,
    BoundParameters,
    FitResult,
    FittedTrack,
    Measurement,
    TrackState,
    TruthCandidate,
    angles_from_direction,
)
from telescope_reco.interfaces import Fitter, MagneticField, SurfaceGeometry
from telescope_reco.kalman_kernels import chi2, joseph_update, kalman_gain, smoother_gain

logger = logging.getLogger(__name__)

SPEED_OF_LIGHT = 299.792458  # mm / ns
_PARALLEL_TOL = 1e-9
_H = np.hstack([np.eye(2), np.zeros((2, 2))])


@dataclass
class FitterConfig:
    r"""
    Attributes
    ----------
    measurement_stddev : float
        Local resolution (mm) used for any measurement that carries a zero
        variance.
    slope_noise : float
        Slope variance added per mm of transport (multiple-scattering proxy).
    smoothing : bool
        Run the backward smoother; otherwise smoothed states equal filtered ones.
    """
    measurement_stddev: float = 0.01
    slope_noise: float = 0.0
    smoothing: bool = True


def _transport(dz: float) -> np.ndarray:
    F = np.eye(4)
    F[0, 2] = dz
    F[1, 3] = dz
    return F


class _PlaneFrame:
    """Common coordinate frame spanned by the first plane of a track."""

    def __init__(self, surface) -> None:
        self.center = np.asarray(surface.center, dtype=np.float64)
        self.u = np.asarray(surface.axis_u, dtype=np.float64)
        self.v = np.asarray(surface.axis_v, dtype=np.float64)
        self.n = np.cross(self.u, self.v)

    def plane(self, surface) -> Tuple[float, np.ndarray, np.ndarray]:
        r"""
        Depth, rotation and offset of ``surface`` in this frame.

        A local point :math:`l` on the surface has frame coordinates
        :math:`R\,l + o`.
        """
        n_k = np.cross(surface.axis_u, surface.axis_v)
        if abs(abs(float(n_k @ self.n)) - 1.0) > _PARALLEL_TOL:
            raise ValueError(f"Surface {surface.geometry_id} is not parallel to the first surface of the track")
        dc = np.asarray(surface.center, dtype=np.float64) - self.center
        R = np.array(
            [[self.u @ surface.axis_u, self.u @ surface.axis_v],
             [self.v @ surface.axis_u, self.v @ surface.axis_v]],
            dtype=np.float64,
        )
        return float(dc @ self.n), R, np.array([dc @ self.u, dc @ self.v])

    def slopes(self, direction: np.ndarray) -> np.ndarray:
        dn = float(direction @ self.n)
        if abs(dn) < 1e-12:
            raise ValueError("Track direction is parallel to the telescope planes")
        return np.array([direction @ self.u, direction @ self.v]) / dn

    def slope_jacobian(self, phi: float, theta: float) -> np.ndarray:
        r""":math:`\partial(s_a, s_b)/\partial(\phi, \theta)` at the given direction."""
        sp, cp, st, ct = np.sin(phi), np.cos(phi), np.sin(theta), np.cos(theta)
        d = np.array([cp * st, sp * st, ct])
        derivs = (np.array([-sp * st, cp * st, 0.0]), np.array([cp * ct, sp * ct, -st]))
        du, dv, dn = d @ self.u, d @ self.v, d @ self.n
        J = np.empty((2, 2))
        for j, e in enumerate(derivs):
            en = e @ self.n
            J[0, j] = ((e @ self.u) * dn - du * en) / dn ** 2
            J[1, j] = ((e @ self.v) * dn - dv * en) / dn ** 2
        return J

    def position(self, a: float, b: float, depth: float) -> np.ndarray:
        return self.center + a * self.u + b * self.v + depth * self.n

    def direction(self, sa: float, sb: float, sign: float) -> np.ndarray:
        d = sign * (sa * self.u + sb * self.v + self.n)
        return d / np.linalg.norm(d)


class StraightLineKalmanFitter(Fitter):
    r"""
    Linear Kalman filter and RTS smoother for straight tracks through parallel planes.

    Parameters
    ----------
    config : FitterConfig, optional

    Notes
    -----
    ``geometry`` must expose ``surface(link)`` returning objects with
    ``center``, ``axis_u``, ``axis_v`` and ``geometry_id`` (see
    :class:`~telescope_reco.geometry.PlaneSurface`). Any failure is raised as
    a plain exception and wrapped by the caller.
    """

    def __init__(self, config: FitterConfig | None = None) -> None:
        self.config = config if config is not None else FitterConfig()

    def fit(
        self,
        geometry: SurfaceGeometry,
        field: MagneticField,
        candidates: Sequence[TruthCandidate],
    ) -> List[FittedTrack]:
        tracks = [self.fit_candidate(geometry, c) for c in candidates]
        logger.debug("Fitted %d candidates", len(tracks))
        return tracks

    def _measurement_model(self, m: Measurement, R: np.ndarray, offset: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        var0 = self.config.measurement_stddev ** 2
        var = np.where(m.variance > 0.0, m.variance, var0)
        return R @ m.local + offset, R @ np.diag(var) @ R.T

    def fit_candidate(self, geometry, candidate: TruthCandidate) -> FittedTrack:
        measurements = list(candidate.measurements)
        if not measurements:
            raise ValueError(f"Candidate for particle {candidate.particle.particle_id} has no measurements")
        seed = candidate.seed.parameters
        seed_cov = seed.covariance if seed.covariance is not None else candidate.seed.covariance

        frame = _PlaneFrame(geometry.surface(measurements[0].surface_link))
        planes = [frame.plane(geometry.surface(m.surface_link)) for m in measurements]

        # Seed state in the frame
        seed_dir = seed.direction
        sign = 1.0 if float(seed_dir @ frame.n) >= 0.0 else -1.0
        seed_pos = np.asarray(
            geometry.bound_to_global(seed.surface_link, seed.bound_local, seed_dir), dtype=np.float64
        )
        _, R_s, _ = frame.plane(geometry.surface(seed.surface_link))
        rel = seed_pos - frame.center
        x = np.concatenate([[rel @ frame.u, rel @ frame.v], frame.slopes(seed_dir)])
        J = frame.slope_jacobian(seed.phi, seed.theta)
        P = np.zeros((4, 4))
        P[:2, :2] = R_s @ seed_cov[:2, :2] @ R_s.T
        P[2:, 2:] = J @ seed_cov[2:4, 2:4] @ J.T
        depth = float(rel @ frame.n)

        # Forward filter
        xs_pred, Ps_pred, xs_filt, Ps_filt, Fs, chi2s = [], [], [], [], [], []
        for m, (d_k, R_k, o_k) in zip(measurements, planes):
            dz = d_k - depth
            F = _transport(dz)
            Q = np.zeros((4, 4))
            Q[2, 2] = Q[3, 3] = self.config.slope_noise * abs(dz)
            x_pred = F @ x
            P_pred = F @ P @ F.T + Q
            y, V = self._measurement_model(m, R_k, o_k)
            r = y - _H @ x_pred
            S = _H @ P_pred @ _H.T + V
            K = kalman_gain(P_pred, _H, S)
            x = x_pred + K @ r
            P = joseph_update(P_pred, K, _H, V)
            depth = d_k
            xs_pred.append(x_pred)
            Ps_pred.append(P_pred)
            xs_filt.append(x)
            Ps_filt.append(P)
            Fs.append(F)
            chi2s.append(chi2(r, S))

        # Backward smoother
        n = len(measurements)
        xs_smooth, Ps_smooth = list(xs_filt), list(Ps_filt)
        if self.config.smoothing:
            for k in range(n - 2, -1, -1):
                A = smoother_gain(Ps_filt[k], Fs[k + 1], Ps_pred[k + 1])
                xs_smooth[k] = xs_filt[k] + A @ (xs_smooth[k + 1] - xs_pred[k + 1])
                Ps_smooth[k] = Ps_filt[k] + A @ (Ps_smooth[k + 1] - Ps_pred[k + 1]) @ A.T

        states = []
        for k, m in enumerate(measurements):
            d_k, R_k, _ = planes[k]
            smoothed = self._to_bound(geometry, frame, m, d_k, R_k, xs_smooth[k], Ps_smooth[k], sign, seed, seed_pos)
            filtered = self._to_bound(geometry, frame, m, d_k, R_k, xs_filt[k], Ps_filt[k], sign, seed, seed_pos)
            states.append(TrackState(measurement=m, smoothed=smoothed, filtered=filtered, chi2=chi2s[k]))
        header = FitResult(
            chi2=float(sum(chi2s)),
            ndf=float(2 * n - 4),
            particle_id=candidate.particle.particle_id,
        )
        logger.debug(
            "Particle %d: %d states, chi2/ndf = %.3f/%d",
            candidate.particle.particle_id, n, header.chi2, int(header.ndf),
        )
        return FittedTrack(header=header, states=states)

    @staticmethod
    def _to_bound(geometry, frame: _PlaneFrame, m: Measurement, depth: float, R: np.ndarray,
                  x: np.ndarray, P: np.ndarray, sign: float,
                  seed: BoundParameters, seed_pos: np.ndarray) -> BoundParameters:
        pos = frame.position(x[0], x[1], depth)
        direction = frame.direction(x[2], x[3], sign)
        phi, theta = angles_from_direction(direction)
        local = np.asarray(geometry.global_to_bound(m.surface_link, pos, direction), dtype=np.float64)
        t = seed.time + float(np.linalg.norm(pos - seed_pos)) / SPEED_OF_LIGHT

        vec = np.array([local[0], local[1], phi, theta, seed.qop(), t], dtype=np.float64)
        T = np.zeros((4, 4))
        T[:2, :2] = R.T
        T[2:, 2:] = np.linalg.pinv(frame.slope_jacobian(phi, theta))
        cov = np.zeros((6, 6))
        cov[:4, :4] = T @ P @ T.T
        if seed.covariance is not None:
            cov[BoundIndex.QOP, BoundIndex.QOP] = seed.covariance[BoundIndex.QOP, BoundIndex.QOP]
            cov[BoundIndex.TIME, BoundIndex.TIME] = seed.covariance[BoundIndex.TIME, BoundIndex.TIME]
        return BoundParameters(vec, m.surface_link, covariance=cov)
