r"""
Truth-matched residuals of fitted tracks and their CSV export.

For the first state of a fitted track, with smoothed :math:`q/p` and polar
angle :math:`\theta`, and the truth momentum :math:`\mathbf p` that the chosen
truth particle itself had at the measurement on that state,

.. math::

    \begin{aligned}
    \text{fit}   &= \Bigl(\tfrac{q}{p},\ \tfrac{q/p}{\sin\theta},\ \tfrac{q/p}{\cos\theta}\Bigr), &
    \text{truth} &= \Bigl(\tfrac{q}{|\mathbf p|},\ \tfrac{q}{\sqrt{p_x^2+p_y^2}},\ \tfrac{q}{p_z}\Bigr),
    \end{aligned}

and the residuals are ``fit - truth`` component-wise. An exactly zero
denominator gives a signed infinity and matching infinities give a zero
residual (see :func:`telescope_reco.edm.signed_ratio`).
"""
from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import IO, Optional, Sequence

import numpy as np
import pandas as pd

from telescope_reco.edm import RESIDUAL_COLUMNS, FittedTrack, ResidualRecord, signed_ratio
from telescope_reco.errors import DegenerateTrajectoryError, EmptyTrackError, collaborator_errors
from telescope_reco.interfaces import SurfaceGeometry
from telescope_reco.truth_index import EventTruthIndex, TruthSelectionPolicy

logger = logging.getLogger(__name__)

STATE_COLUMNS = ("event_id", "fit_track_id", "x", "y", "z")


class ResidualExtractor:
    r"""
    Compare fitted tracks with truth.

    Parameters
    ----------
    geometry : SurfaceGeometry
        Maps smoothed local positions to global ones for the state trace.
    policy : TruthSelectionPolicy, optional
        Picks the particle whose charge and own truth hit give the truth
        triple when the first measurement is shared.
    """

    def __init__(
        self,
        geometry: SurfaceGeometry,
        policy: TruthSelectionPolicy = TruthSelectionPolicy.MAX_CONTRIBUTION,
    ) -> None:
        self.geometry = geometry
        self.policy = TruthSelectionPolicy(policy)

    def extract(self, track: FittedTrack, index: EventTruthIndex) -> ResidualRecord:
        r"""
        Residual record of one fitted track.

        Raises
        ------
        EmptyTrackError
            The track has no states.
        DataIntegrityError
            The first state's measurement is not in the truth index.
        DegenerateTrajectoryError
            The truth momentum at the first measurement is zero.
        """
        if not track.states:
            raise EmptyTrackError(
                f"Event {index.event}: fitted track of particle {track.header.particle_id} has no states"
            )
        first = track.states[0]
        fit = first.smoothed
        particle = index.select_particle(first.measurement, self.policy)
        momentum = index.particle_truth_point(first.measurement, particle.particle_id).momentum

        q = particle.charge
        p = float(np.linalg.norm(momentum))
        if p == 0.0:
            raise DegenerateTrajectoryError(
                f"Event {index.event}: zero truth momentum at measurement {first.measurement.measurement_id}"
            )
        px, py, pz = (float(c) for c in momentum)
        record = ResidualRecord(
            fit_qop=fit.qop(),
            fit_qopT=fit.qopT(),
            fit_qopz=fit.qopz(),
            truth_qop=signed_ratio(q, p),
            truth_qopT=signed_ratio(q, math.hypot(px, py)),
            truth_qopz=signed_ratio(q, pz),
        )
        logger.debug(
            "Particle %d: qop fit=%.6g truth=%.6g residual=%.3g",
            particle.particle_id, record.fit_qop, record.truth_qop, record.qop_residual,
        )
        return record

    def state_positions(self, track: FittedTrack) -> np.ndarray:
        """Global ``(n_states, 3)`` positions of the smoothed states, in fit order."""
        out = np.empty((len(track.states), 3), dtype=np.float64)
        with collaborator_errors("geometry"):
            for i, state in enumerate(track.states):
                sm = state.smoothed
                out[i] = self.geometry.bound_to_global(state.surface_link, sm.bound_local, sm.direction)
        return out


class TrackOutputSinks:
    r"""
    The two run-wide output streams: per-track residuals and per-state positions.

    Headers are written once on :meth:`open`; rows are appended afterwards.
    Use as a context manager so the files are closed exactly once on every
    exit path. :meth:`close` is idempotent.

    .. code-block:: python

        with TrackOutputSinks("residual.csv", "state.csv") as sinks:
            sinks.write_residuals(records)
            sinks.write_states(event, track_id, positions)
    """

    def __init__(self, residual_path: Path | str, state_path: Path | str) -> None:
        self.residual_path = Path(residual_path)
        self.state_path = Path(state_path)
        self._residual_fh: Optional[IO[str]] = None
        self._state_fh: Optional[IO[str]] = None
        self._closed = False
        self.n_residual_rows = 0
        self.n_state_rows = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self) -> "TrackOutputSinks":
        if self._closed or self._residual_fh is not None:
            raise RuntimeError("Output sinks can only be opened once")
        try:
            self._residual_fh = self.residual_path.open("w", encoding="utf-8", newline="")
            self._residual_fh.write(", ".join(RESIDUAL_COLUMNS) + "\n")
            self._state_fh = self.state_path.open("w", encoding="utf-8", newline="")
            self._state_fh.write(", ".join(STATE_COLUMNS) + "\n")
        except BaseException:
            self.close()
            raise
        logger.debug("Opened output sinks %s and %s", self.residual_path, self.state_path)
        return self

    def _require_open(self, fh: Optional[IO[str]]) -> IO[str]:
        if fh is None or self._closed:
            raise RuntimeError("Output sinks are not open")
        return fh

    def write_residuals(self, records: Sequence[ResidualRecord]) -> None:
        fh = self._require_open(self._residual_fh)
        if not records:
            return
        frame = pd.DataFrame([r.as_row() for r in records], columns=list(RESIDUAL_COLUMNS))
        frame.to_csv(fh, header=False, index=False)
        self.n_residual_rows += len(frame)

    def write_states(self, event: int, track_id: int, positions: np.ndarray) -> None:
        fh = self._require_open(self._state_fh)
        pos = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
        if pos.shape[0] == 0:
            return
        frame = pd.DataFrame(
            {
                "event_id": np.full(pos.shape[0], int(event), dtype=np.int64),
                "fit_track_id": np.full(pos.shape[0], int(track_id), dtype=np.int64),
                "x": pos[:, 0],
                "y": pos[:, 1],
                "z": pos[:, 2],
            }
        )
        frame.to_csv(fh, header=False, index=False)
        self.n_state_rows += len(frame)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for fh in (self._residual_fh, self._state_fh):
            if fh is not None:
                fh.close()
        logger.debug(
            "Closed output sinks (%d residual rows, %d state rows)", self.n_residual_rows, self.n_state_rows
        )

    def __enter__(self) -> "TrackOutputSinks":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def read_output_csv(path: Path | str) -> pd.DataFrame:
    """Load a residual or state file written by :class:`TrackOutputSinks`."""
    df = pd.read_csv(path, skipinitialspace=True)
    df.columns = [c.strip() for c in df.columns]
    return df
