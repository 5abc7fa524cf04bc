from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, List, Mapping, Tuple

import numpy as np
import pandas as pd

from telescope_reco.edm import Measurement, Particle, TruthPoint
from telescope_reco.errors import DataIntegrityError
from telescope_reco.interfaces import EventReader, EventRecords, SurfaceGeometry

logger = logging.getLogger(__name__)


class TruthSelectionPolicy(str, Enum):
    r"""
    Which contributor of a shared measurement is treated as *the* truth particle.

    - ``MAX_CONTRIBUTION``: the first entry of
      :meth:`EventTruthIndex.contributing_particles` (largest hit count, ties
      by first-seen order).
    - ``FIRST_SEEN``: the first contributor in the measurement-hit load stream.
    - ``LOWEST_PARTICLE_ID``: the smallest ``particle_id`` among contributors.
    """
    MAX_CONTRIBUTION = "max_contribution"
    FIRST_SEEN = "first_seen"
    LOWEST_PARTICLE_ID = "lowest_particle_id"


def _column(df: pd.DataFrame, name: str, default: float = 0.0) -> np.ndarray:
    if name in df.columns:
        return df[name].to_numpy(dtype=np.float64, copy=False)
    return np.full(len(df), default, dtype=np.float64)


class EventTruthIndex:
    r"""
    Per-event lookup structures linking measurements to truth.

    Built once per event and dropped at event end. Holds

    - ``particles``: ``particle_id -> Particle`` in load order,
    - ``measurement_to_particles``: ``Measurement -> [(Particle, count), ...]``,
      a multiset of contributing particles ordered by **descending count, ties
      broken by first-seen order** in the measurement-hit stream,
    - ``measurement_to_global_momentum``: ``Measurement -> (px, py, pz)`` of the
      truth hit that produced it (the first hit linked to the measurement;
      its global position and time are kept too),
    - per-particle measurement sequences in path order (ascending truth hit
      time, load order for ties). Repeated attributions are kept as-is so the
      candidate builder can reject them.

    Invariant: every measurement returned by :meth:`measurements` resolves in
    both :meth:`contributing_particles` and :meth:`global_momentum`.
    Measurements without any truth hit link are left out of the index.

    Parameters
    ----------
    event : int
        Event index.
    particles : dict[int, Particle]
        Truth population (must be non-empty).
    contributions : dict[Measurement, list[(Particle, int)]]
        Ordered contributor multisets.
    first_seen : dict[Measurement, list[Particle]]
        Contributors per measurement in load order.
    truth_points : dict[Measurement, TruthPoint]
        Truth position/momentum/time per measurement.
    particle_path : dict[int, list[(Measurement, TruthPoint)]]
        Path-ordered measurements per particle, each with the particle's own
        truth hit on it.

    Raises
    ------
    DataIntegrityError
        If ``particles`` is empty.
    """

    def __init__(
        self,
        event: int,
        particles: Dict[int, Particle],
        contributions: Dict[Measurement, List[Tuple[Particle, int]]],
        first_seen: Dict[Measurement, List[Particle]],
        truth_points: Dict[Measurement, TruthPoint],
        particle_path: Dict[int, List[Tuple[Measurement, TruthPoint]]],
    ) -> None:
        if not particles:
            raise DataIntegrityError(f"Event {event}: truth particle population is empty")
        missing = [m for m in contributions if m not in truth_points]
        if missing:
            raise DataIntegrityError(
                f"Event {event}: {len(missing)} measurement(s) have contributors but no truth momentum"
            )
        self.event = int(event)
        self._particles = particles
        self._contributions = contributions
        self._first_seen = first_seen
        self._truth = truth_points
        self._particle_path = particle_path

    # ------------------------------------------------------------------ build
    @classmethod
    def load(cls, reader: EventReader, event: int, geometry: SurfaceGeometry) -> "EventTruthIndex":
        """Read one event through ``reader`` and index it."""
        return cls.from_records(reader.read_event(event), geometry)

    @classmethod
    def from_records(cls, records: EventRecords, geometry: SurfaceGeometry) -> "EventTruthIndex":
        r"""
        Index raw event tables.

        The hit id used by ``measurement_hit_map`` is the row position in
        ``records.hits``. ``geometry_id`` values are resolved to surface links
        through ``geometry``.

        Raises
        ------
        DataIntegrityError
            Empty or duplicated truth population, duplicated measurement ids,
            unknown ``geometry_id``, or a link to a missing measurement, hit
            or particle.
        """
        event = records.event

        # Particles, in load order
        pdf = records.particles
        particles: Dict[int, Particle] = {}
        pids = pdf["particle_id"].to_numpy(dtype=np.int64, copy=False)
        mom = pdf[["px", "py", "pz"]].to_numpy(dtype=np.float64, copy=False)
        q = pdf["q"].to_numpy(dtype=np.float64, copy=False)
        vx, vy, vz = _column(pdf, "vx"), _column(pdf, "vy"), _column(pdf, "vz")
        vt, mass = _column(pdf, "vt"), _column(pdf, "m")
        for i, pid in enumerate(pids.tolist()):
            if pid in particles:
                raise DataIntegrityError(f"Event {event}: duplicate particle_id {pid}")
            particles[pid] = Particle(
                particle_id=pid,
                momentum=(float(mom[i, 0]), float(mom[i, 1]), float(mom[i, 2])),
                charge=float(q[i]),
                vertex=(float(vx[i]), float(vy[i]), float(vz[i])),
                time=float(vt[i]),
                mass=float(mass[i]),
            )
        if not particles:
            raise DataIntegrityError(f"Event {event}: truth particle population is empty")

        # Measurements keyed by id
        mdf = records.measurements
        meas_by_id: Dict[int, Measurement] = {}
        mids = mdf["measurement_id"].to_numpy(dtype=np.int64, copy=False)
        gids = mdf["geometry_id"].to_numpy(dtype=np.int64, copy=False)
        l0, l1 = _column(mdf, "local0"), _column(mdf, "local1")
        v0, v1, mt = _column(mdf, "var_local0"), _column(mdf, "var_local1"), _column(mdf, "time")
        for i, mid in enumerate(mids.tolist()):
            if mid in meas_by_id:
                raise DataIntegrityError(f"Event {event}: duplicate measurement_id {mid}")
            try:
                link = geometry.surface_link(int(gids[i]))
            except KeyError as e:
                raise DataIntegrityError(
                    f"Event {event}: measurement {mid} refers to unknown geometry_id {int(gids[i])}"
                ) from e
            meas_by_id[mid] = Measurement(
                measurement_id=mid,
                surface_link=int(link),
                local0=float(l0[i]),
                local1=float(l1[i]),
                var_local0=float(v0[i]),
                var_local1=float(v1[i]),
                time=float(mt[i]),
            )

        # Hits, addressed by row position
        hdf = records.hits
        n_hits = len(hdf)
        hit_pid = hdf["particle_id"].to_numpy(dtype=np.int64, copy=False)
        hit_pos = hdf[["tx", "ty", "tz"]].to_numpy(dtype=np.float64, copy=False)
        hit_mom = hdf[["tpx", "tpy", "tpz"]].to_numpy(dtype=np.float64, copy=False)
        hit_time = _column(hdf, "tt")

        # Walk the measurement-hit stream in load order
        counts: Dict[Measurement, Dict[int, int]] = {}
        truth_points: Dict[Measurement, TruthPoint] = {}
        path: Dict[int, List[Tuple[float, int, Measurement, TruthPoint]]] = {}
        link_df = records.measurement_hit_map
        link_mid = link_df["measurement_id"].to_numpy(dtype=np.int64, copy=False)
        link_hid = link_df["hit_id"].to_numpy(dtype=np.int64, copy=False)
        for seq, (mid, hid) in enumerate(zip(link_mid.tolist(), link_hid.tolist())):
            meas = meas_by_id.get(mid)
            if meas is None:
                raise DataIntegrityError(f"Event {event}: hit link refers to unknown measurement {mid}")
            if not 0 <= hid < n_hits:
                raise DataIntegrityError(f"Event {event}: measurement {mid} refers to unknown hit {hid}")
            pid = int(hit_pid[hid])
            if pid not in particles:
                raise DataIntegrityError(
                    f"Event {event}: hit {hid} of measurement {mid} refers to unknown particle {pid}"
                )
            per_meas = counts.setdefault(meas, {})
            per_meas[pid] = per_meas.get(pid, 0) + 1
            point = TruthPoint(
                position=hit_pos[hid].copy(),
                momentum=hit_mom[hid].copy(),
                time=float(hit_time[hid]),
            )
            truth_points.setdefault(meas, point)
            path.setdefault(pid, []).append((point.time, seq, meas, point))

        contributions: Dict[Measurement, List[Tuple[Particle, int]]] = {}
        first_seen: Dict[Measurement, List[Particle]] = {}
        for meas, per_meas in counts.items():
            seen = [particles[pid] for pid in per_meas]  # dict keeps first-seen order
            first_seen[meas] = seen
            # stable sort: equal counts keep first-seen order
            contributions[meas] = sorted(
                ((particles[pid], n) for pid, n in per_meas.items()),
                key=lambda pc: -pc[1],
            )

        particle_path = {
            pid: [(m, pt) for _, _, m, pt in sorted(entries, key=lambda e: (e[0], e[1]))]
            for pid, entries in path.items()
        }

        unlinked = len(meas_by_id) - len(contributions)
        if unlinked:
            logger.warning("Event %d: %d measurement(s) have no truth hit link and are ignored", event, unlinked)

        index = cls(event, particles, contributions, first_seen, truth_points, particle_path)
        logger.info(
            "Event %d: indexed %d particles, %d measurements (%d shared)",
            event, len(particles), len(contributions), len(index.shared_measurements()),
        )
        return index

    # ---------------------------------------------------------------- queries
    @property
    def particles(self) -> Mapping[int, Particle]:
        return self._particles

    def particle(self, particle_id: int) -> Particle:
        try:
            return self._particles[int(particle_id)]
        except KeyError as e:
            raise DataIntegrityError(f"Event {self.event}: unknown particle {particle_id}") from e

    def reference_particle(self) -> Particle:
        """First particle in load order; the event's representative particle."""
        return next(iter(self._particles.values()))

    def measurements(self) -> List[Measurement]:
        """Indexed measurements in first-seen order of the measurement-hit stream."""
        return list(self._contributions)

    def contributing_particles(self, measurement: Measurement) -> List[Tuple[Particle, int]]:
        try:
            return list(self._contributions[measurement])
        except KeyError as e:
            raise DataIntegrityError(
                f"Event {self.event}: no contributing particles for measurement {measurement.measurement_id}"
            ) from e

    def truth_point(self, measurement: Measurement) -> TruthPoint:
        try:
            return self._truth[measurement]
        except KeyError as e:
            raise DataIntegrityError(
                f"Event {self.event}: no truth momentum for measurement {measurement.measurement_id}"
            ) from e

    def global_momentum(self, measurement: Measurement) -> np.ndarray:
        return self.truth_point(measurement).momentum.copy()

    def particle_truth_point(self, measurement: Measurement, particle_id: int) -> TruthPoint:
        r"""
        The truth hit that ``particle_id`` itself left on ``measurement``.

        Unlike :meth:`truth_point`, which returns the first-seen hit of any
        contributor, this keeps position, momentum and time consistent with
        the chosen particle on a shared measurement.

        Raises
        ------
        DataIntegrityError
            The particle did not contribute to the measurement.
        """
        for m, point in self._particle_path.get(int(particle_id), []):
            if m == measurement:
                return point
        raise DataIntegrityError(
            f"Event {self.event}: particle {particle_id} has no truth hit on "
            f"measurement {measurement.measurement_id}"
        )

    def particle_measurements(self, particle_id: int) -> List[Measurement]:
        """Path-ordered measurements attributed to a particle (empty if it left none)."""
        return [m for m, _ in self._particle_path.get(int(particle_id), [])]

    def particle_truth_points(self, particle_id: int) -> List[TruthPoint]:
        """The particle's own truth hits, aligned with :meth:`particle_measurements`."""
        return [pt for _, pt in self._particle_path.get(int(particle_id), [])]

    def shared_measurements(self) -> List[Measurement]:
        """Measurements with more than one distinct contributing particle."""
        return [m for m, contrib in self._contributions.items() if len(contrib) > 1]

    def select_particle(
        self,
        measurement: Measurement,
        policy: TruthSelectionPolicy = TruthSelectionPolicy.MAX_CONTRIBUTION,
    ) -> Particle:
        r"""
        Pick the authoritative truth particle of a measurement under ``policy``.

        When the measurement has several contributors, the choice is logged at
        DEBUG level together with the full contributor list.
        """
        contrib = self.contributing_particles(measurement)
        policy = TruthSelectionPolicy(policy)
        if policy is TruthSelectionPolicy.MAX_CONTRIBUTION:
            chosen = contrib[0][0]
        elif policy is TruthSelectionPolicy.FIRST_SEEN:
            chosen = self._first_seen[measurement][0]
        else:
            chosen = min((p for p, _ in contrib), key=lambda p: p.particle_id)
        if len(contrib) > 1:
            logger.debug(
                "Event %d: measurement %d shared by %s; policy=%s picked particle %d",
                self.event, measurement.measurement_id,
                [(p.particle_id, n) for p, n in contrib], policy.value, chosen.particle_id,
            )
        return chosen

    def __len__(self) -> int:
        return len(self._contributions)
