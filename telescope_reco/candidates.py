from __future__ import annotations

import logging
from typing import List

from telescope_reco.edm import TruthCandidate
from telescope_reco.errors import DuplicateMeasurementError
from telescope_reco.interfaces import SurfaceGeometry
from telescope_reco.seeding import SeedGenerator
from telescope_reco.truth_index import EventTruthIndex

logger = logging.getLogger(__name__)


class TruthCandidateBuilder:
    r"""
    Assemble one :class:`~telescope_reco.edm.TruthCandidate` per truth particle.

    Each candidate holds all of the particle's measurements in path order and
    a seed evaluated at the first of them, using the particle's own truth hit
    there. Particles are visited in load order; particles without any
    measurement are skipped.

    Parameters
    ----------
    seed_generator : SeedGenerator
        Produces the smeared seeds (owns the random stream).
    geometry : SurfaceGeometry
        Used to map truth positions onto the seed surface.
    """

    def __init__(self, seed_generator: SeedGenerator, geometry: SurfaceGeometry) -> None:
        self.seed_generator = seed_generator
        self.geometry = geometry

    def build(self, index: EventTruthIndex) -> List[TruthCandidate]:
        r"""
        Candidates for every particle of the event that left measurements.

        Raises
        ------
        DuplicateMeasurementError
            If a measurement is attributed to the same particle twice.
        DegenerateTrajectoryError
            If a particle with measurements has zero momentum.
        """
        reference = index.reference_particle()
        candidates: List[TruthCandidate] = []
        for pid, particle in index.particles.items():
            measurements = index.particle_measurements(pid)
            if not measurements:
                logger.debug("Event %d: particle %d has no measurements, skipped", index.event, pid)
                continue
            seen = set()
            for m in measurements:
                if m in seen:
                    raise DuplicateMeasurementError(
                        f"Event {index.event}: measurement {m.measurement_id} attributed to particle {pid} more than once"
                    )
                seen.add(m)
            seed = self.seed_generator.generate(
                particle,
                measurements[0],
                self.geometry,
                truth_point=index.particle_truth_points(pid)[0],
                reference_particle=reference,
            )
            candidates.append(TruthCandidate(particle=particle, measurements=measurements, seed=seed))

        if not candidates:
            logger.warning("Event %d: no truth candidates", index.event)
        else:
            logger.debug("Event %d: built %d truth candidates", index.event, len(candidates))
        return candidates
