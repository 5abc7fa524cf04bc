import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

from typing import List, Sequence

import pandas as pd
import pytest

from telescope_reco.edm import FitResult, FittedTrack, TrackState
from telescope_reco.geometry import TelescopeGeometry
from telescope_reco.interfaces import EventReader, EventRecords, Fitter
from telescope_reco.seeding import SeedGenerator


def _records(particles, hits, measurements, links, event=0) -> EventRecords:
    r"""
    particles: (particle_id, (px, py, pz), q)
    hits: (particle_id, geometry_id, (tx, ty, tz), (tpx, tpy, tpz), tt)
    measurements: (measurement_id, geometry_id, local0, local1)
    links: (measurement_id, hit_id)
    """
    pdf = pd.DataFrame(
        [{"particle_id": pid, "px": p[0], "py": p[1], "pz": p[2], "q": q} for pid, p, q in particles],
        columns=["particle_id", "px", "py", "pz", "q"],
    )
    hdf = pd.DataFrame(
        [
            {"particle_id": pid, "geometry_id": gid, "tx": x[0], "ty": x[1], "tz": x[2],
             "tpx": p[0], "tpy": p[1], "tpz": p[2], "tt": t}
            for pid, gid, x, p, t in hits
        ],
        columns=["particle_id", "geometry_id", "tx", "ty", "tz", "tpx", "tpy", "tpz", "tt"],
    )
    mdf = pd.DataFrame(
        [{"measurement_id": mid, "geometry_id": gid, "local0": l0, "local1": l1} for mid, gid, l0, l1 in measurements],
        columns=["measurement_id", "geometry_id", "local0", "local1"],
    )
    ldf = pd.DataFrame(links, columns=["measurement_id", "hit_id"])
    return EventRecords(event=event, particles=pdf, hits=hdf, measurements=mdf, measurement_hit_map=ldf)


@pytest.fixture
def make_records():
    return _records


@pytest.fixture
def geometry():
    return TelescopeGeometry.build()


@pytest.fixture
def single_muon_records():
    """One +1 particle with p=(1,0,0) GeV crossing the planes at x=10 and x=20."""
    return _records(
        particles=[(1, (1.0, 0.0, 0.0), 1.0)],
        hits=[
            (1, 0, (10.0, 0.0, 0.0), (1.0, 0.0, 0.0), 10.0 / 299.792458),
            (1, 1, (20.0, 0.0, 0.0), (1.0, 0.0, 0.0), 20.0 / 299.792458),
        ],
        measurements=[(0, 0, 0.0, 0.0), (1, 1, 0.0, 0.0)],
        links=[(0, 0), (1, 1)],
    )


class MemoryReader(EventReader):
    def __init__(self, records: Sequence[EventRecords]) -> None:
        self.by_event = {r.event: r for r in records}

    def read_event(self, event: int) -> EventRecords:
        return self.by_event[event]


class TruthFitter(Fitter):
    """Puts the particle's own momentum on every measured local position."""

    def __init__(self) -> None:
        self.calls = 0

    def fit(self, geometry, field, candidates) -> List[FittedTrack]:
        self.calls += 1
        tracks = []
        gen = SeedGenerator()
        for c in candidates:
            states = [
                TrackState(measurement=m, smoothed=gen.truth_parameters(c.particle, m, geometry))
                for m in c.measurements
            ]
            tracks.append(FittedTrack(header=FitResult(particle_id=c.particle.particle_id), states=states))
        return tracks


class FailingFitter(Fitter):
    def fit(self, geometry, field, candidates):
        raise RuntimeError("propagation failed")


class EmptyFitter(Fitter):
    def fit(self, geometry, field, candidates):
        return [FittedTrack(header=FitResult(particle_id=c.particle.particle_id)) for c in candidates]


@pytest.fixture
def memory_reader():
    return MemoryReader


@pytest.fixture
def fitters():
    return {"truth": TruthFitter, "failing": FailingFitter, "empty": EmptyFitter}
