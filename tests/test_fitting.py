import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import numpy as np
import pytest

from telescope_reco.edm import (
    BoundParameters,
    Measurement,
    Particle,
    SeedState,
    TruthCandidate,
    TruthPoint,
    angles_from_direction,
)
from telescope_reco.field import ConstantField
from telescope_reco.fitting import FitterConfig, StraightLineKalmanFitter
from telescope_reco.geometry import PlaneSurface, TelescopeGeometry
from telescope_reco.kalman_kernels import chi2, kalman_gain
from telescope_reco.seeding import SeedGenerator


DIRECTION = np.array([1.0, 0.01, -0.02]) / np.linalg.norm([1.0, 0.01, -0.02])


def _line(geometry, direction=DIRECTION, origin=(0.0, 0.5, 0.5), var=1e-4):
    origin = np.asarray(origin)
    measurements, points = [], []
    for link, sf in enumerate(geometry.surfaces):
        pos = origin + sf.intersect(origin, direction) * direction
        local = sf.global_to_local(pos)
        measurements.append(
            Measurement(measurement_id=link, surface_link=link, local0=local[0], local1=local[1],
                        var_local0=var, var_local1=var)
        )
        points.append(TruthPoint(position=pos, momentum=2.0 * direction, time=0.0))
    return measurements, points


def test_kernels_match_explicit_inverse():
    P = np.diag([4.0, 3.0, 2.0, 1.0])
    H = np.hstack([np.eye(2), np.zeros((2, 2))])
    S = H @ P @ H.T + np.diag([0.5, 0.25])
    np.testing.assert_allclose(kalman_gain(P, H, S), P @ H.T @ np.linalg.inv(S))
    r = np.array([1.0, -2.0])
    assert chi2(r, S) == pytest.approx(float(r @ np.linalg.inv(S) @ r))


def test_exact_seed_reproduces_line(geometry):
    particle = Particle(particle_id=1, momentum=tuple(2.0 * DIRECTION), charge=1.0)
    measurements, points = _line(geometry)
    gen = SeedGenerator()
    truth = gen.truth_parameters(particle, measurements[0], geometry, points[0])
    sig = gen.stddevs(particle)
    seed = SeedState(BoundParameters(truth.vector, 0, covariance=np.diag(sig ** 2)), sig, 1)

    (track,) = StraightLineKalmanFitter().fit(geometry, ConstantField(), [TruthCandidate(particle, measurements, seed)])
    assert len(track.states) == 12
    assert track.header.particle_id == 1
    assert track.header.ndf == 20
    assert track.header.chi2 == pytest.approx(0.0, abs=1e-12)
    phi, theta = angles_from_direction(DIRECTION)
    for state, m in zip(track.states, measurements):
        np.testing.assert_allclose(state.smoothed.bound_local, m.local, atol=1e-9)
        assert state.smoothed.phi == pytest.approx(phi, abs=1e-9)
        assert state.smoothed.theta == pytest.approx(theta, abs=1e-9)
        assert state.smoothed.qop() == pytest.approx(0.5)
        assert state.filtered is not None


def test_smeared_seed_converges(geometry):
    particle = Particle(particle_id=3, momentum=tuple(2.0 * DIRECTION), charge=-1.0)
    measurements, points = _line(geometry, var=1e-8)
    seed = SeedGenerator(rng=8).generate(particle, measurements[0], geometry, points[0])
    candidate = TruthCandidate(particle, measurements, seed)

    (track,) = StraightLineKalmanFitter().fit(geometry, ConstantField(), [candidate])
    phi, theta = angles_from_direction(DIRECTION)
    for state, m in zip(track.states, measurements):
        np.testing.assert_allclose(state.smoothed.bound_local, m.local, atol=1e-5)
        assert state.smoothed.phi == pytest.approx(phi, abs=1e-5)
        assert state.smoothed.theta == pytest.approx(theta, abs=1e-5)
        assert state.smoothed.qop() == seed.parameters.qop()
        assert state.smoothed.covariance.shape == (6, 6)
    # smoothing never inflates the local variance
    first = track.states[0]
    assert first.smoothed.covariance[0, 0] <= first.filtered.covariance[0, 0] + 1e-15
    assert first.smoothed.covariance[1, 1] <= first.filtered.covariance[1, 1] + 1e-15


def test_filter_only_mode(geometry):
    particle = Particle(particle_id=1, momentum=tuple(2.0 * DIRECTION), charge=1.0)
    measurements, points = _line(geometry)
    seed = SeedGenerator(rng=0).generate(particle, measurements[0], geometry, points[0])
    (track,) = StraightLineKalmanFitter(FitterConfig(smoothing=False)).fit(
        geometry, ConstantField(), [TruthCandidate(particle, measurements, seed)]
    )
    for state in track.states:
        np.testing.assert_array_equal(state.smoothed.vector, state.filtered.vector)


def test_tilted_plane_is_rejected(geometry):
    particle = Particle(particle_id=1, momentum=tuple(2.0 * DIRECTION), charge=1.0)
    tilted = PlaneSurface(
        geometry_id=1, center=np.array([20.0, 0.0, 0.0]),
        axis_u=np.array([0.0, 1.0, 0.0]), axis_v=np.array([1.0, 0.0, 1.0]) / np.sqrt(2.0),
    )
    geo = TelescopeGeometry([geometry.surface(0), tilted])
    measurements = [Measurement(0, 0, 0.0, 0.0), Measurement(1, 1, 0.0, 0.0)]
    seed = SeedGenerator(rng=0).generate(particle, measurements[0], geo)
    with pytest.raises(ValueError):
        StraightLineKalmanFitter().fit(geo, ConstantField(), [TruthCandidate(particle, measurements, seed)])
