import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import math

import numpy as np
import pytest

from telescope_reco.edm import BoundIndex, Measurement, Particle, TruthPoint
from telescope_reco.errors import DegenerateTrajectoryError
from telescope_reco.seeding import SeedConfig, SeedGenerator, qop_stddev


@pytest.fixture
def muon():
    return Particle(particle_id=1, momentum=(3.0, 4.0, 0.0), charge=-1.0)


@pytest.fixture
def first_measurement():
    return Measurement(measurement_id=0, surface_link=0, local0=0.5, local1=-0.25, time=0.04)


def test_same_seed_same_values(muon, first_measurement, geometry):
    a = SeedGenerator(rng=123).generate(muon, first_measurement, geometry)
    b = SeedGenerator(rng=123).generate(muon, first_measurement, geometry)
    c = SeedGenerator(rng=124).generate(muon, first_measurement, geometry)
    np.testing.assert_array_equal(a.parameters.vector, b.parameters.vector)
    assert not np.array_equal(a.parameters.vector, c.parameters.vector)


def test_stddevs_and_covariance(muon, first_measurement, geometry):
    seed = SeedGenerator(rng=0).generate(muon, first_measurement, geometry)
    np.testing.assert_allclose(seed.stddevs, [0.02, 0.02, 0.0085, 0.0085, 0.01, 1.0])
    np.testing.assert_allclose(np.diag(seed.covariance), seed.stddevs ** 2)
    assert np.count_nonzero(seed.covariance - np.diag(np.diag(seed.covariance))) == 0
    np.testing.assert_allclose(seed.parameters.covariance, seed.covariance)
    assert seed.particle_id == 1
    assert seed.parameters.surface_link == 0


def test_qop_fraction_is_configurable(muon):
    assert qop_stddev(muon, 0.1) == pytest.approx(0.02)
    gen = SeedGenerator(SeedConfig(qop_fraction=0.2))
    assert gen.stddevs(muon)[BoundIndex.QOP] == pytest.approx(0.04)


def test_event_scale_uses_reference_particle(muon):
    reference = Particle(particle_id=9, momentum=(0.0, 0.0, 10.0), charge=1.0)
    gen = SeedGenerator(SeedConfig(qop_scale="event"))
    assert gen.stddevs(muon, reference)[BoundIndex.QOP] == pytest.approx(0.005)
    assert SeedGenerator().stddevs(muon, reference)[BoundIndex.QOP] == pytest.approx(0.01)


def test_invalid_qop_scale():
    with pytest.raises(ValueError):
        SeedConfig(qop_scale="track")


def test_zero_momentum_raises(first_measurement, geometry):
    still = Particle(particle_id=2, momentum=(0.0, 0.0, 0.0), charge=1.0)
    with pytest.raises(DegenerateTrajectoryError):
        SeedGenerator(rng=0).generate(still, first_measurement, geometry)


def test_truth_parameters_from_truth_point(geometry):
    particle = Particle(particle_id=1, momentum=(1.0, 0.0, 0.0), charge=-1.0)
    m = Measurement(measurement_id=0, surface_link=0, local0=2.01, local1=-2.99)
    point = TruthPoint(position=np.array([10.0, 2.0, -3.0]), momentum=np.array([2.0, 0.0, 0.0]), time=0.5)
    params = SeedGenerator().truth_parameters(particle, m, geometry, point)
    np.testing.assert_allclose(params.bound_local, [2.0, -3.0])
    assert params.phi == 0.0
    assert params.theta == pytest.approx(math.pi / 2)
    assert params.qop() == pytest.approx(-0.5)
    assert params.time == 0.5


def test_truth_parameters_without_truth_point(muon, first_measurement, geometry):
    params = SeedGenerator().truth_parameters(muon, first_measurement, geometry)
    np.testing.assert_allclose(params.bound_local, [0.5, -0.25])
    assert params.phi == pytest.approx(math.atan2(4.0, 3.0))
    assert params.qop() == pytest.approx(-0.2)
    assert params.time == pytest.approx(0.04)


def test_smearing_width(muon, first_measurement, geometry):
    gen = SeedGenerator(rng=2024)
    truth = gen.truth_parameters(muon, first_measurement, geometry).vector
    draws = np.array([gen.generate(muon, first_measurement, geometry).parameters.vector for _ in range(2000)])
    width = (draws - truth).std(axis=0)
    np.testing.assert_allclose(width, [0.02, 0.02, 0.0085, 0.0085, 0.01, 1.0], rtol=0.1)
