import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import numpy as np
import pytest

from telescope_reco.field import ConstantField, GridField
from telescope_reco.geometry import DEFAULT_PLANE_POSITIONS, PlaneSurface, TelescopeGeometry


def test_default_telescope_layout():
    geo = TelescopeGeometry.build()
    assert len(geo) == 12
    np.testing.assert_array_equal([geo.surface(i).center[0] for i in range(12)], DEFAULT_PLANE_POSITIONS)
    sf = geo.surface(0)
    np.testing.assert_array_equal(sf.axis_u, [0.0, 1.0, 0.0])
    np.testing.assert_array_equal(sf.axis_v, [0.0, 0.0, 1.0])
    np.testing.assert_array_equal(sf.normal, [1.0, 0.0, 0.0])


def test_local_global_conversion(geometry):
    direction = np.array([1.0, 0.0, 0.0])
    pos = geometry.bound_to_global(3, np.array([2.0, -3.0]), direction)
    np.testing.assert_allclose(pos, [60.0, 2.0, -3.0])
    np.testing.assert_allclose(geometry.global_to_bound(3, pos, direction), [2.0, -3.0])
    assert geometry.surface(3).is_inside(np.array([99.0, -100.0]))
    assert not geometry.surface(3).is_inside(np.array([100.5, 0.0]))


def test_intersection(geometry):
    sf = geometry.surface(1)
    d = np.array([1.0, 1.0, 0.0]) / np.sqrt(2.0)
    s = sf.intersect(np.zeros(3), d)
    np.testing.assert_allclose(s * d, [20.0, 20.0, 0.0])
    with pytest.raises(ValueError):
        sf.intersect(np.zeros(3), np.array([0.0, 1.0, 0.0]))


def test_surface_links(geometry):
    assert geometry.surface_link(5) == 5
    with pytest.raises(KeyError):
        geometry.surface_link(12)
    sf = geometry.surface(0)
    with pytest.raises(ValueError):
        TelescopeGeometry([sf, PlaneSurface(0, sf.center, sf.axis_u, sf.axis_v)])


def test_json_round_trip(tmp_path):
    geo = TelescopeGeometry.build((100.0, 50.0), align_axis=(0.0, 0.0, 1.0), half_size=20.0)
    path = geo.write_json(tmp_path / "geometry.json")
    loaded = TelescopeGeometry.from_json(path)
    assert len(loaded) == 2
    for a, b in zip(geo.surfaces, loaded.surfaces):
        assert a.geometry_id == b.geometry_id
        np.testing.assert_allclose(a.center, b.center)
        np.testing.assert_allclose(a.axis_u, b.axis_u)
        np.testing.assert_allclose(a.axis_v, b.axis_v)
        assert (a.half_u, a.half_v) == (b.half_u, b.half_v)
    np.testing.assert_allclose(loaded.surface(0).center, [0.0, 0.0, 50.0])


def test_broken_geometry_file(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(ValueError):
        TelescopeGeometry.from_json(bad)
    bad.write_text('{"surfaces": [{"geometry_id": 0}]}')
    with pytest.raises(ValueError):
        TelescopeGeometry.from_json(bad)


def test_field_maps():
    np.testing.assert_array_equal(ConstantField((0.0, 0.5, 0.0)).at(np.zeros(3)), [0.0, 0.5, 0.0])
    axes = [np.array([0.0, 10.0]), np.array([0.0, 10.0]), np.array([0.0, 10.0])]
    values = np.zeros((2, 2, 2, 3))
    values[1, :, :, 1] = 1.0
    field = GridField(axes, values)
    np.testing.assert_allclose(field.at(np.array([5.0, 5.0, 5.0])), [0.0, 0.5, 0.0])
    with pytest.raises(ValueError):
        GridField.from_samples(np.zeros((3, 6)))
