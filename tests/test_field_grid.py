import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import numpy as np
import pytest

from telescope_reco.field_grid import (
    FieldGridConfig,
    axis_size,
    field_at,
    grid_axes,
    grid_size,
    is_in_magnet,
    read_field_grid,
    sample_field_grid,
    write_field_grid,
)

SMALL = FieldGridConfig(
    start=(0.0, -10.0, -10.0),
    end=(30.0, 10.0, 10.0),
    spacing=10.0,
    magnet_x_ranges=((10.0, 10.0),),
    magnet_half_y=5.0,
    magnet_half_z=5.0,
    field=(0.0, 0.5, 0.0),
)


def test_default_grid_has_1100000_samples():
    assert [axis_size(s, e, 10.0) for s, e in zip(FieldGridConfig.start, FieldGridConfig.end)] == [110, 100, 100]
    assert grid_size() == 1_100_000
    samples = sample_field_grid()
    assert samples.shape == (1_100_000, 6)
    # 4 x-nodes (40, 50, 210, 220) times 3 y-nodes times 3 z-nodes inside the magnet
    assert int(np.count_nonzero(samples[:, 4])) == 36
    np.testing.assert_array_equal(samples[0], [-100.0, -500.0, -500.0, 0.0, 0.0, 0.0])
    np.testing.assert_array_equal(samples[-1, :3], [990.0, 490.0, 490.0])


def test_axis_size_rounds_up():
    assert axis_size(0.0, 25.0, 10.0) == 3
    assert axis_size(0.0, 30.0, 10.0) == 3
    assert axis_size(5.0, 5.0, 1.0) == 0
    with pytest.raises(ValueError):
        axis_size(0.0, 1.0, 0.0)


def test_magnet_boundaries():
    assert is_in_magnet(45.0, 0.0, 0.0)
    assert not is_in_magnet(45.0, 11.0, 0.0)
    assert is_in_magnet(40.0, 10.0, -10.0)
    assert is_in_magnet(215.0, 0.0, 0.0)
    assert not is_in_magnet(100.0, 0.0, 0.0)
    assert field_at(45.0, 0.0, 0.0) == (0.0, 0.5, 0.0)
    assert field_at(45.0, 0.0, 10.5) == (0.0, 0.0, 0.0)


def test_traversal_order_x_outer_z_inner():
    xs, ys, zs = grid_axes(SMALL)
    np.testing.assert_array_equal(xs, [0.0, 10.0, 20.0])
    np.testing.assert_array_equal(ys, [-10.0, 0.0])
    samples = sample_field_grid(SMALL)
    assert samples.shape == (12, 6)
    np.testing.assert_array_equal(samples[:4, :3], [[0, -10, -10], [0, -10, 0], [0, 0, -10], [0, 0, 0]])
    inside = samples[samples[:, 4] != 0.0, :3]
    np.testing.assert_array_equal(inside, [[10.0, 0.0, 0.0]])


def test_write_and_read_back(tmp_path):
    path = tmp_path / "bfield.txt"
    assert write_field_grid(path, SMALL) == 12
    lines = path.read_text().splitlines()
    assert len(lines) == 12
    assert lines[0] == "0 -10 -10 0 0 0"
    assert "10 0 0 0 0.5 0" in lines
    field = read_field_grid(path)
    np.testing.assert_allclose(field.at(np.array([10.0, 0.0, 0.0])), [0.0, 0.5, 0.0])
    np.testing.assert_allclose(field.at(np.array([500.0, 0.0, 0.0])), [0.0, 0.0, 0.0])
