import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from telescope_reco.config import (
    DEFAULT_CONFIG,
    PipelineConfig,
    _deep_update,
    build_config,
    load_config,
    load_pipeline_config,
)
from telescope_reco.truth_index import TruthSelectionPolicy


def test_defaults():
    cfg = load_pipeline_config()
    assert cfg == PipelineConfig()
    assert cfg.seed.loc_stddev == 0.02
    assert cfg.seed.angle_stddev == 0.0085
    assert cfg.seed.qop_fraction == 0.05
    assert cfg.selection_policy is TruthSelectionPolicy.MAX_CONTRIBUTION
    assert DEFAULT_CONFIG["selection_policy"] == "max_contribution"


def test_file_overrides_are_merged(tmp_path):
    path = tmp_path / "run.json"
    path.write_text('{"seed": {"qop_scale": "event"}, "selection_policy": "first_seen", "rng_seed": 7}')
    cfg = load_pipeline_config(path)
    assert cfg.seed.qop_scale == "event"
    assert cfg.seed.loc_stddev == 0.02
    assert cfg.fitter.measurement_stddev == 0.01
    assert cfg.selection_policy is TruthSelectionPolicy.FIRST_SEEN
    assert cfg.rng_seed == 7


@pytest.mark.parametrize(
    "overrides",
    [
        {"seeding": {}},
        {"seed": {"loc_sigma": 1.0}},
        {"seed": {"qop_scale": "run"}},
        {"selection_policy": "random"},
    ],
)
def test_invalid_overrides(overrides):
    with pytest.raises(ValueError):
        build_config(overrides)


def test_unparsable_files(tmp_path):
    path = tmp_path / "run.json"
    path.write_text("{seed:")
    with pytest.raises(ValueError):
        load_config(path)
    path.write_text("[1, 2]")
    with pytest.raises(ValueError):
        load_config(path)


def test_deep_update_leaves_inputs_untouched():
    base = {"a": {"b": 1, "c": 2}, "d": 3}
    out = _deep_update(base, {"a": {"b": 10}, "e": 4})
    assert out == {"a": {"b": 10, "c": 2}, "d": 3, "e": 4}
    assert base == {"a": {"b": 1, "c": 2}, "d": 3}


def test_round_trip_through_dict():
    cfg = build_config({"fitter": {"smoothing": False}, "rng_seed": None})
    assert build_config(cfg.to_dict()) == cfg
    assert cfg.rng_seed is None
