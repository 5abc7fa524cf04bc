import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import functools

import pytest

import telescope_reco.field_grid as field_grid
from telescope_reco.edm import RESIDUAL_COLUMNS
from telescope_reco.field_grid import FieldGridConfig
from telescope_reco.main import build_parser, main
from telescope_reco.residuals import read_output_csv


def test_simulate_fit_and_plot(tmp_path):
    sim = tmp_path / "sim"
    assert main(["simulate", "--output-directory", str(sim), "--events", "2",
                 "--particles", "2", "--seed", "5"]) == 0
    assert (sim / "geometry.json").exists()
    assert (sim / "event000000001-measurement-hit-map.csv").exists()

    res, st = tmp_path / "residual.csv", tmp_path / "state.csv"
    rc = main(["fit", "--input-directory", str(sim), "--events", "2",
               "--geometry-file", str(sim / "geometry.json"),
               "--residual-file", str(res), "--state-file", str(st), "--seed", "1"])
    assert rc == 0
    residuals = read_output_csv(res)
    assert list(residuals.columns) == list(RESIDUAL_COLUMNS)
    assert len(residuals) == 4
    assert len(read_output_csv(st)) == 4 * 12

    plots = tmp_path / "plots"
    assert main(["plot", "--residual-file", str(res), "--state-file", str(st),
                 "--out-dir", str(plots)]) == 0
    assert (plots / "residuals.png").exists()
    assert (plots / "states.png").exists()


def test_fit_on_missing_input_returns_1(tmp_path):
    (tmp_path / "empty").mkdir()
    rc = main(["fit", "--input-directory", str(tmp_path / "empty"),
               "--residual-file", str(tmp_path / "r.csv"), "--state-file", str(tmp_path / "s.csv")])
    assert rc == 1
    assert (tmp_path / "r.csv").read_text().count("\n") == 1


def test_bad_config_returns_1(tmp_path):
    cfg = tmp_path / "run.json"
    cfg.write_text('{"seed": {"qop_scale": "run"}}')
    rc = main(["fit", "--input-directory", str(tmp_path), "--config", str(cfg),
               "--residual-file", str(tmp_path / "r.csv"), "--state-file", str(tmp_path / "s.csv")])
    assert rc == 1


def test_usage_errors_exit_2():
    with pytest.raises(SystemExit) as info:
        main([])
    assert info.value.code == 2
    with pytest.raises(SystemExit) as info:
        main(["fit", "--input-directory", "x", "--policy", "random"])
    assert info.value.code == 2


def test_parser_defaults():
    args = build_parser().parse_args(["fit", "--input-directory", "in"])
    assert (args.events, args.skip, args.residual_file, args.state_file) == (1, 0, "residual.csv", "state.csv")
    assert args.policy is None and args.seed is None


def test_write_bfield(tmp_path, monkeypatch):
    small = FieldGridConfig(start=(0.0, -10.0, -10.0), end=(30.0, 10.0, 10.0), spacing=10.0,
                            magnet_x_ranges=((10.0, 10.0),))
    monkeypatch.setattr(field_grid, "write_field_grid",
                        functools.partial(field_grid.write_field_grid, config=small))
    out = tmp_path / "bfield.txt"
    assert main(["write-bfield", "-o", str(out)]) == 0
    lines = out.read_text().splitlines()
    assert len(lines) == 12
    assert lines[0] == "0 -10 -10 0 0 0"
    assert "10 0 0 0 0.5 0" in lines


def test_unwritable_outputs_return_1(tmp_path):
    missing = tmp_path / "no" / "such" / "dir"
    assert main(["write-bfield", "-o", str(missing / "bfield.txt")]) == 1
    sim = tmp_path / "sim"
    assert main(["simulate", "--output-directory", str(sim), "--events", "1", "--seed", "2"]) == 0
    rc = main(["fit", "--input-directory", str(sim), "--geometry-file", str(sim / "geometry.json"),
               "--residual-file", str(missing / "r.csv"), "--state-file", str(tmp_path / "s.csv")])
    assert rc == 1
