#!/usr/bin/env python3
r"""
Telescope truth-fitting runner.

Subcommands follow the usual workflow:

.. code-block:: bash

   telescope-reco write-bfield -o bfield.txt
   telescope-reco simulate --output-directory sim --events 10 --geometry-file geometry.json
   telescope-reco fit --input-directory sim --events 10 --geometry-file sim/geometry.json \
       --bfield-file bfield.txt --residual-file residual.csv --state-file state.csv
   telescope-reco plot --residual-file residual.csv --state-file state.csv --out-dir plots

Exit status is 0 on success, 1 when the pipeline aborts on an error and 2 on
command-line usage errors.
"""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Optional, Sequence

from telescope_reco.errors import TruthFitError, collaborator_errors
from telescope_reco.truth_index import TruthSelectionPolicy

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    r"""
    Construct the command-line interface.

    Returns
    -------
    argparse.ArgumentParser
        Parser with the ``write-bfield``, ``simulate``, ``fit`` and ``plot``
        subcommands and the global ``-v/--verbose`` flag.
    """
    p = argparse.ArgumentParser(description="Truth-matched track fitting for a telescope detector.")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Enable verbose logging.")
    sub = p.add_subparsers(dest="command", required=True)

    bf = sub.add_parser("write-bfield", help="Write the magnetic-field grid as text.")
    bf.add_argument("-o", "--output", type=str, default="bfield.txt",
                    help="Output file (default: bfield.txt).")

    sim = sub.add_parser("simulate", help="Simulate straight-line muon events.")
    sim.add_argument("--output-directory", type=str, required=True,
                     help="Directory for the per-event CSV files.")
    sim.add_argument("--events", type=int, default=10,
                     help="Number of events (default: 10).")
    sim.add_argument("--particles", type=int, default=1,
                     help="Particles per event (default: 1).")
    sim.add_argument("--mom-gev", type=float, default=1.0,
                     help="Momentum magnitude in GeV (default: 1.0).")
    sim.add_argument("--phi-deg", type=float, default=0.0,
                     help="Azimuthal angle in degrees (default: 0).")
    sim.add_argument("--theta-deg", type=float, default=90.0,
                     help="Polar angle in degrees (default: 90).")
    sim.add_argument("--angle-spread-deg", type=float, default=0.0,
                     help="Uniform half-width spread on both angles in degrees (default: 0).")
    sim.add_argument("--charge", type=float, default=1.0,
                     help="Particle charge in e (default: +1).")
    sim.add_argument("--seed", type=int, default=None,
                     help="Random seed.")
    sim.add_argument("--geometry-file", type=str, default="geometry.json",
                     help="Geometry JSON written next to the events (default: geometry.json).")

    fit = sub.add_parser("fit", help="Run the truth-matched fitting pipeline.")
    fit.add_argument("--input-directory", type=str, required=True,
                     help="Directory with the per-event CSV files.")
    fit.add_argument("--events", type=int, default=1,
                     help="Number of events to process (default: 1).")
    fit.add_argument("--skip", type=int, default=0,
                     help="Index of the first event (default: 0).")
    fit.add_argument("--geometry-file", type=str, default=None,
                     help="Geometry JSON; the default telescope is used if omitted.")
    fit.add_argument("--bfield-file", type=str, default=None,
                     help="Field grid text file; zero field if omitted.")
    fit.add_argument("--residual-file", type=str, default="residual.csv",
                     help="Residual output (default: residual.csv).")
    fit.add_argument("--state-file", type=str, default="state.csv",
                     help="State output (default: state.csv).")
    fit.add_argument("--config", type=str, default=None,
                     help="JSON config overriding the defaults.")
    fit.add_argument("--seed", type=int, default=None,
                     help="Random seed for seed smearing (overrides the config).")
    fit.add_argument("--policy", type=str, default=None,
                     choices=[pol.value for pol in TruthSelectionPolicy],
                     help="Truth particle selection for shared measurements (overrides the config).")

    plot = sub.add_parser("plot", help="Plot residual distributions and state traces.")
    plot.add_argument("--residual-file", type=str, required=True,
                      help="Residual file to plot.")
    plot.add_argument("--state-file", type=str, default=None,
                      help="Optional state file to plot.")
    plot.add_argument("--out-dir", type=str, default=None,
                      help="Save PNGs here instead of showing windows.")
    return p


def setup_logging(verbose: bool = False) -> None:
    r"""
    Configure process-wide logging.

    Format is ``'%(asctime)s | %(levelname)-8s | %(message)s'`` with
    ``%H:%M:%S`` timestamps; ``verbose`` switches from INFO to DEBUG.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )


def apply_plotting_guard(enable_plots: bool) -> None:
    r"""
    Enforce a **headless-safe** Matplotlib configuration when windows are not wanted.

    Must be called **before** importing :mod:`telescope_reco.plotting`.
    """
    if enable_plots:
        return
    os.environ.setdefault("MPLBACKEND", "Agg")
    import matplotlib
    matplotlib.use("Agg", force=True)
    import matplotlib.pyplot as _plt  # noqa: WPS433
    _plt.ioff()
    _plt.show = lambda *a, **k: None  # type: ignore[assignment]


def _cmd_write_bfield(args: argparse.Namespace) -> None:
    from telescope_reco.field_grid import write_field_grid

    write_field_grid(Path(args.output))


def _cmd_simulate(args: argparse.Namespace) -> None:
    from telescope_reco.geometry import TelescopeGeometry
    from telescope_reco.simulation import SimulationConfig, TelescopeSimulator

    config = SimulationConfig(
        n_particles=args.particles,
        momentum_gev=args.mom_gev,
        phi_deg=args.phi_deg,
        theta_deg=args.theta_deg,
        angle_spread_deg=args.angle_spread_deg,
        charge=args.charge,
    )
    sim = TelescopeSimulator(TelescopeGeometry.build(), config, rng=args.seed)
    sim.simulate(args.output_directory, args.events, geometry_file=args.geometry_file)


def _cmd_fit(args: argparse.Namespace) -> None:
    from telescope_reco.config import load_pipeline_config
    from telescope_reco.event_io import CsvEventReader
    from telescope_reco.field import ConstantField
    from telescope_reco.field_grid import read_field_grid
    from telescope_reco.fitting import StraightLineKalmanFitter
    from telescope_reco.geometry import TelescopeGeometry
    from telescope_reco.pipeline import run_truth_fitting

    with collaborator_errors("configuration"):
        config = load_pipeline_config(args.config)
    if args.seed is not None:
        config.rng_seed = args.seed
    if args.policy is not None:
        config.selection_policy = TruthSelectionPolicy(args.policy)

    with collaborator_errors("geometry"):
        if args.geometry_file:
            logger.info("Reading geometry from %s", args.geometry_file)
            geometry = TelescopeGeometry.from_json(args.geometry_file)
        else:
            geometry = TelescopeGeometry.build()
    with collaborator_errors("field"):
        if args.bfield_file:
            logger.info("Reading field map from %s", args.bfield_file)
            field = read_field_grid(args.bfield_file)
        else:
            field = ConstantField()

    events = range(args.skip, args.skip + args.events)
    logger.info("Running on events %d..%d from %s", events.start, events.stop - 1, args.input_directory)
    run_truth_fitting(
        reader=CsvEventReader(args.input_directory),
        geometry=geometry,
        field=field,
        fitter=StraightLineKalmanFitter(config.fitter),
        events=events,
        residual_path=args.residual_file,
        state_path=args.state_file,
        config=config,
    )


def _cmd_plot(args: argparse.Namespace) -> None:
    out_dir = Path(args.out_dir) if args.out_dir else None
    apply_plotting_guard(out_dir is None)
    import telescope_reco.plotting as tr_plot  # noqa: WPS433
    from telescope_reco.residuals import read_output_csv

    if out_dir is not None:
        out_dir.mkdir(parents=True, exist_ok=True)
    tr_plot.plot_residuals(
        read_output_csv(args.residual_file),
        show=out_dir is None,
        save_path=out_dir / "residuals.png" if out_dir else None,
    )
    if args.state_file:
        tr_plot.plot_state_traces(
            read_output_csv(args.state_file),
            show=out_dir is None,
            save_path=out_dir / "states.png" if out_dir else None,
        )


COMMANDS = {
    "write-bfield": _cmd_write_bfield,
    "simulate": _cmd_simulate,
    "fit": _cmd_fit,
    "plot": _cmd_plot,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    r"""
    Parse the command line, run one subcommand and return the exit status.

    A :class:`~telescope_reco.errors.TruthFitError` or an :class:`OSError`
    (unreadable input, unwritable output) is logged and turned into exit
    status 1; output written before the failure is incomplete.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    try:
        COMMANDS[args.command](args)
    except (TruthFitError, OSError) as e:
        logger.error("%s", e)
        if args.command == "fit":
            logger.error("Run aborted; %s and %s are incomplete.", args.residual_file, args.state_file)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
