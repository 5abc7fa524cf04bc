r"""
Event loop of the truth-matched fitting stage.

Per event: **read → index truth → seed & build candidates → fit → residuals
→ export**. Events run one after another; the only state shared between them
is the pair of output sinks, which are opened before the loop and closed on
every exit path. Any error aborts the run.
"""
from __future__ import annotations

import logging
import dataclasses
from pathlib import Path
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd

from telescope_reco.candidates import TruthCandidateBuilder
from telescope_reco.config import PipelineConfig
from telescope_reco.edm import RESIDUAL_COLUMNS, ResidualRecord
from telescope_reco.errors import collaborator_errors
from telescope_reco.interfaces import EventReader, Fitter, MagneticField, SurfaceGeometry
from telescope_reco.metrics import log_residual_summary, residual_summary
from telescope_reco.residuals import ResidualExtractor, TrackOutputSinks
from telescope_reco.seeding import SeedGenerator
from telescope_reco.truth_index import EventTruthIndex

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class RunSummary:
    """What a run produced."""
    n_events: int = 0
    n_tracks: int = 0
    n_states: int = 0
    residuals: pd.DataFrame = dataclasses.field(default_factory=lambda: pd.DataFrame(columns=list(RESIDUAL_COLUMNS)))


def run_truth_fitting(
    reader: EventReader,
    geometry: SurfaceGeometry,
    field: MagneticField,
    fitter: Fitter,
    events: Iterable[int],
    residual_path: Path | str,
    state_path: Path | str,
    config: Optional[PipelineConfig] = None,
) -> RunSummary:
    r"""
    Run the truth-matched fitting stage over ``events``.

    Parameters
    ----------
    reader : EventReader
        Source of per-event truth tables.
    geometry : SurfaceGeometry
        Detector, used for seeding and for the global state trace.
    field : MagneticField
        Passed through to the fitter.
    fitter : Fitter
        Black-box fitter; called once per event with all its candidates.
    events : iterable of int
        Event indices in processing order.
    residual_path, state_path : path-like
        Output files (overwritten).
    config : PipelineConfig, optional
        Seeding, selection policy and random seed.

    Returns
    -------
    RunSummary

    Raises
    ------
    TruthFitError
        Any pipeline error; reader, fitter and geometry failures arrive as
        :class:`~telescope_reco.errors.ExternalCollaboratorError`. Both
        output files are closed before the error propagates.
    """
    config = config if config is not None else PipelineConfig()
    events = list(events)
    seeder = SeedGenerator(config.seed, rng=config.rng_seed)
    builder = TruthCandidateBuilder(seeder, geometry)
    extractor = ResidualExtractor(geometry, policy=config.selection_policy)

    summary = RunSummary()
    records: List[ResidualRecord] = []
    with TrackOutputSinks(residual_path, state_path) as sinks:
        for i, event in enumerate(events, start=1):
            logger.info("=== Event %d/%d ===", i, len(events))

            with collaborator_errors("event reader"):
                tables = reader.read_event(event)
            index = EventTruthIndex.from_records(tables, geometry)
            candidates = builder.build(index)
            summary.n_events += 1
            if not candidates:
                continue

            with collaborator_errors("fitter"):
                tracks = fitter.fit(geometry, field, candidates)
            logger.info("Number of fitted tracks: %d", len(tracks))

            event_records = [extractor.extract(track, index) for track in tracks]
            sinks.write_residuals(event_records)
            for track_id, track in enumerate(tracks):
                positions = extractor.state_positions(track)
                sinks.write_states(event, track_id, positions)
                summary.n_states += positions.shape[0]
            records.extend(event_records)
            summary.n_tracks += len(tracks)

    if records:
        summary.residuals = pd.DataFrame(
            np.array([r.as_row() for r in records], dtype=np.float64), columns=list(RESIDUAL_COLUMNS)
        )
        log_residual_summary(residual_summary(summary.residuals))
    logger.info(
        "Processed %d events: %d tracks, %d states -> %s, %s",
        summary.n_events, summary.n_tracks, summary.n_states, residual_path, state_path,
    )
    return summary
