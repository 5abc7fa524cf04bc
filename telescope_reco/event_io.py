from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Sequence

import numpy as np
import pandas as pd

from telescope_reco.errors import DataIntegrityError
from telescope_reco.interfaces import EventReader, EventRecords

logger = logging.getLogger(__name__)

PARTICLE_COLUMNS = ("particle_id", "particle_type", "process", "vx", "vy", "vz", "vt",
                    "px", "py", "pz", "m", "q")
HIT_COLUMNS = ("particle_id", "geometry_id", "tx", "ty", "tz", "tt", "tpx", "tpy", "tpz", "te",
               "deltapx", "deltapy", "deltapz", "deltae", "index")
MEASUREMENT_COLUMNS = ("measurement_id", "geometry_id", "local_key", "local0", "local1",
                       "phi", "theta", "time", "var_local0", "var_local1", "var_phi",
                       "var_theta", "var_time")
MEASUREMENT_HIT_COLUMNS = ("measurement_id", "hit_id")

# Columns the truth index cannot do without
REQUIRED: Dict[str, Sequence[str]] = {
    "particles": ("particle_id", "px", "py", "pz", "q"),
    "hits": ("particle_id", "tx", "ty", "tz", "tpx", "tpy", "tpz"),
    "measurements": ("measurement_id", "geometry_id", "local0", "local1"),
    "measurement-hit-map": MEASUREMENT_HIT_COLUMNS,
}

_INT_COLUMNS = {"particle_id", "geometry_id", "measurement_id", "hit_id", "local_key",
                "particle_type", "process", "index"}


def event_prefix(event: int) -> str:
    return f"event{int(event):09d}"


def event_file(directory: Path | str, event: int, part: str) -> Path:
    """Path of one per-event table, e.g. ``event000000003-hits.csv``."""
    return Path(directory) / f"{event_prefix(event)}-{part}.csv"


def _read_part(path: Path, part: str) -> pd.DataFrame:
    df = pd.read_csv(path)
    df.columns = [c.strip() for c in df.columns]
    missing = [c for c in REQUIRED[part] if c not in df.columns]
    if missing:
        raise DataIntegrityError(f"{path.name}: missing required column(s) {', '.join(missing)}")
    casts = {c: "int64" for c in df.columns if c in _INT_COLUMNS}
    return df.astype(casts, copy=False)


class CsvEventReader(EventReader):
    r"""
    Read per-event truth tables from a directory of CSV files.

    Every event ``N`` consists of four files named
    ``event{N:09d}-{part}.csv`` with ``part`` one of ``particles``, ``hits``,
    ``measurements`` and ``measurement-hit-map``. Only the columns listed in
    :data:`REQUIRED` must be present; any extra columns are carried along.

    Parameters
    ----------
    directory : str or pathlib.Path
        Input directory.

    Raises
    ------
    FileNotFoundError
        From :meth:`read_event` if any of the four files is missing.
    DataIntegrityError
        From :meth:`read_event` if a file lacks a required column.
    """

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    def read_event(self, event: int) -> EventRecords:
        frames = {
            part: _read_part(event_file(self.directory, event, part), part)
            for part in REQUIRED
        }
        logger.debug(
            "Event %d: read %d particles, %d hits, %d measurements, %d measurement-hit links",
            event, len(frames["particles"]), len(frames["hits"]),
            len(frames["measurements"]), len(frames["measurement-hit-map"]),
        )
        return EventRecords(
            event=int(event),
            particles=frames["particles"],
            hits=frames["hits"],
            measurements=frames["measurements"],
            measurement_hit_map=frames["measurement-hit-map"],
        )


def write_event_csv(directory: Path | str, records: EventRecords) -> Dict[str, Path]:
    r"""
    Write one event's tables in the layout read by :class:`CsvEventReader`.

    Known columns are written in their canonical order and missing ones are
    filled with zeros, so a minimal frame still produces a complete file.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    layout = {
        "particles": (records.particles, PARTICLE_COLUMNS),
        "hits": (records.hits, HIT_COLUMNS),
        "measurements": (records.measurements, MEASUREMENT_COLUMNS),
        "measurement-hit-map": (records.measurement_hit_map, MEASUREMENT_HIT_COLUMNS),
    }
    out: Dict[str, Path] = {}
    for part, (df, columns) in layout.items():
        frame = df.reindex(columns=list(columns), fill_value=0)
        if part == "hits" and (frame["index"] == 0).all():
            frame["index"] = np.arange(len(frame), dtype=np.int64)
        path = event_file(directory, records.event, part)
        frame.to_csv(path, index=False)
        out[part] = path
    return out
