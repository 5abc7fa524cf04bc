r"""
Narrow capability sets consumed by the truth-fitting core.

The core never depends on a concrete detector, field or fitter. It depends
only on:

- :class:`EventReader`: *can map event file data into truth tables*,
- :class:`SurfaceGeometry`: *can resolve surfaces and convert local to global
  coordinates*,
- :class:`MagneticField`: *can evaluate the field at a point*,
- :class:`Fitter`: *can produce fitted tracks from truth candidates*.

Reference implementations live in :mod:`telescope_reco.event_io`,
:mod:`telescope_reco.geometry`, :mod:`telescope_reco.field` and
:mod:`telescope_reco.fitting`; tests substitute stubs.
"""
from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
import pandas as pd

from telescope_reco.edm import FittedTrack, TruthCandidate


@dataclass(slots=True)
class EventRecords:
    r"""
    Raw per-event truth tables as read from the data source.

    Attributes
    ----------
    event : int
        Event index.
    particles : pandas.DataFrame
        At least ``particle_id, px, py, pz, q``.
    hits : pandas.DataFrame
        At least ``particle_id, tx, ty, tz, tpx, tpy, tpz``; the row position is
        the hit id. ``tt`` (hit time) is optional.
    measurements : pandas.DataFrame
        At least ``measurement_id, geometry_id, local0, local1``.
    measurement_hit_map : pandas.DataFrame
        ``measurement_id, hit_id`` rows, in load order.
    """
    event: int
    particles: pd.DataFrame
    hits: pd.DataFrame
    measurements: pd.DataFrame
    measurement_hit_map: pd.DataFrame


class EventReader(abc.ABC):
    """Source of per-event truth tables."""

    @abc.abstractmethod
    def read_event(self, event: int) -> EventRecords:
        """Load the tables of one event."""


class SurfaceGeometry(abc.ABC):
    """Detector surfaces, addressed by a dense ``surface_link`` index."""

    @abc.abstractmethod
    def surface_link(self, geometry_id: int) -> int:
        """Resolve a file-level geometry identifier to a surface link (``KeyError`` if unknown)."""

    @abc.abstractmethod
    def bound_to_global(self, surface_link: int, bound_local: np.ndarray, direction: np.ndarray) -> np.ndarray:
        """Global (3,) position of a local point on a surface."""

    @abc.abstractmethod
    def global_to_bound(self, surface_link: int, position: np.ndarray, direction: np.ndarray) -> np.ndarray:
        """Local (2,) coordinates of a global point on a surface."""


class MagneticField(abc.ABC):
    """Magnetic field map."""

    @abc.abstractmethod
    def at(self, position: np.ndarray) -> np.ndarray:
        """Field vector (T) at a global position (mm)."""


class Fitter(abc.ABC):
    """Track fitter treated as a black box: candidates in, fitted tracks out."""

    @abc.abstractmethod
    def fit(
        self,
        geometry: SurfaceGeometry,
        field: MagneticField,
        candidates: Sequence[TruthCandidate],
    ) -> List[FittedTrack]:
        """Fit every candidate; results are returned in candidate order."""
