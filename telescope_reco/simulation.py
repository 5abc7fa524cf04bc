r"""
Toy Monte-Carlo for the telescope: straight-line muons with Gaussian local smearing.

Each particle starts at ``vertex`` with momentum magnitude ``momentum_gev``
along the global angles :math:`(\phi, \theta)` (optionally spread uniformly
by ``angle_spread_deg``), and leaves one truth hit on every plane it crosses
inside the sensitive area. The hit time is

.. math::

    t = t_0 + \frac{s}{\beta c},\qquad \beta = \frac{p}{\sqrt{p^2+m^2}},

for path length :math:`s`. Every hit yields one measurement at the truth
local position plus :math:`\mathcal N(0, \sigma_\text{loc}^2)` per axis.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from telescope_reco.edm import direction_from_angles
from telescope_reco.event_io import write_event_csv
from telescope_reco.fitting import SPEED_OF_LIGHT
from telescope_reco.geometry import TelescopeGeometry
from telescope_reco.interfaces import EventRecords

logger = logging.getLogger(__name__)

MUON_MASS = 0.1056583755  # GeV
MUON_PDG = 13


@dataclass
class SimulationConfig:
    n_particles: int = 1
    momentum_gev: float = 1.0
    phi_deg: float = 0.0
    theta_deg: float = 90.0
    angle_spread_deg: float = 0.0
    charge: float = 1.0
    mass: float = MUON_MASS
    vertex: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    local_stddev: float = 0.01


class TelescopeSimulator:
    r"""
    Generate events for a :class:`~telescope_reco.geometry.TelescopeGeometry`.

    Parameters
    ----------
    geometry : TelescopeGeometry
    config : SimulationConfig, optional
    rng : numpy.random.Generator or int or None, optional
        Random source or seed.
    """

    def __init__(
        self,
        geometry: TelescopeGeometry,
        config: Optional[SimulationConfig] = None,
        rng: np.random.Generator | int | None = None,
    ) -> None:
        self.geometry = geometry
        self.config = config if config is not None else SimulationConfig()
        self.rng = rng if isinstance(rng, np.random.Generator) else np.random.default_rng(rng)

    def _direction(self) -> np.ndarray:
        cfg = self.config
        phi, theta = math.radians(cfg.phi_deg), math.radians(cfg.theta_deg)
        if cfg.angle_spread_deg > 0.0:
            half = math.radians(cfg.angle_spread_deg)
            phi += float(self.rng.uniform(-half, half))
            theta += float(self.rng.uniform(-half, half))
        return direction_from_angles(phi, theta)

    def generate_event(self, event: int) -> EventRecords:
        """Simulate one event; hits and measurements are in particle, then plane, order."""
        cfg = self.config
        vertex = np.asarray(cfg.vertex, dtype=np.float64)
        energy = math.hypot(cfg.momentum_gev, cfg.mass)
        beta = cfg.momentum_gev / energy if energy > 0.0 else 1.0

        particles: List[Dict[str, float]] = []
        hits: List[Dict[str, float]] = []
        measurements: List[Dict[str, float]] = []
        links: List[Dict[str, int]] = []
        for i in range(cfg.n_particles):
            pid = i + 1
            direction = self._direction()
            mom = cfg.momentum_gev * direction
            particles.append({
                "particle_id": pid,
                "particle_type": -MUON_PDG if cfg.charge > 0 else MUON_PDG,
                "vx": vertex[0], "vy": vertex[1], "vz": vertex[2], "vt": 0.0,
                "px": mom[0], "py": mom[1], "pz": mom[2],
                "m": cfg.mass, "q": cfg.charge,
            })
            for sf in self.geometry.surfaces:
                try:
                    s = sf.intersect(vertex, direction)
                except ValueError:
                    continue
                if s <= 0.0:
                    continue
                pos = vertex + s * direction
                local = sf.global_to_local(pos)
                if not sf.is_inside(local):
                    continue
                t = s / (beta * SPEED_OF_LIGHT)
                hit_id = len(hits)
                hits.append({
                    "particle_id": pid, "geometry_id": sf.geometry_id,
                    "tx": pos[0], "ty": pos[1], "tz": pos[2], "tt": t,
                    "tpx": mom[0], "tpy": mom[1], "tpz": mom[2], "te": energy,
                    "index": hit_id,
                })
                smeared = local + cfg.local_stddev * self.rng.standard_normal(2)
                var = cfg.local_stddev ** 2
                mid = len(measurements)
                measurements.append({
                    "measurement_id": mid, "geometry_id": sf.geometry_id,
                    "local_key": 3, "local0": smeared[0], "local1": smeared[1],
                    "phi": math.atan2(direction[1], direction[0]),
                    "theta": math.acos(max(-1.0, min(1.0, direction[2]))),
                    "time": t, "var_local0": var, "var_local1": var,
                })
                links.append({"measurement_id": mid, "hit_id": hit_id})

        logger.debug("Event %d: %d particles, %d hits", event, len(particles), len(hits))
        return EventRecords(
            event=int(event),
            particles=pd.DataFrame(particles),
            hits=pd.DataFrame(hits),
            measurements=pd.DataFrame(measurements),
            measurement_hit_map=pd.DataFrame(links),
        )

    def simulate(self, output_directory: Path | str, n_events: int, geometry_file: Path | str | None = None) -> Path:
        r"""
        Write ``n_events`` events (indices ``0..n_events-1``) as CSV into ``output_directory``.

        When ``geometry_file`` is given, the detector description is written
        there too (relative paths are taken inside ``output_directory``).
        """
        out = Path(output_directory)
        out.mkdir(parents=True, exist_ok=True)
        if geometry_file is not None:
            gpath = Path(geometry_file)
            self.geometry.write_json(gpath if gpath.is_absolute() else out / gpath)
        for event in range(int(n_events)):
            write_event_csv(out, self.generate_event(event))
        logger.info("Simulated %d events with %d particle(s) each into %s", n_events, self.config.n_particles, out)
        return out
