from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Sequence

import numpy as np
import orjson

from telescope_reco.interfaces import SurfaceGeometry

logger = logging.getLogger(__name__)

# Sensitive plane positions along the alignment axis (mm): four 3-plane stations
DEFAULT_PLANE_POSITIONS: tuple[float, ...] = (
    10.0, 20.0, 30.0,
    60.0, 70.0, 80.0,
    180.0, 190.0, 200.0,
    230.0, 240.0, 250.0,
)


def _unit(v: Sequence[float]) -> np.ndarray:
    a = np.asarray(v, dtype=np.float64)
    n = float(np.linalg.norm(a))
    if n == 0.0:
        raise ValueError("Zero-length vector")
    return a / n


def _plane_axes(normal: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    r"""
    Right-handed local axes :math:`(u, v)` for a plane with unit normal :math:`n`.

    A helper direction :math:`t=\hat z` (or :math:`\hat x` when the normal is
    close to :math:`\hat z`) gives :math:`u = \widehat{t\times n}` and
    :math:`v = n\times u`. For :math:`n=\hat x` this is :math:`u=\hat y`,
    :math:`v=\hat z`.
    """
    t = np.array([0.0, 0.0, 1.0])
    if abs(float(np.dot(t, normal))) > 0.9:
        t = np.array([1.0, 0.0, 0.0])
    u = _unit(np.cross(t, normal))
    v = np.cross(normal, u)
    return u, v


@dataclass(slots=True)
class PlaneSurface:
    r"""
    Rectangular planar sensor.

    A local point :math:`(l_0, l_1)` maps to the global position

    .. math::

        \mathbf{x} = \mathbf{c} + l_0\,\mathbf{u} + l_1\,\mathbf{v},

    with centre :math:`\mathbf{c}` and orthonormal in-plane axes
    :math:`\mathbf{u},\mathbf{v}`; the normal is :math:`\mathbf{n}=\mathbf{u}\times\mathbf{v}`.
    """
    geometry_id: int
    center: np.ndarray
    axis_u: np.ndarray
    axis_v: np.ndarray
    half_u: float = 100.0
    half_v: float = 100.0
    thickness: float = 0.0

    @property
    def normal(self) -> np.ndarray:
        return np.cross(self.axis_u, self.axis_v)

    def local_to_global(self, local: np.ndarray) -> np.ndarray:
        loc = np.asarray(local, dtype=np.float64)
        return self.center + loc[0] * self.axis_u + loc[1] * self.axis_v

    def global_to_local(self, position: np.ndarray) -> np.ndarray:
        d = np.asarray(position, dtype=np.float64) - self.center
        return np.array([float(d @ self.axis_u), float(d @ self.axis_v)], dtype=np.float64)

    def is_inside(self, local: np.ndarray) -> bool:
        return abs(float(local[0])) <= self.half_u and abs(float(local[1])) <= self.half_v

    def intersect(self, position: np.ndarray, direction: np.ndarray) -> float:
        r"""
        Path length :math:`s` with :math:`\mathbf{x}+s\,\mathbf{d}` on the plane.

        Raises
        ------
        ValueError
            If the direction is parallel to the plane.
        """
        n = self.normal
        dn = float(np.dot(direction, n))
        if dn == 0.0:
            raise ValueError(f"Direction is parallel to surface {self.geometry_id}")
        return float(np.dot(self.center - np.asarray(position, dtype=np.float64), n)) / dn


class TelescopeGeometry(SurfaceGeometry):
    r"""
    Telescope detector: parallel planes stacked along an alignment axis.

    Surfaces are addressed by a dense ``surface_link`` (their index, in order
    along the alignment axis); files refer to them by ``geometry_id``.

    Parameters
    ----------
    surfaces : iterable of PlaneSurface
        Surfaces in traversal order.
    name : str, optional
        Free-form detector name stored in the JSON description.
    """

    def __init__(self, surfaces: Iterable[PlaneSurface], name: str = "telescope_detector") -> None:
        self.surfaces: List[PlaneSurface] = list(surfaces)
        self.name = name
        self._link_by_id: Dict[int, int] = {}
        for link, sf in enumerate(self.surfaces):
            if sf.geometry_id in self._link_by_id:
                raise ValueError(f"Duplicate geometry_id {sf.geometry_id}")
            self._link_by_id[sf.geometry_id] = link

    @classmethod
    def build(
        cls,
        positions: Sequence[float] = DEFAULT_PLANE_POSITIONS,
        *,
        align_axis: Sequence[float] = (1.0, 0.0, 0.0),
        half_size: float = 100.0,
        thickness: float = 5.0,
    ) -> "TelescopeGeometry":
        """Place one ``2*half_size`` square plane at each position along ``align_axis``."""
        n = _unit(align_axis)
        u, v = _plane_axes(n)
        surfaces = [
            PlaneSurface(
                geometry_id=i,
                center=float(pos) * n,
                axis_u=u.copy(),
                axis_v=v.copy(),
                half_u=float(half_size),
                half_v=float(half_size),
                thickness=float(thickness),
            )
            for i, pos in enumerate(sorted(float(p) for p in positions))
        ]
        logger.debug("Built telescope with %d planes along %s", len(surfaces), n.tolist())
        return cls(surfaces)

    def __len__(self) -> int:
        return len(self.surfaces)

    def surface(self, surface_link: int) -> PlaneSurface:
        return self.surfaces[int(surface_link)]

    def surface_link(self, geometry_id: int) -> int:
        return self._link_by_id[int(geometry_id)]

    def bound_to_global(self, surface_link: int, bound_local: np.ndarray, direction: np.ndarray) -> np.ndarray:
        return self.surface(surface_link).local_to_global(bound_local)

    def global_to_bound(self, surface_link: int, position: np.ndarray, direction: np.ndarray) -> np.ndarray:
        return self.surface(surface_link).global_to_local(position)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "surfaces": [
                {
                    "geometry_id": int(sf.geometry_id),
                    "center": sf.center.tolist(),
                    "axis_u": sf.axis_u.tolist(),
                    "axis_v": sf.axis_v.tolist(),
                    "half_lengths": [sf.half_u, sf.half_v],
                    "thickness": sf.thickness,
                }
                for sf in self.surfaces
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TelescopeGeometry":
        try:
            surfaces = [
                PlaneSurface(
                    geometry_id=int(s["geometry_id"]),
                    center=np.asarray(s["center"], dtype=np.float64),
                    axis_u=_unit(s["axis_u"]),
                    axis_v=_unit(s["axis_v"]),
                    half_u=float(s["half_lengths"][0]),
                    half_v=float(s["half_lengths"][1]),
                    thickness=float(s.get("thickness", 0.0)),
                )
                for s in data["surfaces"]
            ]
        except KeyError as e:
            raise ValueError(f"Missing geometry field: {e.args[0]}") from e
        return cls(surfaces, name=str(data.get("name", "telescope_detector")))

    def write_json(self, path: Path | str) -> Path:
        path = Path(path)
        path.write_bytes(orjson.dumps(self.to_dict(), option=orjson.OPT_INDENT_2))
        logger.info("Wrote detector geometry (%d surfaces) to %s", len(self), path)
        return path

    @classmethod
    def from_json(cls, path: Path | str) -> "TelescopeGeometry":
        path = Path(path)
        try:
            data = orjson.loads(path.read_bytes())
        except orjson.JSONDecodeError as e:
            raise ValueError(f"Failed to parse {path}: {e}") from e
        return cls.from_dict(data)
