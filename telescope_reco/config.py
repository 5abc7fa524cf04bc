r"""
Run configuration.

Defaults live in :data:`DEFAULT_CONFIG`; a JSON file only needs the keys it
overrides and is deep-merged over the defaults:

.. code-block:: json

    {
      "seed": {"qop_fraction": 0.1, "qop_scale": "event"},
      "fitter": {"measurement_stddev": 0.005},
      "selection_policy": "first_seen",
      "rng_seed": 7
    }
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Optional

import orjson

from telescope_reco.fitting import FitterConfig
from telescope_reco.seeding import SeedConfig
from telescope_reco.truth_index import TruthSelectionPolicy


@dataclass
class PipelineConfig:
    """Everything :func:`telescope_reco.pipeline.run_truth_fitting` can be tuned with."""
    seed: SeedConfig = field(default_factory=SeedConfig)
    fitter: FitterConfig = field(default_factory=FitterConfig)
    selection_policy: TruthSelectionPolicy = TruthSelectionPolicy.MAX_CONTRIBUTION
    rng_seed: Optional[int] = 42

    def to_dict(self) -> dict:
        out = asdict(self)
        out["selection_policy"] = self.selection_policy.value
        return out


DEFAULT_CONFIG: Mapping[str, Any] = PipelineConfig().to_dict()


def _deep_update(d: dict, u: Mapping) -> dict:
    r"""
    Recursively merge dictionaries (without side effects).

    Nested dicts are merged; scalars and containers from ``u`` replace those
    in ``d``.
    """
    out = dict(d)
    for k, v in u.items():
        if isinstance(v, Mapping) and isinstance(out.get(k), dict):
            out[k] = _deep_update(out[k], v)
        else:
            out[k] = v
    return out


def load_config(config_path: Path | str) -> MutableMapping[str, Any]:
    r"""
    Parse a JSON configuration file with :mod:`orjson`.

    Raises
    ------
    ValueError
        If the file cannot be parsed or is not a JSON object.
    """
    config_path = Path(config_path)
    try:
        data = orjson.loads(config_path.read_bytes())
    except orjson.JSONDecodeError as e:
        raise ValueError(f"Failed to parse {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"{config_path}: top-level JSON value must be an object")
    return data


def build_config(overrides: Optional[Mapping[str, Any]] = None) -> PipelineConfig:
    r"""
    Materialize :class:`PipelineConfig` from defaults deep-merged with ``overrides``.

    Raises
    ------
    ValueError
        Unknown keys or invalid values.
    """
    merged = _deep_update(dict(DEFAULT_CONFIG), overrides or {})
    unknown = set(merged) - set(DEFAULT_CONFIG)
    if unknown:
        raise ValueError(f"Unknown configuration key(s): {', '.join(sorted(unknown))}")
    try:
        seed = SeedConfig(**merged["seed"])
        fitter = FitterConfig(**merged["fitter"])
    except TypeError as e:
        raise ValueError(f"Invalid configuration block: {e}") from e
    rng_seed = merged["rng_seed"]
    return PipelineConfig(
        seed=seed,
        fitter=fitter,
        selection_policy=TruthSelectionPolicy(merged["selection_policy"]),
        rng_seed=None if rng_seed is None else int(rng_seed),
    )


def load_pipeline_config(config_path: Path | str | None = None) -> PipelineConfig:
    """Defaults, optionally overridden by a JSON file."""
    if config_path is None:
        return build_config()
    return build_config(load_config(config_path))
