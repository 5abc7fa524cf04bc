from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
import pandas as pd
from scipy.stats import norm

logger = logging.getLogger(__name__)

RESIDUAL_NAMES: tuple[str, ...] = ("qop_residual", "qopT_residual", "qopz_residual")


def _finite(a: np.ndarray | Sequence[float]) -> np.ndarray:
    v = np.asarray(a, dtype=np.float64).ravel()
    return v[np.isfinite(v)]


def gaussian_fit(values: np.ndarray | Sequence[float]) -> tuple[float, float]:
    r"""
    Maximum-likelihood Gaussian :math:`(\mu, \sigma)` of the finite values.

    Returns ``(nan, nan)`` when fewer than two finite values are available.
    """
    v = _finite(values)
    if v.size < 2:
        return float("nan"), float("nan")
    mu, sigma = norm.fit(v)
    return float(mu), float(sigma)


def residual_summary(residuals: pd.DataFrame, columns: Sequence[str] = RESIDUAL_NAMES) -> pd.DataFrame:
    r"""
    Per-column summary of a residual table.

    Parameters
    ----------
    residuals : pandas.DataFrame
        Rows as written to the residual file.
    columns : sequence of str, optional
        Residual columns to summarize.

    Returns
    -------
    pandas.DataFrame
        Indexed by column name with ``n``, ``n_finite``, ``mean``, ``rms``,
        ``mu`` and ``sigma`` (Gaussian fit of the finite values). Non-finite
        residuals (from infinite inverse momenta) are counted but left out of
        the moments.
    """
    rows = []
    for col in columns:
        raw = residuals[col].to_numpy(dtype=np.float64) if col in residuals else np.empty(0)
        v = _finite(raw)
        mu, sigma = gaussian_fit(v)
        rows.append(
            {
                "residual": col,
                "n": int(raw.size),
                "n_finite": int(v.size),
                "mean": float(v.mean()) if v.size else float("nan"),
                "rms": float(np.sqrt(np.mean(v ** 2))) if v.size else float("nan"),
                "mu": mu,
                "sigma": sigma,
            }
        )
    return pd.DataFrame(rows).set_index("residual")


def log_residual_summary(summary: pd.DataFrame) -> None:
    logger.info("Residual summary:")
    for name, row in summary.iterrows():
        logger.info(
            "  %-14s n=%d (finite %d) | mean=% .4g | rms=%.4g | gauss mu=% .4g sigma=%.4g",
            name, row["n"], row["n_finite"], row["mean"], row["rms"], row["mu"], row["sigma"],
        )
