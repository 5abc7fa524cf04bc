import logging
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from scipy.stats import norm

from telescope_reco.metrics import RESIDUAL_NAMES, gaussian_fit

logger = logging.getLogger(__name__)


def _show_and_close(fig, *, do_show: bool = True, save_path: Optional[Path] = None) -> None:
    r"""
    Optionally save and show a figure, then always close it.

    Closing keeps figures from piling up in batch runs. In headless mode
    ``plt.show()`` is a no-op (see :func:`telescope_reco.main.apply_plotting_guard`).
    """
    try:
        fig.tight_layout()
        if save_path is not None:
            fig.savefig(save_path, dpi=120)
            logger.info("Saved %s", save_path)
        if do_show:
            plt.show()
    finally:
        plt.close(fig)


def plot_residuals(
    residuals: pd.DataFrame,
    *,
    columns: Sequence[str] = RESIDUAL_NAMES,
    bins: int = 50,
    show: bool = True,
    save_path: Optional[Path] = None,
) -> None:
    r"""
    One histogram per residual column with its Gaussian fit overlaid.

    Non-finite residuals are dropped; a column with no finite entries gets an
    empty panel labelled accordingly.

    Parameters
    ----------
    residuals : pandas.DataFrame
        Contents of a residual file.
    columns : sequence of str, optional
        Which residual columns to draw.
    bins : int, optional
        Histogram bins.
    show : bool, optional
        Call :func:`matplotlib.pyplot.show`.
    save_path : pathlib.Path, optional
        Where to save the figure.
    """
    fig, axes = plt.subplots(1, len(columns), figsize=(4.5 * len(columns), 4.0), squeeze=False)
    for ax, col in zip(axes[0], columns):
        v = residuals[col].to_numpy(dtype=np.float64)
        v = v[np.isfinite(v)]
        ax.set_title(col)
        ax.set_xlabel("fit - truth")
        if v.size == 0:
            ax.text(0.5, 0.5, "no finite entries", ha="center", va="center", transform=ax.transAxes)
            continue
        ax.hist(v, bins=bins, density=True, alpha=0.7)
        mu, sigma = gaussian_fit(v)
        if np.isfinite(sigma) and sigma > 0.0:
            x = np.linspace(v.min(), v.max(), 200)
            ax.plot(x, norm.pdf(x, mu, sigma), "r-", lw=1.5, label=f"μ={mu:.3g}\nσ={sigma:.3g}")
            ax.legend(loc="upper right", fontsize=8)
        ax.grid(True, alpha=0.25)
    _show_and_close(fig, do_show=show, save_path=save_path)


def plot_state_traces(
    states: pd.DataFrame,
    *,
    max_tracks: Optional[int] = 50,
    show: bool = True,
    save_path: Optional[Path] = None,
) -> None:
    r"""
    Fitted state positions per track in the ``(x, y)`` and ``(x, z)`` projections.

    Parameters
    ----------
    states : pandas.DataFrame
        Contents of a state file (``event_id, fit_track_id, x, y, z``).
    max_tracks : int or None, optional
        Draw at most this many tracks (in file order).
    """
    fig, (ax_y, ax_z) = plt.subplots(1, 2, figsize=(12, 4.5))
    groups = states.groupby(["event_id", "fit_track_id"], sort=False)
    for n, (_, df) in enumerate(groups):
        if max_tracks is not None and n >= max_tracks:
            break
        ax_y.plot(df["x"], df["y"], "o-", ms=3, lw=0.8, alpha=0.7)
        ax_z.plot(df["x"], df["z"], "o-", ms=3, lw=0.8, alpha=0.7)
    for ax, label in ((ax_y, "y [mm]"), (ax_z, "z [mm]")):
        ax.set_xlabel("x [mm]")
        ax.set_ylabel(label)
        ax.grid(True, alpha=0.25)
    ax_y.set_title("Fitted states (x-y)")
    ax_z.set_title("Fitted states (x-z)")
    _show_and_close(fig, do_show=show, save_path=save_path)
