import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import math

import numpy as np
import pandas as pd
import pytest

from telescope_reco.metrics import gaussian_fit, log_residual_summary, residual_summary


def test_gaussian_fit_ignores_non_finite():
    mu, sigma = gaussian_fit([1.0, 3.0, math.inf, math.nan])
    assert mu == pytest.approx(2.0)
    assert sigma == pytest.approx(1.0)
    assert all(math.isnan(x) for x in gaussian_fit([1.0, -math.inf]))


def test_residual_summary(caplog):
    df = pd.DataFrame(
        {
            "qop_residual": [0.1, -0.1, 0.3, -0.3],
            "qopT_residual": [0.0, 0.5, 1.0, 1.5],
            "qopz_residual": [math.inf, -math.inf, 1.0, 2.0],
        }
    )
    summary = residual_summary(df)
    assert list(summary.index) == ["qop_residual", "qopT_residual", "qopz_residual"]
    qop = summary.loc["qop_residual"]
    assert qop["n"] == 4 and qop["n_finite"] == 4
    assert qop["mean"] == pytest.approx(0.0)
    assert qop["rms"] == pytest.approx(np.sqrt(0.05))
    assert summary.loc["qopz_residual", "n_finite"] == 2
    assert summary.loc["qopz_residual", "mean"] == pytest.approx(1.5)

    with caplog.at_level("INFO", logger="telescope_reco.metrics"):
        log_residual_summary(summary)
    assert "Residual summary" in caplog.text
    assert "qopz_residual" in caplog.text
