from __future__ import annotations

import numpy as np

__all__ = [
    "factor_S",
    "chi2",
    "kalman_gain",
    "joseph_update",
    "smoother_gain",
]


def _robust_cholesky(S: np.ndarray) -> np.ndarray:
    r"""
    Cholesky factorization with small diagonal *jitter* and SPD fallback.

    Attempts ``np.linalg.cholesky(S)``; on failure, retries with
    :math:`S+\varepsilon I` where :math:`\varepsilon` is escalated
    geometrically. If all retries fail, an eigenvalue floor is applied:

    .. math::
        S_\text{fix} = V\;\mathrm{diag}(\max(w,\; w_\max\,10^{-15}))\;V^\top.

    Parameters
    ----------
    S : ndarray, shape (m, m)
        Symmetric covariance (not necessarily strictly SPD).

    Returns
    -------
    L : ndarray, shape (m, m)
        Lower-triangular factor with :math:`S_\text{spd}=L L^\top`.
    """
    try:
        return np.linalg.cholesky(S)
    except np.linalg.LinAlgError:
        I = np.eye(S.shape[0], dtype=S.dtype)
        eps = 1e-12
        for _ in range(8):
            try:
                return np.linalg.cholesky(S + eps * I)
            except np.linalg.LinAlgError:
                eps *= 10.0
        w, V = np.linalg.eigh(S)
        w = np.clip(w, w.max() * 1e-15, None)
        S_fix = (V * w) @ V.T
        return np.linalg.cholesky(S_fix)


def factor_S(S: np.ndarray) -> np.ndarray:
    r"""
    Cholesky factor :math:`L` of the innovation covariance :math:`S = H P^- H^\top + V`.

    Solving :math:`S\,x=b` then takes two triangular solves,
    :math:`L(L^\top x)=b`, instead of an explicit inverse.
    """
    S = np.asarray(S, dtype=np.float64, order="C")
    return _robust_cholesky(S)


def chi2(residual: np.ndarray, S: np.ndarray) -> float:
    r"""
    Mahalanobis :math:`\chi^2 = r^\top S^{-1} r = \|L^{-1} r\|_2^2`.

    Parameters
    ----------
    residual : ndarray, shape (m,)
    S : ndarray, shape (m, m)

    Returns
    -------
    float
    """
    r = np.asarray(residual, dtype=np.float64)
    L = factor_S(S)
    y = np.linalg.solve(L, r)
    return float(y @ y)


def kalman_gain(P_pred: np.ndarray, H: np.ndarray, S: np.ndarray) -> np.ndarray:
    r"""
    Kalman gain :math:`K = P^- H^\top S^{-1}` via Cholesky solves.

    Parameters
    ----------
    P_pred : ndarray, shape (n, n)
        Predicted covariance :math:`P^-`.
    H : ndarray, shape (m, n)
        Measurement projector.
    S : ndarray, shape (m, m)
        Innovation covariance.

    Returns
    -------
    K : ndarray, shape (n, m)

    Notes
    -----
    Solves :math:`L\,Y = (P^- H^\top)^\top` and :math:`L^\top X = Y`, then
    returns :math:`K = X^\top`.
    """
    P_pred = np.asarray(P_pred, dtype=np.float64, order="C")
    H = np.asarray(H, dtype=np.float64, order="C")
    L = factor_S(S)
    PHt = P_pred @ H.T                         # (n,m)
    Y = np.linalg.solve(L, PHt.T)              # (m,n)
    X = np.linalg.solve(L.T, Y)                # (m,n)
    return X.T


def joseph_update(P_pred: np.ndarray, K: np.ndarray, H: np.ndarray, V: np.ndarray) -> np.ndarray:
    r"""
    Joseph-form covariance update

    .. math::
        P^+ = (I - K H)\,P^-\,(I - K H)^\top + K V K^\top,

    which stays symmetric positive semi-definite under round-off.
    """
    A = np.eye(P_pred.shape[0]) - K @ H
    P = A @ P_pred @ A.T + K @ V @ K.T
    return 0.5 * (P + P.T)


def smoother_gain(P_filt: np.ndarray, F: np.ndarray, P_pred_next: np.ndarray) -> np.ndarray:
    r"""
    Rauch–Tung–Striebel gain :math:`A_k = P_k^{+} F_{k+1}^\top (P_{k+1}^-)^{-1}`.

    Computed as the transpose of the solution of
    :math:`P_{k+1}^-\,X = F_{k+1} P_k^{+}` (both covariances symmetric).
    """
    X = np.linalg.solve(np.asarray(P_pred_next, dtype=np.float64), F @ P_filt)
    return X.T
