"""
Metrics for JAXLARS.

Information criteria and leave-one-out error estimates used to pick a step
of a basis sequence.
"""

from __future__ import annotations

import numpy as np
from scipy.linalg import solve_triangular

from .exceptions import InvalidArgumentError

# =============================================================================
# Information Criteria
# =============================================================================


def _gaussian_log_likelihood(n_samples: int, mse: float) -> float:
    mse = max(float(mse), np.finfo(float).tiny)
    return -n_samples / 2 * np.log(2 * np.pi * mse) - n_samples / 2


def compute_aic(n_samples: int, n_params: int, mse: float) -> float:
    """
    Compute Akaike Information Criterion.

    AIC = -2 * log_likelihood + 2 * k, with a Gaussian likelihood whose
    variance is estimated by the MSE.

    Parameters
    ----------
    n_samples : int
        Number of samples.
    n_params : int
        Number of model parameters.
    mse : float
        Mean squared error.

    Returns
    -------
    aic : float
        AIC value (lower is better).
    """
    return float(-2 * _gaussian_log_likelihood(n_samples, mse) + 2 * n_params)


def compute_bic(n_samples: int, n_params: int, mse: float) -> float:
    """
    Compute Bayesian Information Criterion.

    BIC = -2 * log_likelihood + k * log(n)
    """
    return float(-2 * _gaussian_log_likelihood(n_samples, mse) + n_params * np.log(n_samples))


def compute_aicc(n_samples: int, n_params: int, mse: float) -> float:
    """
    Compute corrected Akaike Information Criterion (AICc).

    AICc = AIC + 2*k*(k+1) / (n-k-1)

    Notes
    -----
    AICc includes a correction for small sample sizes. It should be preferred
    when n/k < 40.
    """
    n = n_samples
    k = n_params

    if n - k - 1 <= 0:
        return float("inf")

    return compute_aic(n, k, mse) + (2 * k * (k + 1)) / (n - k - 1)


def compute_information_criterion(
    n_samples: int,
    n_params: int,
    mse: float,
    criterion: str = "bic",
) -> float:
    """
    Compute the specified information criterion.

    Parameters
    ----------
    criterion : str
        One of "aic", "aicc", "bic".
    """
    criteria = {
        "aic": compute_aic,
        "aicc": compute_aicc,
        "bic": compute_bic,
    }

    if criterion not in criteria:
        raise InvalidArgumentError(
            f"Unknown criterion: {criterion}. Available: {list(criteria.keys())}"
        )

    return criteria[criterion](n_samples, n_params, mse)


# =============================================================================
# Regression Metrics
# =============================================================================


def compute_mse(y_true, y_pred) -> float:
    """Compute mean squared error."""
    return float(np.mean((np.asarray(y_true) - np.asarray(y_pred)) ** 2))


def compute_r2(y_true, y_pred) -> float:
    """Compute coefficient of determination."""
    y_true = np.asarray(y_true, dtype=float)
    ss_res = np.sum((y_true - np.asarray(y_pred)) ** 2)
    ss_tot = np.sum((y_true - np.mean(y_true)) ** 2)
    if ss_tot == 0:
        return 1.0 if ss_res == 0 else 0.0
    return float(1 - ss_res / ss_tot)


# =============================================================================
# Leave-One-Out
# =============================================================================


def _qr_fit(Phi, y):
    Phi = np.asarray(Phi, dtype=float)
    y = np.asarray(y, dtype=float).ravel()
    if Phi.ndim != 2 or Phi.shape[0] != y.shape[0]:
        raise InvalidArgumentError(
            f"Phi must have shape (n_samples, n_terms) with n_samples={y.shape[0]}, "
            f"got {Phi.shape}"
        )
    if Phi.shape[1] == 0:
        return Phi, np.zeros((0, 0)), y, np.zeros(y.shape[0])
    Q, R = np.linalg.qr(Phi)
    residuals = y - Q @ (Q.T @ y)
    leverage = np.sum(Q**2, axis=1)
    return Q, R, residuals, leverage


def compute_loo_mse(Phi, y) -> float:
    """
    Compute leave-one-out MSE without refitting.

    Uses the leverages ``h_ii`` of the least-squares fit: the i-th
    leave-one-out residual is ``e_i / (1 - h_ii)``.

    Parameters
    ----------
    Phi : array-like of shape (n_samples, n_terms)
        Design matrix of the model.
    y : array-like of shape (n_samples,)
        Target values.

    Returns
    -------
    loo_mse : float
        Leave-one-out mean squared error (``inf`` if a point has leverage 1).
    """
    _, _, residuals, leverage = _qr_fit(Phi, y)
    denominator = 1.0 - leverage
    if np.any(denominator <= 1e-12):
        return float("inf")
    return float(np.mean((residuals / denominator) ** 2))


def compute_corrected_loo(Phi, y) -> float:
    """
    Compute the corrected leave-one-out error.

    The leave-one-out MSE is multiplied by
    ``n / (n - k) * (1 + tr((Phi^T Phi)^{-1}))``, which counters its
    optimism for small samples (Chapelle et al., Blatman & Sudret).

    Returns
    -------
    error : float
        Corrected leave-one-out MSE (``inf`` when ``n <= k``).
    """
    Phi = np.asarray(Phi, dtype=float)
    n, k = Phi.shape
    if n <= k:
        return float("inf")
    loo = compute_loo_mse(Phi, y)
    if not np.isfinite(loo) or k == 0:
        return loo
    _, R, _, _ = _qr_fit(Phi, y)
    R_inv = solve_triangular(R, np.eye(k), lower=False)
    correction = n / (n - k) * (1.0 + float(np.sum(R_inv**2)))
    return loo * correction
