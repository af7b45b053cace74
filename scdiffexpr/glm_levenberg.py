"""
Levenberg-damped Fisher scoring for negative binomial GLMs with fixed
dispersion and fixed offsets.

The inner loops are numba-compiled; one call fits one gene. Designs are
restricted to one or two columns (intercept, or intercept plus a group
indicator), which is all a two-group likelihood ratio test needs.
"""

import math

import numpy as np
from numba import njit

from .errors import ConvergenceError


# Linear predictor clip; keeps exp() finite.
_ETA_CLIP = 500.0

_LEV_START = 1e-3
_LEV_RETRY = 1.0
_LEV_MIN = 1e-10
_LEV_MAX = 1e10


# ---------------------------------------------------------------------------
# Numba-accelerated core functions
# ---------------------------------------------------------------------------

@njit(cache=True)
def _clip_eta(e):
    if e > _ETA_CLIP:
        return _ETA_CLIP
    if e < -_ETA_CLIP:
        return -_ETA_CLIP
    return e


@njit(cache=True)
def _linear_predictor_nb(X, beta, offset, eta):
    n = X.shape[0]
    p = X.shape[1]
    for i in range(n):
        s = offset[i]
        for a in range(p):
            s += X[i, a] * beta[a]
        eta[i] = s


@njit(cache=True)
def _nb_loglik_nb(y, eta, theta):
    """Sum of NB log-probabilities with log-mean ``eta`` and shape theta."""
    lg_theta = math.lgamma(theta)
    ll = 0.0
    for i in range(y.shape[0]):
        e = _clip_eta(eta[i])
        mu = math.exp(e)
        yi = y[i]
        # theta*log(theta/(theta+mu)) == -theta*log1p(mu/theta)
        ll += (math.lgamma(yi + theta) - lg_theta - math.lgamma(yi + 1.0)
               - theta * math.log1p(mu / theta))
        if yi > 0.0:
            ll += yi * (e - math.log(theta + mu))
    return ll


@njit(cache=True)
def _score_info_nb(y, X, eta, theta, score, info):
    """Score vector and Fisher information of the NB log-likelihood."""
    n = X.shape[0]
    p = X.shape[1]
    for a in range(p):
        score[a] = 0.0
        for b in range(p):
            info[a, b] = 0.0
    for i in range(n):
        mu = math.exp(_clip_eta(eta[i]))
        denom = 1.0 + mu / theta
        r = (y[i] - mu) / denom
        w = mu / denom
        for a in range(p):
            score[a] += X[i, a] * r
            for b in range(p):
                info[a, b] += X[i, a] * w * X[i, b]


@njit(cache=True)
def _solve_damped_nb(info, score, lev, delta):
    """Solve (info + lev * diag(info)) delta = score for p <= 2.

    Returns False when the damped system is singular.
    """
    p = score.shape[0]
    a00 = info[0, 0] + lev * (info[0, 0] + 1e-10)
    if p == 1:
        if not a00 > 0.0:
            return False
        delta[0] = score[0] / a00
        return True
    a11 = info[1, 1] + lev * (info[1, 1] + 1e-10)
    a01 = info[0, 1]
    a10 = info[1, 0]
    det = a00 * a11 - a01 * a10
    if not det > 1e-300:
        return False
    delta[0] = (a11 * score[0] - a01 * score[1]) / det
    delta[1] = (a00 * score[1] - a10 * score[0]) / det
    return True


@njit(cache=True)
def _fit_levenberg_nb(y, X, offset, theta, beta_start, lev, maxit, tol):
    """Maximize the NB log-likelihood over beta for one gene.

    Convergence is declared when half the Newton decrement
    ``score' info^-1 score`` falls below ``tol * (|loglik| + 0.1)``.

    Returns
    -------
    (beta, loglik, n_iter, status) with status 0 = converged,
    1 = iteration limit, 2 = singular information, 3 = no ascent step.
    """
    n = y.shape[0]
    p = X.shape[1]
    beta = beta_start.copy()
    beta_new = np.empty(p)
    eta = np.empty(n)
    eta_new = np.empty(n)
    score = np.empty(p)
    info = np.empty((p, p))
    delta = np.empty(p)

    _linear_predictor_nb(X, beta, offset, eta)
    ll = _nb_loglik_nb(y, eta, theta)
    ll_new = ll
    status = 1
    it = 0
    while it < maxit:
        _score_info_nb(y, X, eta, theta, score, info)

        if not _solve_damped_nb(info, score, 0.0, delta):
            status = 2
            break
        decrement = 0.0
        for a in range(p):
            decrement += score[a] * delta[a]
        if 0.5 * decrement < tol * (abs(ll) + 0.1):
            # Take the final full Newton step when it does not lose ground.
            for a in range(p):
                beta_new[a] = beta[a] + delta[a]
            _linear_predictor_nb(X, beta_new, offset, eta_new)
            ll_new = _nb_loglik_nb(y, eta_new, theta)
            if ll_new >= ll:
                for a in range(p):
                    beta[a] = beta_new[a]
                ll = ll_new
            status = 0
            break

        it += 1
        accepted = False
        while lev <= _LEV_MAX:
            if _solve_damped_nb(info, score, lev, delta):
                for a in range(p):
                    beta_new[a] = beta[a] + delta[a]
                _linear_predictor_nb(X, beta_new, offset, eta_new)
                ll_new = _nb_loglik_nb(y, eta_new, theta)
                if ll_new >= ll:
                    accepted = True
                    break
            lev *= 10.0

        if not accepted:
            status = 3
            break

        for a in range(p):
            beta[a] = beta_new[a]
        for i in range(n):
            eta[i] = eta_new[i]
        ll = ll_new
        lev = max(lev / 10.0, _LEV_MIN)

    return beta, ll, it, status


# ---------------------------------------------------------------------------
# Python wrappers
# ---------------------------------------------------------------------------

def nbinom_loglik(y, mean, theta):
    """Total NB log-likelihood of counts ``y`` at means ``mean``.

    Parameters
    ----------
    y : array-like
        Counts for one gene.
    mean : array-like
        Expected counts (> 0).
    theta : float
        NB shape parameter; variance is ``mean + mean**2 / theta``.
    """
    y = np.ascontiguousarray(y, dtype=np.float64).ravel()
    mean = np.asarray(mean, dtype=np.float64).ravel()
    eta = np.log(np.maximum(mean, 1e-300))
    return float(_nb_loglik_nb(y, eta, float(theta)))


def nbinom_loglik_eta(y, eta, theta):
    """Total NB log-likelihood with log-scale means ``eta``."""
    y = np.ascontiguousarray(y, dtype=np.float64).ravel()
    eta = np.ascontiguousarray(eta, dtype=np.float64).ravel()
    return float(_nb_loglik_nb(y, eta, float(theta)))


def start_coefficients(y, design, offset):
    """Starting values from offset-adjusted group means.

    For an intercept column this is ``log(sum(y) / sum(exp(offset)))``;
    a second 0/1 column gets the log ratio of the two groups' adjusted
    means. Groups without counts start from -20.
    """
    design = np.asarray(design, dtype=np.float64)
    lib = np.exp(np.clip(offset, -_ETA_CLIP, _ETA_CLIP))
    beta = np.zeros(design.shape[1])

    def _log_rate(sel):
        total = np.sum(y[sel])
        total_lib = np.sum(lib[sel])
        if total > 0 and total_lib > 0:
            return np.log(total / total_lib)
        return -20.0

    if design.shape[1] == 1:
        beta[0] = _log_rate(slice(None))
    else:
        in2 = design[:, 1] != 0
        beta[0] = _log_rate(~in2)
        beta[1] = _log_rate(in2) - beta[0]
    return beta


def fit_nb_glm(y, design, offset, theta, coef_start=None, maxit=100,
               tol=1e-8, retry=True):
    """Fit one gene's NB GLM with fixed dispersion and offset.

    The first attempt starts with light Levenberg damping. If it does not
    converge, a single retry starts from the null coefficients (slope 0)
    with heavy damping.

    Parameters
    ----------
    y : ndarray
        Counts of one gene (cells,).
    design : ndarray
        Design matrix (cells x 1 or cells x 2).
    offset : ndarray
        Log offsets (cells,).
    theta : float
        NB dispersion (shape).
    coef_start : ndarray, optional
        Starting coefficients.
    maxit : int
        Maximum iterations per attempt.
    tol : float
        Relative convergence tolerance on the log-likelihood.
    retry : bool
        Whether to retry once with damping before giving up.

    Returns
    -------
    dict with 'coefficients', 'loglik', 'iter', 'retried'.

    Raises
    ------
    ConvergenceError
        Neither attempt converged. The exception carries the best
        iterate.
    """
    y = np.ascontiguousarray(y, dtype=np.float64).ravel()
    offset = np.ascontiguousarray(offset, dtype=np.float64).ravel()
    design = np.ascontiguousarray(design, dtype=np.float64)
    if design.ndim == 1:
        design = design.reshape(-1, 1)
    if design.shape[1] not in (1, 2):
        raise ValueError("design must have one or two columns")
    if design.shape[0] != y.shape[0] or offset.shape[0] != y.shape[0]:
        raise ValueError("design, offset and counts must have one entry per cell")
    theta = float(theta)

    if coef_start is None:
        coef_start = start_coefficients(y, design, offset)
    beta0 = np.ascontiguousarray(coef_start, dtype=np.float64).ravel()

    beta, ll, n_iter, status = _fit_levenberg_nb(
        y, design, offset, theta, beta0, _LEV_START, int(maxit), float(tol))
    if status == 0:
        return {'coefficients': beta, 'loglik': float(ll), 'iter': int(n_iter),
                'retried': False}

    best_beta, best_ll, total_iter = beta, ll, int(n_iter)
    if retry:
        null_start = np.zeros_like(beta0)
        null_start[0] = start_coefficients(y, design[:, :1], offset)[0]
        beta, ll, n_iter, status = _fit_levenberg_nb(
            y, design, offset, theta, null_start, _LEV_RETRY, int(maxit),
            float(tol))
        total_iter += int(n_iter)
        if status == 0:
            return {'coefficients': beta, 'loglik': float(ll),
                    'iter': total_iter, 'retried': True}
        if ll > best_ll:
            best_beta, best_ll = beta, ll

    reason = {1: 'iteration limit reached', 2: 'singular information matrix',
              3: 'no ascent direction'}[int(status)]
    raise ConvergenceError(f"NB fit did not converge: {reason}",
                           coefficients=best_beta, loglik=float(best_ll),
                           n_iter=total_iter)
