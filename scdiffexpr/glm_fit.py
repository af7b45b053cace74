"""
Per-gene nested NB model fits for two-group comparisons.

For every gene two models share the gene's fixed dispersion and per-cell
log offsets:

    null:         log mu_i = beta0 + offset_i
    alternative:  log mu_i = beta1 + beta2 * x_i + offset_i

with ``x_i = 1`` for cells of group 2.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .errors import ConvergenceError
from .glm_levenberg import fit_nb_glm


# Largest |log2 fold-change| ever reported. A gene with no counts in one
# group has an unbounded slope MLE and is reported at this bound.
MAX_ABS_LOG2FC = 20.0

_LN2 = np.log(2.0)


@dataclass
class FittedModelPair:
    null_coef: float
    null_loglik: float
    alt_coef: np.ndarray
    alt_loglik: float
    n_iter: int
    converged: bool = True
    degenerate: bool = False
    message: str = ''

    @property
    def beta2(self):
        return float(self.alt_coef[1])


def _fit_or_last(y, design, offset, theta, maxit, tol, label, notes):
    """Fit, or fall back to the last iterate when the fit fails."""
    try:
        fit = fit_nb_glm(y, design, offset, theta, maxit=maxit, tol=tol)
    except ConvergenceError as err:
        notes.append(f"{label}: {err}")
        return err.coefficients, err.loglik, err.n_iter, False
    return fit['coefficients'], fit['loglik'], fit['iter'], True


def fit_gene_pair(y, offset, x, theta, maxit=100, tol=1e-8):
    """Fit the null and alternative NB models for one gene.

    Parameters
    ----------
    y : ndarray
        Counts of the gene in the comparison cells.
    offset : ndarray
        Log offsets of the gene in the same cells.
    x : ndarray
        Group indicator (1 = group 2).
    theta : float
        Fixed NB dispersion of the gene.
    maxit, tol : int, float
        Solver settings, see ``fit_nb_glm``.

    Returns
    -------
    FittedModelPair
        ``converged`` is False when either fit needed its last iterate;
        ``degenerate`` is True when the slope sits at the
        ``MAX_ABS_LOG2FC`` bound.
    """
    y = np.asarray(y, dtype=np.float64).ravel()
    offset = np.asarray(offset, dtype=np.float64).ravel()
    x = np.asarray(x, dtype=np.float64).ravel()
    in2 = x != 0
    total1 = float(np.sum(y[~in2]))
    total2 = float(np.sum(y[in2]))
    if total1 <= 0 and total2 <= 0:
        raise ValueError("gene has no counts in either group")

    notes = []
    ones = np.ones((len(y), 1))
    b0, ll0, it0, ok0 = _fit_or_last(y, ones, offset, theta, maxit, tol,
                                     'null model', notes)
    bound = MAX_ABS_LOG2FC * _LN2

    if total1 > 0 and total2 > 0:
        design = np.column_stack([ones[:, 0], x])
        coef, ll1, it1, ok1 = _fit_or_last(y, design, offset, theta, maxit,
                                           tol, 'alternative model', notes)
        beta1, beta2 = float(coef[0]), float(coef[1])
        degenerate = abs(beta2) > bound
        if degenerate:
            beta2 = float(np.sign(beta2) * bound)
    else:
        # The all-zero group's likelihood is maximized (at exactly 0) as its
        # mean tends to zero; only the other group has a finite fit.
        nz = in2 if total2 > 0 else ~in2
        coef, ll1, it1, ok1 = _fit_or_last(
            y[nz], np.ones((int(nz.sum()), 1)), offset[nz], theta, maxit,
            tol, 'alternative model', notes)
        b_nz = float(coef[0])
        if total2 > 0:
            beta2 = bound
            beta1 = b_nz - bound
        else:
            beta2 = -bound
            beta1 = b_nz
        degenerate = True

    return FittedModelPair(
        null_coef=float(b0[0]),
        null_loglik=float(ll0),
        alt_coef=np.array([beta1, beta2]),
        alt_loglik=float(ll1),
        n_iter=int(it0) + int(it1),
        converged=bool(ok0 and ok1),
        degenerate=bool(degenerate),
        message='; '.join(notes),
    )


def _dense_row(counts, g, ncells):
    """Row ``g`` of a CSR matrix as a dense vector."""
    row = np.zeros(ncells)
    start, end = counts.indptr[g], counts.indptr[g + 1]
    row[counts.indices[start:end]] = counts.data[start:end]
    return row


def fit_genes(counts, offsets, theta, x, maxit=100, tol=1e-8):
    """Fit nested model pairs for every row of a gene block.

    Parameters
    ----------
    counts : scipy.sparse.csr_matrix
        Counts (genes x cells) of the block.
    offsets : ndarray
        Dense log offsets of the same shape.
    theta : ndarray
        Dispersion per gene.
    x : ndarray
        Group indicator per cell.

    Returns
    -------
    dict of per-gene arrays: 'beta0', 'beta1', 'beta2', 'null_loglik',
    'alt_loglik', 'n_iter', 'converged', 'degenerate', 'message'.
    """
    ngenes, ncells = counts.shape
    if offsets.shape != (ngenes, ncells):
        raise ValueError("offsets must match the shape of counts")

    out = {
        'beta0': np.zeros(ngenes),
        'beta1': np.zeros(ngenes),
        'beta2': np.zeros(ngenes),
        'null_loglik': np.zeros(ngenes),
        'alt_loglik': np.zeros(ngenes),
        'n_iter': np.zeros(ngenes, dtype=np.int64),
        'converged': np.ones(ngenes, dtype=bool),
        'degenerate': np.zeros(ngenes, dtype=bool),
        'message': [''] * ngenes,
    }
    for g in range(ngenes):
        pair = fit_gene_pair(_dense_row(counts, g, ncells), offsets[g], x,
                             theta[g], maxit=maxit, tol=tol)
        out['beta0'][g] = pair.null_coef
        out['beta1'][g] = pair.alt_coef[0]
        out['beta2'][g] = pair.alt_coef[1]
        out['null_loglik'][g] = pair.null_loglik
        out['alt_loglik'][g] = pair.alt_loglik
        out['n_iter'][g] = pair.n_iter
        out['converged'][g] = pair.converged
        out['degenerate'][g] = pair.degenerate
        out['message'][g] = pair.message
    return out


def group_summaries(counts, x):
    """Mean count and detection rate of each gene within each group.

    Returns
    -------
    dict with 'mean1', 'mean2', 'detect1', 'detect2'.
    """
    x = np.asarray(x, dtype=np.float64)
    w2 = x
    w1 = 1.0 - x
    n1 = max(w1.sum(), 1.0)
    n2 = max(w2.sum(), 1.0)
    detected = counts.copy()
    detected.data = (detected.data > 0).astype(np.float64)
    return {
        'mean1': np.asarray(counts @ w1).ravel() / n1,
        'mean2': np.asarray(counts @ w2).ravel() / n2,
        'detect1': np.asarray(detected @ w1).ravel() / n1,
        'detect2': np.asarray(detected @ w2).ravel() / n2,
    }
