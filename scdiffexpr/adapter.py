"""
Input alignment and validation.

Checks that the count matrix, the upstream model parameters and the cell
labeling describe the same genes and cells, resolves the two requested
groups, and returns an ``AlignedInput`` restricted to the comparison cells.
"""

import numpy as np
import pandas as pd
import scipy.sparse as sp

from .classes import AlignedInput
from .errors import InputMismatchError
from .groups import resolve_groups
from .model_params import ModelParams, _default_cell_ids, _default_gene_ids


def as_count_matrix(counts, gene_ids=None, cell_ids=None):
    """Coerce counts to a CSR matrix (genes x cells) plus identifiers.

    Parameters
    ----------
    counts : scipy.sparse matrix, ndarray or DataFrame
        Non-negative counts with genes in rows. A DataFrame supplies gene
        ids (index) and cell ids (columns).
    gene_ids, cell_ids : array-like, optional
        Identifiers overriding defaults.

    Returns
    -------
    (csr_matrix, Index, Index)
    """
    if isinstance(counts, pd.DataFrame):
        if gene_ids is None:
            gene_ids = counts.index
        if cell_ids is None:
            cell_ids = counts.columns
        counts = counts.to_numpy(dtype=np.float64)

    if sp.issparse(counts):
        y = sp.csr_matrix(counts, dtype=np.float64)
        values = y.data
    else:
        y = np.asarray(counts, dtype=np.float64)
        if y.ndim == 1:
            y = y.reshape(1, -1)
        if y.ndim != 2:
            raise ValueError("counts must be a 2D matrix shaped (genes, cells)")
        values = y
        y = sp.csr_matrix(y)

    if y.shape[0] == 0 or y.shape[1] == 0:
        raise ValueError("'counts' must contain at least one gene and one cell")
    if values.size > 0:
        if np.any(np.isnan(values)):
            raise ValueError("NA counts not allowed")
        if not np.all(np.isfinite(values)):
            raise ValueError("Infinite counts not allowed")
        if np.min(values) < 0:
            raise ValueError("Negative counts not allowed")
        if np.any(values != np.round(values)):
            raise ValueError("counts must be integers")
    y.eliminate_zeros()
    y.sort_indices()

    ngenes, ncells = y.shape
    gene_ids = _default_gene_ids(ngenes) if gene_ids is None else pd.Index(gene_ids)
    cell_ids = _default_cell_ids(ncells) if cell_ids is None else pd.Index(cell_ids)
    if len(gene_ids) != ngenes:
        raise ValueError("length of gene_ids must equal number of rows in counts")
    if len(cell_ids) != ncells:
        raise ValueError("length of cell_ids must equal number of columns in counts")
    return y, gene_ids, cell_ids


def _check_unique(ids, what):
    if ids.has_duplicates:
        dup = list(ids[ids.duplicated()].unique()[:5])
        raise InputMismatchError(f"duplicated {what} identifiers: {dup}")


def _match_ids(ref, other, what, ref_name, other_name):
    """Positions of ``ref`` within ``other``; the two sets must be equal."""
    if len(ref) != len(other) or not ref.isin(other).all():
        missing = list(ref[~ref.isin(other)][:5])
        extra = list(other[~other.isin(ref)][:5])
        raise InputMismatchError(
            f"{what} of {ref_name} and {other_name} differ "
            f"({len(ref)} vs {len(other)}; missing from {other_name}: "
            f"{missing}, not in {ref_name}: {extra})")
    return other.get_indexer(ref)


def _labels_for_cells(labels, cell_ids):
    """Per-cell labels aligned with ``cell_ids``; every cell needs one."""
    if isinstance(labels, dict):
        labels = pd.Series(labels)
    if isinstance(labels, pd.Series):
        lab_ids = pd.Index(labels.index)
        _check_unique(lab_ids, 'labeled cell')
        pos = _match_ids(cell_ids, lab_ids, 'cell sets', 'counts', 'labels')
        labels = labels.to_numpy(dtype=object)[pos]
    else:
        labels = np.asarray(labels, dtype=object)
        if labels.ndim != 1 or len(labels) != len(cell_ids):
            raise InputMismatchError(
                f"labeling has {labels.size} entries but counts have "
                f"{len(cell_ids)} cells")

    missing = pd.isna(labels)
    if missing.any():
        raise InputMismatchError(
            f"{int(missing.sum())} cells have no label, e.g. "
            f"{list(cell_ids[missing][:5])}")
    return labels


def _subsample(mask, max_cells, rng):
    """Keep at most ``max_cells`` of the True positions of ``mask``."""
    idx = np.flatnonzero(mask)
    if max_cells is None or len(idx) <= max_cells:
        return mask
    keep = np.sort(rng.choice(idx, size=max_cells, replace=False))
    out = np.zeros_like(mask)
    out[keep] = True
    return out


def align_inputs(counts, model_params, labels, group1, group2=None,
                 gene_ids=None, cell_ids=None, max_cells=None, seed=1448145):
    """Validate and align counts, model parameters and cell groups.

    Parameters
    ----------
    counts : scipy.sparse matrix, ndarray or DataFrame
        Counts, genes x cells.
    model_params : ModelParams
        Log offsets and dispersions from the upstream model.
    labels : Series, dict or array-like
        Cluster label of each cell. A Series/dict is matched by cell id,
        an array positionally.
    group1, group2 : label, list of labels, or group specification
        The two groups to compare. ``group2=None`` means every cell not in
        ``group1``.
    gene_ids, cell_ids : array-like, optional
        Identifiers for array counts.
    max_cells : int, optional
        Subsample each group to at most this many cells.
    seed : int
        Seed for the subsampling generator.

    Returns
    -------
    AlignedInput

    Raises
    ------
    InputMismatchError
        Gene or cell sets differ between inputs, or a group is empty.
    """
    if not isinstance(model_params, ModelParams):
        raise TypeError("model_params must be a ModelParams instance")
    if max_cells is not None and max_cells < 1:
        raise ValueError("max_cells must be at least 1")

    y, gene_ids, cell_ids = as_count_matrix(counts, gene_ids, cell_ids)
    _check_unique(gene_ids, 'gene')
    _check_unique(cell_ids, 'cell')
    _check_unique(model_params.gene_ids, 'model gene')
    _check_unique(model_params.cell_ids, 'model cell')

    gene_index = _match_ids(gene_ids, model_params.gene_ids, 'gene sets',
                            'counts', 'model parameters')
    cell_pos = _match_ids(cell_ids, model_params.cell_ids, 'cell sets',
                          'counts', 'model parameters')
    cell_labels = _labels_for_cells(labels, cell_ids)

    mask1, mask2, spec1, spec2 = resolve_groups(cell_labels, group1, group2)

    if max_cells is not None:
        rng = np.random.default_rng(seed)
        mask1 = _subsample(mask1, max_cells, rng)
        mask2 = _subsample(mask2, max_cells, rng)

    keep = np.flatnonzero(mask1 | mask2)
    x = mask2[keep].astype(np.float64)

    return AlignedInput(
        counts=y[:, keep],
        gene_ids=gene_ids,
        cell_ids=cell_ids[keep],
        x=x,
        theta=model_params.theta[gene_index],
        model=model_params,
        gene_index=gene_index,
        cell_index=cell_pos[keep],
        group1=spec1,
        group2=spec2,
    )
