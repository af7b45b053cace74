"""
Two-group differential expression with fixed-dispersion NB likelihood
ratio tests.

``compare_expression`` aligns the inputs, drops genes that are not
detected in the comparison cells, fits the nested models for every
remaining gene (optionally across worker processes) and returns the
ranked result table.
"""

import warnings

import numpy as np

from .adapter import align_inputs
from .classes import ComparisonResult
from .errors import ConvergenceWarning, NumericDegeneracyWarning
from .glm_fit import MAX_ABS_LOG2FC
from .parallel import run_chunks
from .results import rank_table


def detected_genes(counts, min_cells=1):
    """Boolean mask of genes with a non-zero count in at least
    ``max(min_cells, 1)`` cells."""
    if min_cells < 0:
        raise ValueError("min_cells must be non-negative")
    nz_per_gene = np.diff(counts.indptr)
    return nz_per_gene >= max(int(min_cells), 1)


def compare_expression(counts, model_params, labels, group1, group2=None,
                       gene_ids=None, cell_ids=None, min_cells=1,
                       max_cells=None, seed=1448145, n_workers=1,
                       chunk_size=256, maxit=100, tol=1e-8,
                       adjust_method='BH', verbose=False):
    """Compare mean expression between two groups of cells, gene by gene.

    For each gene a negative binomial GLM with the gene's fixed dispersion
    and per-cell log offsets is fitted twice, with and without a group
    indicator, and the two fits are compared by a likelihood ratio test.

    Parameters
    ----------
    counts : scipy.sparse matrix, ndarray or DataFrame
        Counts, genes x cells.
    model_params : ModelParams
        Per-gene dispersion and log offsets from the upstream model.
    labels : Series, dict or array-like
        Cluster label of each cell.
    group1 : label, list of labels, Label, LabelUnion or Complement
        Reference group.
    group2 : same as group1, optional
        Group compared against ``group1``; positive log_fc means higher
        expression in ``group2``. Defaults to all cells not in ``group1``.
    gene_ids, cell_ids : array-like, optional
        Identifiers for array counts.
    min_cells : int
        Genes detected in fewer comparison cells are not tested. The
        default only drops genes with no counts in the comparison cells;
        larger values give a stricter, opt-in filter.
    max_cells : int, optional
        Subsample each group to at most this many cells.
    seed : int
        Seed for subsampling.
    n_workers : int
        Worker processes for the per-gene fits.
    chunk_size : int
        Genes per worker task.
    maxit : int
        Solver iteration limit per attempt.
    tol : float
        Relative log-likelihood convergence tolerance.
    adjust_method : str
        Multiple testing method for the 'fdr' column.
    verbose : bool
        Print progress messages.

    Returns
    -------
    ComparisonResult
        ``table`` has one row per tested gene, sorted by p_value, with
        columns gene_id, beta0, beta1, beta2, log_fc, statistic, p_value,
        fdr, rank, mean1, mean2, detect1, detect2, converged, degenerate,
        n_iter, message.

    Raises
    ------
    InputMismatchError
        Genes or cells disagree between inputs, or a group is empty.
    """
    aligned = align_inputs(counts, model_params, labels, group1, group2,
                           gene_ids=gene_ids, cell_ids=cell_ids,
                           max_cells=max_cells, seed=seed)

    keep = detected_genes(aligned['counts'], min_cells)
    genes = np.flatnonzero(keep)
    filtered = list(aligned['gene_ids'][~keep])
    if verbose:
        print(f"Remove {len(filtered)} genes detected in fewer than "
              f"{max(int(min_cells), 1)} cells.")
    if len(genes) == 0:
        raise ValueError("No gene passed the filtering.")
    if verbose:
        print(f"Testing {len(genes)} genes with {aligned.n_cells1} cells in "
              f"group 1 and {aligned.n_cells2} cells in group 2.")

    raw = run_chunks(aligned, genes, n_workers=n_workers,
                     chunk_size=chunk_size, maxit=maxit, tol=tol,
                     verbose=verbose)
    table = rank_table(raw, adjust_method=adjust_method)

    n_degenerate = int(table['degenerate'].sum())
    if n_degenerate > 0:
        warnings.warn(
            f"{n_degenerate} gene(s) have a fold-change at the "
            f"+/-{MAX_ABS_LOG2FC:g} log2 bound (no counts in one group).",
            NumericDegeneracyWarning, stacklevel=2)
    n_failed = int((~table['converged']).sum())
    if n_failed > 0:
        warnings.warn(
            f"{n_failed} gene(s) did not converge; reported with "
            f"statistic 0 and p_value 1.",
            ConvergenceWarning, stacklevel=2)

    spec1, spec2 = aligned['group1'], aligned['group2']
    return ComparisonResult(
        table=table,
        comparison=f"{spec2.describe()} vs {spec1.describe()}",
        group1=spec1,
        group2=spec2,
        n_cells1=aligned.n_cells1,
        n_cells2=aligned.n_cells2,
        filtered=filtered,
        adjust_method=adjust_method,
    )
