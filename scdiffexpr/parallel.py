"""
Fan-out of per-gene fits over worker processes.

Genes are cut into contiguous chunks. Each chunk travels with its own
slice of counts, offsets and dispersions, so workers share nothing
mutable; results come back in completion order and are ranked afterwards.
"""

from concurrent.futures import ProcessPoolExecutor, as_completed

import numpy as np
import pandas as pd

from .glm_test import run_block


def make_chunks(n_genes, chunk_size=256):
    """Contiguous (start, end) gene ranges covering ``range(n_genes)``."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")
    tasks = []
    start = 0
    while start < n_genes:
        end = min(n_genes, start + chunk_size)
        tasks.append((start, end))
        start = end
    return tasks


def _chunk_payload(aligned, genes, maxit, tol):
    """Read-only inputs for one chunk of gene positions."""
    return {'input': aligned.subset_genes(genes), 'maxit': maxit, 'tol': tol}


def _run_chunk(payload):
    """Worker: expand the chunk's offsets and fit every gene in it."""
    chunk = payload['input']
    offsets = chunk.offset_rows(slice(None))
    return run_block(np.asarray(chunk['gene_ids'], dtype=object),
                     chunk['counts'], offsets, chunk['theta'], chunk['x'],
                     maxit=payload['maxit'], tol=payload['tol'])


def run_chunks(aligned, genes=None, n_workers=1, chunk_size=256, maxit=100,
               tol=1e-8, verbose=False):
    """Fit and test genes of an aligned input, chunk by chunk.

    Parameters
    ----------
    aligned : AlignedInput
    genes : ndarray of int, optional
        Gene positions to test (default: all).
    n_workers : int
        Number of worker processes (1 = run inline).
    chunk_size : int
        Genes per task.
    maxit, tol : solver settings.
    verbose : bool
        Print progress messages.

    Returns
    -------
    DataFrame of unranked result rows.
    """
    if n_workers < 1:
        raise ValueError("n_workers must be at least 1")
    if genes is None:
        genes = np.arange(aligned.shape[0])
    genes = np.asarray(genes, dtype=int)
    tasks = make_chunks(len(genes), chunk_size)

    parts = []
    if n_workers > 1 and len(tasks) > 1:
        with ProcessPoolExecutor(max_workers=n_workers) as executor:
            futures = [executor.submit(_run_chunk,
                                       _chunk_payload(aligned, genes[s:e], maxit, tol))
                       for s, e in tasks]
            for done, fut in enumerate(as_completed(futures), start=1):
                parts.append(fut.result())
                if verbose:
                    print(f"  Chunk {done}/{len(tasks)} finished.")
    else:
        for k, (s, e) in enumerate(tasks):
            if verbose and len(tasks) > 1:
                print(f"  Chunk {k + 1}/{len(tasks)}...")
            parts.append(_run_chunk(_chunk_payload(aligned, genes[s:e], maxit, tol)))

    if not parts:
        return pd.DataFrame(columns=['gene_id', 'beta0', 'beta1', 'beta2',
                                     'log_fc', 'statistic', 'p_value'])
    return pd.concat(parts, ignore_index=True)
