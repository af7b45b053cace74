"""Shared fixtures for scdiffexpr tests."""

import numpy as np
import pandas as pd
import pytest
import scipy.sparse as sp

import scdiffexpr as sd


def nb_sample(rng, mu, theta, size):
    """Negative binomial draws with mean ``mu`` and shape ``theta``."""
    return rng.negative_binomial(theta, theta / (theta + mu), size=size)


@pytest.fixture
def rng():
    """Seeded random number generator for reproducibility."""
    return np.random.RandomState(42)


@pytest.fixture(scope="module")
def sim():
    """Synthetic single-cell data: 13 genes x 140 cells in clusters A/B/C.

    Cluster sizes are 50 (A), 50 (B) and 40 (C); offsets are zero (expected
    count 1) and theta is 5 for every gene.

    - 'shift': mean 10 in A, 20 in B and C
    - 'down': mean 20 in A, 5 in B and C
    - 'zeroB': mean 8 in A, no counts in B or C
    - 'null1'..'null8': mean 5 everywhere
    - 'rare': two non-zero cells
    - 'empty': no counts at all
    """
    rs = np.random.RandomState(42)
    theta = 5.0
    sizes = {'A': 50, 'B': 50, 'C': 40}
    labels = np.concatenate([np.repeat(k, n) for k, n in sizes.items()])
    ncells = len(labels)
    in_a = labels == 'A'

    rows = {}
    rows['shift'] = np.where(in_a, nb_sample(rs, 10, theta, ncells),
                             nb_sample(rs, 20, theta, ncells))
    rows['down'] = np.where(in_a, nb_sample(rs, 20, theta, ncells),
                            nb_sample(rs, 5, theta, ncells))
    rows['zeroB'] = np.where(in_a, nb_sample(rs, 8, theta, ncells), 0)
    for k in range(1, 9):
        rows[f'null{k}'] = nb_sample(rs, 5, theta, ncells)
    rare = np.zeros(ncells, dtype=int)
    rare[[3, 77]] = 2
    rows['rare'] = rare
    rows['empty'] = np.zeros(ncells, dtype=int)

    gene_ids = list(rows)
    cell_ids = [f"c{i:03d}" for i in range(ncells)]
    dense = np.vstack([rows[g] for g in gene_ids]).astype(np.float64)
    counts = sp.csr_matrix(dense)
    thetas = pd.Series(theta, index=gene_ids)
    params = sd.ModelParams(np.zeros_like(dense), thetas, cell_ids=cell_ids)
    return {
        'counts': counts,
        'dense': dense,
        'gene_ids': gene_ids,
        'cell_ids': cell_ids,
        'labels': pd.Series(labels, index=cell_ids),
        'params': params,
        'theta': theta,
    }


@pytest.fixture(scope="module")
def a_vs_b(sim):
    """Comparison of cluster A (group 1) against cluster B (group 2)."""
    with pytest.warns(sd.NumericDegeneracyWarning):
        return sd.compare_expression(sim['counts'], sim['params'], sim['labels'],
                                     'A', 'B', gene_ids=sim['gene_ids'],
                                     cell_ids=sim['cell_ids'])
