"""
Ranking and extraction of comparison results.

Sorting, multiple-testing adjustment, top-gene extraction by direction
and up/down classification.
"""

import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests


_METHOD_MAP = {
    'BH': 'fdr_bh', 'BY': 'fdr_by', 'fdr': 'fdr_bh',
    'holm': 'holm', 'hochberg': 'hochberg',
    'hommel': 'hommel', 'bonferroni': 'bonferroni'
}


def adjust_p_values(p_values, method='BH'):
    """Adjust p-values for multiple testing, ignoring NaNs."""
    raw = np.asarray(p_values, dtype=np.float64)
    if method == 'none':
        return raw.copy()
    if method not in _METHOD_MAP:
        raise ValueError(f"method must be one of {list(_METHOD_MAP) + ['none']}")
    adj = np.full_like(raw, np.nan)
    valid = ~np.isnan(raw)
    if valid.any():
        _, adj[valid], _, _ = multipletests(raw[valid], method=_METHOD_MAP[method])
    return adj


def rank_order(p_values, log_fc, gene_ids):
    """Row order: p-value ascending, then |log_fc| descending, then gene id.

    Gene ids are compared as strings so mixed id types still sort.
    """
    p_values = np.asarray(p_values, dtype=np.float64)
    alfc = np.abs(np.asarray(log_fc, dtype=np.float64))
    names = np.asarray([str(g) for g in gene_ids])
    name_rank = np.argsort(np.argsort(names, kind='stable'), kind='stable')
    return np.lexsort((name_rank, -alfc, p_values))


def rank_table(table, adjust_method='BH'):
    """Sort an assembled table and add 'fdr' and 'rank' columns.

    Parameters
    ----------
    table : DataFrame
        Unranked rows with at least gene_id, log_fc and p_value.
    adjust_method : str
        Method for the 'fdr' column ('BH', 'BY', 'holm', 'bonferroni', ...).

    Returns
    -------
    DataFrame indexed by gene id, sorted by rank.
    """
    o = rank_order(table['p_value'].values, table['log_fc'].values,
                   table['gene_id'].values)
    fdr = adjust_p_values(table['p_value'].values, adjust_method)
    tab = table.iloc[o].copy()
    pos = tab.columns.get_loc('p_value') + 1
    tab.insert(pos, 'fdr', fdr[o])
    tab.insert(pos + 1, 'rank', np.arange(1, len(tab) + 1))
    tab.index = pd.Index(tab['gene_id'].values, name='gene')
    return tab


def top_genes(result, n=10, direction='both', p_value=1.0):
    """Top ranked genes, optionally restricted to one fold-change sign.

    Parameters
    ----------
    result : ComparisonResult or DataFrame
        Output of ``compare_expression`` (or its table).
    n : int
        Maximum number of rows.
    direction : str
        'both', 'up' (log_fc > 0, higher in group 2) or 'down'
        (log_fc < 0).
    p_value : float
        FDR cutoff; rows with fdr above it are dropped.

    Returns
    -------
    DataFrame
    """
    tab = result['table'] if isinstance(result, dict) else result
    if direction == 'up':
        tab = tab[tab['log_fc'] > 0]
    elif direction == 'down':
        tab = tab[tab['log_fc'] < 0]
    elif direction != 'both':
        raise ValueError("direction must be 'both', 'up' or 'down'")
    if p_value < 1:
        tab = tab[tab['fdr'] <= p_value]
    n = max(int(n), 0)
    return tab.iloc[:n].copy()


def decide_tests(result, p_value=0.05, lfc=0, adjust=True):
    """Classify genes as up (1), down (-1), or not significant (0).

    Parameters
    ----------
    result : ComparisonResult or DataFrame
    p_value : float
        Significance threshold.
    lfc : float
        Minimum absolute log2 fold-change.
    adjust : bool
        Threshold the 'fdr' column instead of raw p-values.

    Returns
    -------
    ndarray of int, in table order.
    """
    tab = result['table'] if isinstance(result, dict) else result
    p = tab['fdr'].values if adjust else tab['p_value'].values
    logFC = tab['log_fc'].values

    is_de = (p < p_value).astype(int)
    is_de[is_de.astype(bool) & (logFC < 0)] = -1
    is_de[np.abs(logFC) < lfc] = 0
    return is_de
