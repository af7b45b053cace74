"""Tests for ranking, multiple testing adjustment and result extraction."""

import numpy as np
import pandas as pd
import pytest

import scdiffexpr as sd
from scdiffexpr.results import rank_order


@pytest.fixture
def raw_table():
    return pd.DataFrame({
        'gene_id': ['b', 'a', 'c', 'd', 'e'],
        'log_fc': [1.0, -1.0, 2.0, -3.0, 0.5],
        'statistic': [5.0, 5.0, 5.0, 0.0, 12.0],
        'p_value': [0.02, 0.02, 0.02, 1.0, 0.001],
    })


class TestRankOrder:

    def test_ties_by_abs_lfc_then_name(self, raw_table):
        o = rank_order(raw_table['p_value'], raw_table['log_fc'],
                       raw_table['gene_id'])
        assert list(raw_table['gene_id'].values[o]) == ['e', 'c', 'a', 'b', 'd']

    def test_mixed_id_types(self):
        o = rank_order([0.5, 0.5], [1.0, 1.0], [10, 'x'])
        assert list(o) == [0, 1]


class TestRankTable:

    def test_rank_and_index(self, raw_table):
        tab = sd.rank_table(raw_table)
        assert list(tab.index) == ['e', 'c', 'a', 'b', 'd']
        assert tab.index.name == 'gene'
        assert list(tab['rank']) == [1, 2, 3, 4, 5]
        assert list(tab.columns) == ['gene_id', 'log_fc', 'statistic',
                                     'p_value', 'fdr', 'rank']

    def test_bh_values(self, raw_table):
        tab = sd.rank_table(raw_table)
        # p = 0.001, 0.02 x 3, 1.0 over 5 tests
        np.testing.assert_allclose(tab['fdr'].values,
                                   [0.005, 0.025, 0.025, 0.025, 1.0])

    def test_other_methods(self, raw_table):
        tab = sd.rank_table(raw_table, adjust_method='bonferroni')
        np.testing.assert_allclose(tab['fdr'].values,
                                   [0.005, 0.1, 0.1, 0.1, 1.0])
        tab = sd.rank_table(raw_table, adjust_method='none')
        np.testing.assert_allclose(tab['fdr'].values, tab['p_value'].values)

    def test_unknown_method(self, raw_table):
        with pytest.raises(ValueError):
            sd.rank_table(raw_table, adjust_method='magic')

    def test_adjust_ignores_nan(self):
        adj = sd.adjust_p_values([0.01, np.nan, 0.04])
        assert np.isnan(adj[1])
        np.testing.assert_allclose(adj[[0, 2]], [0.02, 0.04])


class TestTopGenes:

    def test_directions(self, a_vs_b):
        up = sd.top_genes(a_vs_b, n=3, direction='up')
        down = sd.top_genes(a_vs_b, n=3, direction='down')
        assert up.index[0] == 'shift'
        assert np.all(up['log_fc'] > 0)
        assert 'zeroB' in down.index
        assert np.all(down['log_fc'] < 0)
        assert len(sd.top_genes(a_vs_b, n=4)) == 4

    def test_fdr_cutoff(self, a_vs_b):
        sig = sd.top_genes(a_vs_b, n=100, p_value=0.01)
        assert np.all(sig['fdr'] <= 0.01)
        assert {'shift', 'down', 'zeroB'} <= set(sig.index)

    def test_accepts_table(self, a_vs_b):
        tab = sd.top_genes(a_vs_b['table'], n=2)
        assert len(tab) == 2

    def test_bad_direction(self, a_vs_b):
        with pytest.raises(ValueError):
            sd.top_genes(a_vs_b, direction='sideways')


class TestDecideTests:

    def test_up_down(self, a_vs_b):
        calls = sd.decide_tests(a_vs_b)
        tab = a_vs_b['table']
        res = pd.Series(calls, index=tab.index)
        assert res['shift'] == 1
        assert res['down'] == -1
        assert res['zeroB'] == -1

    def test_lfc_threshold(self, a_vs_b):
        calls = sd.decide_tests(a_vs_b, lfc=5)
        res = pd.Series(calls, index=a_vs_b['table'].index)
        assert res['shift'] == 0
        assert res['zeroB'] == -1

    def test_unadjusted(self, raw_table):
        tab = sd.rank_table(raw_table)
        calls = sd.decide_tests(tab, p_value=0.01, adjust=False)
        assert list(calls) == [1, 0, 0, 0, 0]
