"""Tests for ModelParams offset layouts."""

import numpy as np
import pandas as pd
import pytest

import scdiffexpr as sd


CELLS = ['a', 'b', 'c', 'd']


class TestLayouts:

    def test_scalar(self):
        mp = sd.ModelParams(0.5, [1.0, 2.0], cell_ids=CELLS)
        assert mp.shape == (2, 4)
        np.testing.assert_array_equal(mp.offset_rows(), np.full((2, 4), 0.5))
        assert 'scalar' in repr(mp)

    def test_scalar_needs_cells(self):
        with pytest.raises(ValueError):
            sd.ModelParams(0.5, [1.0, 2.0])

    def test_per_cell(self):
        row = np.array([0.0, 1.0, 2.0, 3.0])
        mp = sd.ModelParams(row, [1.0, 2.0, 3.0])
        out = mp.offset_rows([0, 2], [3, 1])
        np.testing.assert_array_equal(out, [[3.0, 1.0], [3.0, 1.0]])
        assert list(mp.cell_ids) == ['Cell1', 'Cell2', 'Cell3', 'Cell4']

    def test_full_matrix(self):
        off = np.arange(8, dtype=float).reshape(2, 4)
        mp = sd.ModelParams(off, [1.0, 2.0])
        np.testing.assert_array_equal(mp.offset_rows(), off)
        np.testing.assert_array_equal(mp.offset_rows([1], [0, 3]), [[4.0, 7.0]])
        # Returned rows never alias the stored matrix
        out = mp.offset_rows()
        out[0, 0] = 99.0
        assert mp.offset_rows()[0, 0] == 0.0

    def test_dataframe(self):
        df = pd.DataFrame(np.zeros((2, 4)), index=['g1', 'g2'], columns=CELLS)
        mp = sd.ModelParams(df, pd.Series([2.0, 1.0], index=['g2', 'g1']))
        assert list(mp.gene_ids) == ['g1', 'g2']
        np.testing.assert_array_equal(mp.theta, [1.0, 2.0])

    def test_from_expected(self):
        mu = np.array([[1.0, np.e], [np.e ** 2, 1.0]])
        mp = sd.ModelParams.from_expected(mu, [1.0, 1.0])
        np.testing.assert_allclose(mp.offset_rows(), [[0.0, 1.0], [2.0, 0.0]])
        with pytest.raises(ValueError):
            sd.ModelParams.from_expected(np.array([[0.0, 1.0]]), [1.0])

    def test_factorization_matches_product(self, rng):
        coef = rng.normal(size=(5, 3))
        reg = rng.normal(size=(7, 3))
        mp = sd.ModelParams.from_factorization(coef, reg, np.ones(5))
        assert mp.is_factorized
        np.testing.assert_allclose(mp.offset_rows(), coef @ reg.T)
        np.testing.assert_allclose(mp.offset_rows([4, 1], [6, 0]),
                                   (coef @ reg.T)[np.ix_([4, 1], [6, 0])])
        assert 'factorized, k=3' in repr(mp)

    def test_factorization_shapes(self):
        with pytest.raises(ValueError):
            sd.ModelParams.from_factorization(np.ones((2, 3)), np.ones((4, 2)),
                                              [1.0, 1.0])


class TestValidation:

    @pytest.mark.parametrize("theta", [[0.0, 1.0], [-1.0, 1.0], [np.nan, 1.0],
                                       [np.inf, 1.0]])
    def test_bad_theta(self, theta):
        with pytest.raises(ValueError):
            sd.ModelParams(np.zeros((2, 3)), theta)

    def test_bad_offsets(self):
        off = np.zeros((2, 3))
        off[0, 1] = np.nan
        with pytest.raises(ValueError, match="finite"):
            sd.ModelParams(off, [1.0, 1.0])

    def test_row_count(self):
        with pytest.raises(ValueError):
            sd.ModelParams(np.zeros((3, 3)), [1.0, 1.0])

    def test_id_lengths(self):
        with pytest.raises(ValueError):
            sd.ModelParams(np.zeros((2, 3)), [1.0, 1.0], cell_ids=['a', 'b'])


class TestSubsetGenes:

    def test_full(self):
        off = np.arange(12, dtype=float).reshape(3, 4)
        mp = sd.ModelParams(off, [1.0, 2.0, 3.0], gene_ids=['x', 'y', 'z'])
        sub = mp.subset_genes([2, 0])
        assert list(sub.gene_ids) == ['z', 'x']
        np.testing.assert_array_equal(sub.theta, [3.0, 1.0])
        np.testing.assert_array_equal(sub.offset_rows(), off[[2, 0]])

    def test_factorized(self, rng):
        coef = rng.normal(size=(4, 2))
        reg = rng.normal(size=(6, 2))
        mp = sd.ModelParams.from_factorization(coef, reg, np.ones(4))
        sub = mp.subset_genes(np.array([1, 3]))
        assert sub.is_factorized
        np.testing.assert_allclose(sub.offset_rows(None, [0, 5]),
                                   (coef[[1, 3]] @ reg[[0, 5]].T))

    def test_scalar(self):
        mp = sd.ModelParams(1.0, [1.0, 2.0, 3.0], cell_ids=CELLS)
        sub = mp.subset_genes(slice(1, 3))
        assert sub.shape == (2, 4)
        np.testing.assert_array_equal(sub.offset_rows(), np.ones((2, 4)))
