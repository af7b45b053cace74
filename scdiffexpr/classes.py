"""
Core data classes for scdiffexpr.

Dict-backed containers with attribute access, used for the aligned
comparison input and for the ranked result table.
"""

import numpy as np
import pandas as pd
from copy import deepcopy


class _DEBase(dict):
    """Dict with attribute access to its keys."""

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")

    def __setattr__(self, name, value):
        self[name] = value


def _row_positions(rows, index):
    """Positions in ``index`` selected by a slice, boolean mask, integer
    positions or gene ids."""
    if rows is None or isinstance(rows, slice):
        return rows
    rows = np.atleast_1d(rows)
    if rows.dtype == bool:
        if len(rows) != len(index):
            raise IndexError("boolean row mask has the wrong length")
        return np.flatnonzero(rows)
    if rows.dtype.kind in ('U', 'S', 'O'):
        pos = index.get_indexer(rows)
        if np.any(pos < 0):
            raise KeyError(f"genes not in result: {list(rows[pos < 0][:5])}")
        return pos
    return rows.astype(int)


class AlignedInput(_DEBase):
    """Counts, offsets, dispersions and group indicator for one comparison.

    Built by ``align_inputs``; never modified afterwards.

    Attributes
    ----------
    counts : scipy.sparse.csr_matrix
        Counts for the comparison cells (genes x cells).
    gene_ids : Index
    cell_ids : Index
        Comparison cells, in their original order.
    x : ndarray of float
        Group indicator per comparison cell (1.0 = group 2).
    theta : ndarray
        Dispersion per gene, in count-matrix gene order.
    model : ModelParams
        Offsets in their supplied layout.
    gene_index : ndarray of int
        Position of each count-matrix gene within ``model``.
    cell_index : ndarray of int
        Position of each comparison cell within ``model``.
    group1, group2 : group specifications
    """

    @property
    def shape(self):
        return self['counts'].shape

    @property
    def n_cells1(self):
        return int(np.sum(self['x'] == 0))

    @property
    def n_cells2(self):
        return int(np.sum(self['x'] == 1))

    def offset_rows(self, genes):
        """Dense log offsets of the comparison cells for gene positions."""
        genes = np.atleast_1d(np.arange(self.shape[0])[genes])
        return self['model'].offset_rows(self['gene_index'][genes],
                                         self['cell_index'])

    def subset_genes(self, genes):
        """AlignedInput restricted to the given gene positions.

        Only the selected count rows and offset rows are copied; the
        model keeps its offset layout.
        """
        genes = np.atleast_1d(np.arange(self.shape[0])[genes])
        return AlignedInput(
            counts=self['counts'][genes],
            gene_ids=self['gene_ids'][genes],
            cell_ids=self['cell_ids'],
            x=self['x'],
            theta=self['theta'][genes],
            model=self['model'].subset_genes(self['gene_index'][genes]),
            gene_index=np.arange(len(genes)),
            cell_index=self['cell_index'],
            group1=self['group1'],
            group2=self['group2'],
        )

    def __repr__(self):
        g, c = self.shape
        return (f"AlignedInput with {g} genes and {c} cells "
                f"({self.n_cells1} in group 1, {self.n_cells2} in group 2)")


class ComparisonResult(_DEBase):
    """Ranked likelihood ratio test results of a two-group comparison.

    Attributes
    ----------
    table : DataFrame
        One row per tested gene, indexed by gene id, sorted by rank.
    comparison : str
        ``"<group2> vs <group1>"``; positive log_fc means higher in group 2.
    group1, group2 : group specifications
    n_cells1, n_cells2 : int
    filtered : list
        Gene ids excluded by the detection filter.
    """

    def __getitem__(self, key):
        if isinstance(key, str):
            return super().__getitem__(key)
        if not (isinstance(key, tuple) and len(key) == 2):
            raise IndexError("Two subscripts required (rows, columns)")
        rows, cols = key
        if cols is not None:
            raise IndexError("Subsetting columns not allowed for ComparisonResult objects.")

        out = deepcopy(self)
        tab = out['table']
        pos = _row_positions(rows, tab.index)
        if pos is not None:
            out['table'] = tab.iloc[pos]
        return out

    def head(self, n=5):
        """First n rows of the table."""
        return self['table'].head(n)

    def tail(self, n=5):
        """Last n rows of the table."""
        return self['table'].tail(n)

    def __repr__(self):
        return (f"Comparison of groups: {self['comparison']}\n"
                f"{self['table']}")

    def __len__(self):
        return len(self['table'])

    @property
    def shape(self):
        return self['table'].shape

    def to_dataframe(self):
        """Copy of the result table."""
        return pd.DataFrame(self['table']).copy()
