"""
Per-gene model parameters supplied by an upstream expression model.

A ``ModelParams`` holds one NB dispersion (theta) per gene and log-scale
offsets for every (gene, cell) pair. Offsets are kept in the form they
were given in: a scalar, a per-cell row shared by all genes, a full
genes x cells matrix, or a factorization ``coefficients @ regressors.T``.
Rows are only expanded for the genes and cells a caller asks for.
"""

import numpy as np
import pandas as pd


def _default_gene_ids(n):
    return pd.Index([f"Gene{i+1}" for i in range(n)])


def _default_cell_ids(n):
    return pd.Index([f"Cell{i+1}" for i in range(n)])


class ModelParams:
    """Log offsets and dispersions for a set of genes and cells.

    Parameters
    ----------
    log_offset : float, 1-D array, 2-D array or DataFrame
        Log expected counts. A scalar applies to every gene and cell, a
        1-D array gives one value per cell shared by all genes, and a 2-D
        array (or DataFrame indexed by gene with cell columns) gives the
        full genes x cells matrix.
    theta : array-like or Series
        NB dispersion (shape) parameter for each gene; must be positive.
        A Series supplies gene ids through its index.
    gene_ids, cell_ids : array-like, optional
        Identifiers. Taken from DataFrame/Series labels when available,
        otherwise defaulting to ``Gene1..`` and ``Cell1..``.
    """

    def __init__(self, log_offset, theta, gene_ids=None, cell_ids=None):
        if isinstance(log_offset, pd.DataFrame):
            if gene_ids is None:
                gene_ids = log_offset.index
            if cell_ids is None:
                cell_ids = log_offset.columns
            log_offset = log_offset.to_numpy(dtype=np.float64)
        if isinstance(theta, pd.Series):
            if gene_ids is None:
                gene_ids = theta.index
            else:
                theta = theta.reindex(pd.Index(gene_ids))
            theta = theta.to_numpy(dtype=np.float64)

        theta = np.atleast_1d(np.asarray(theta, dtype=np.float64))
        if theta.ndim != 1:
            raise ValueError("theta must be one value per gene")
        if not np.all(np.isfinite(theta)):
            raise ValueError("NA or infinite dispersions not allowed")
        if np.any(theta <= 0):
            raise ValueError("dispersions (theta) must be positive")
        ngenes = len(theta)

        log_offset = np.asarray(log_offset, dtype=np.float64)
        if log_offset.ndim == 0:
            if cell_ids is None:
                raise ValueError("cell_ids are required for a scalar offset")
            ncells = len(cell_ids)
            self._offset = log_offset.reshape(1, 1)
        elif log_offset.ndim == 1:
            ncells = log_offset.shape[0]
            self._offset = log_offset.reshape(1, -1)
        elif log_offset.ndim == 2:
            if log_offset.shape[0] != ngenes:
                raise ValueError(
                    f"offset matrix has {log_offset.shape[0]} rows but there "
                    f"are {ngenes} dispersions")
            ncells = log_offset.shape[1]
            self._offset = log_offset
        else:
            raise ValueError("log_offset must be scalar, 1-D, or 2-D")
        if not np.all(np.isfinite(self._offset)):
            raise ValueError("offsets must be finite values")

        self._coefficients = None
        self._regressors = None
        self._init_ids(theta, gene_ids, cell_ids, ncells)

    def _init_ids(self, theta, gene_ids, cell_ids, ncells):
        ngenes = len(theta)
        gene_ids = _default_gene_ids(ngenes) if gene_ids is None else pd.Index(gene_ids)
        cell_ids = _default_cell_ids(ncells) if cell_ids is None else pd.Index(cell_ids)
        if len(gene_ids) != ngenes:
            raise ValueError("length of gene_ids must equal number of dispersions")
        if len(cell_ids) != ncells:
            raise ValueError("length of cell_ids must equal number of offset columns")
        self.theta = theta
        self.gene_ids = gene_ids
        self.cell_ids = cell_ids

    @classmethod
    def from_expected(cls, mu, theta, gene_ids=None, cell_ids=None):
        """Build from expected counts on the linear scale (all > 0)."""
        if isinstance(mu, pd.DataFrame):
            if gene_ids is None:
                gene_ids = mu.index
            if cell_ids is None:
                cell_ids = mu.columns
            mu = mu.to_numpy(dtype=np.float64)
        mu = np.asarray(mu, dtype=np.float64)
        if np.any(~(mu > 0)):
            raise ValueError("expected counts must be positive")
        return cls(np.log(mu), theta, gene_ids=gene_ids, cell_ids=cell_ids)

    @classmethod
    def from_factorization(cls, coefficients, regressors, theta,
                           gene_ids=None, cell_ids=None):
        """Build from a per-gene linear model of the log expected count.

        ``log_offset[g, c] = coefficients[g] @ regressors[c]``. Neither
        factor is multiplied out here.

        Parameters
        ----------
        coefficients : ndarray or DataFrame
            Genes x k model coefficients.
        regressors : ndarray or DataFrame
            Cells x k regressor values (including an intercept column if
            the model has one).
        theta : array-like or Series
            Per-gene dispersion.
        """
        if isinstance(coefficients, pd.DataFrame):
            if gene_ids is None:
                gene_ids = coefficients.index
            coefficients = coefficients.to_numpy(dtype=np.float64)
        if isinstance(regressors, pd.DataFrame):
            if cell_ids is None:
                cell_ids = regressors.index
            regressors = regressors.to_numpy(dtype=np.float64)
        coefficients = np.asarray(coefficients, dtype=np.float64)
        regressors = np.asarray(regressors, dtype=np.float64)
        if coefficients.ndim == 1:
            coefficients = coefficients.reshape(-1, 1)
        if regressors.ndim == 1:
            regressors = regressors.reshape(-1, 1)
        if coefficients.shape[1] != regressors.shape[1]:
            raise ValueError(
                "coefficients and regressors must have the same number of columns")
        if not (np.all(np.isfinite(coefficients)) and np.all(np.isfinite(regressors))):
            raise ValueError("model coefficients and regressors must be finite")

        if isinstance(theta, pd.Series):
            if gene_ids is None:
                gene_ids = theta.index
            else:
                theta = theta.reindex(pd.Index(gene_ids))
            theta = theta.to_numpy(dtype=np.float64)
        theta = np.atleast_1d(np.asarray(theta, dtype=np.float64))
        if not np.all(np.isfinite(theta)):
            raise ValueError("NA or infinite dispersions not allowed")
        if np.any(theta <= 0):
            raise ValueError("dispersions (theta) must be positive")
        if coefficients.shape[0] != len(theta):
            raise ValueError("coefficients must have one row per dispersion")

        out = cls.__new__(cls)
        out._offset = None
        out._coefficients = coefficients
        out._regressors = regressors
        out._init_ids(theta, gene_ids, cell_ids, regressors.shape[0])
        return out

    @property
    def shape(self):
        """Logical (genes, cells) dimensions of the offset matrix."""
        return (len(self.gene_ids), len(self.cell_ids))

    @property
    def n_genes(self):
        return len(self.gene_ids)

    @property
    def n_cells(self):
        return len(self.cell_ids)

    @property
    def is_factorized(self):
        return self._coefficients is not None

    def offset_rows(self, genes=None, cells=None):
        """Dense log offsets for the requested genes and cells.

        Parameters
        ----------
        genes, cells : int array or slice, optional
            Positional indices; ``None`` selects all.

        Returns
        -------
        ndarray of shape (len(genes), len(cells)).
        """
        gsel = slice(None) if genes is None else genes
        csel = slice(None) if cells is None else cells
        ng = len(np.arange(self.n_genes)[gsel])
        nc = len(np.arange(self.n_cells)[csel])

        if self.is_factorized:
            return self._coefficients[gsel] @ self._regressors[csel].T

        data = self._offset
        if data.shape == (1, 1):
            return np.full((ng, nc), data[0, 0])
        if data.shape[0] == 1:
            return np.tile(data[0, csel], (ng, 1))
        if isinstance(gsel, slice):
            rows = data[gsel]
        else:
            rows = data[np.asarray(gsel)]
        if isinstance(csel, slice):
            return np.array(rows[:, csel], dtype=np.float64)
        return rows[:, np.asarray(csel)]

    def subset_genes(self, genes):
        """ModelParams restricted to the given gene positions.

        Only the selected rows of a full offset matrix (or of the
        coefficient matrix) are copied.
        """
        genes = np.atleast_1d(np.arange(self.n_genes)[genes])
        out = ModelParams.__new__(ModelParams)
        if self.is_factorized:
            out._offset = None
            out._coefficients = self._coefficients[genes]
            out._regressors = self._regressors
        else:
            out._coefficients = None
            out._regressors = None
            out._offset = self._offset if self._offset.shape[0] == 1 else self._offset[genes]
        out.theta = self.theta[genes]
        out.gene_ids = self.gene_ids[genes]
        out.cell_ids = self.cell_ids
        return out

    def __repr__(self):
        if self.is_factorized:
            form = f"factorized, k={self._coefficients.shape[1]}"
        elif self._offset.shape == (1, 1):
            form = "scalar offset"
        elif self._offset.shape[0] == 1:
            form = "per-cell offset"
        else:
            form = "full offset matrix"
        return (f"ModelParams with {self.n_genes} genes and {self.n_cells} "
                f"cells ({form})")
