"""
Exception and warning types raised by scdiffexpr.

Input problems abort a comparison before any gene is fitted; problems
confined to a single gene are recorded in that gene's result row.
"""


class InputMismatchError(ValueError):
    """Counts, model parameters and cell labels do not describe the same
    genes and cells, or a requested group matches no cells."""


class ConvergenceError(RuntimeError):
    """A per-gene NB fit did not converge, even after a damped retry.

    The last accepted iterate is kept so that callers can still report
    the gene.
    """

    def __init__(self, message, coefficients=None, loglik=None, n_iter=0):
        super().__init__(message)
        self.coefficients = coefficients
        self.loglik = loglik
        self.n_iter = n_iter


class NumericDegeneracyWarning(UserWarning):
    """One group has zero counts for a gene, so its fold-change was
    reported at the clamp bound."""


class ConvergenceWarning(UserWarning):
    """Some genes were reported with sentinel statistics because their
    fits did not converge."""
