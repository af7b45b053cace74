"""
scdiffexpr: two-group differential expression for single-cell counts.

Per-gene negative binomial likelihood ratio tests with offsets and
dispersions supplied by an upstream expression model.
"""

__version__ = "0.1.0"

# --- Classes ---
from .classes import AlignedInput, ComparisonResult
from .model_params import ModelParams
from .groups import Label, LabelUnion, Complement, as_group_spec, resolve_groups

# --- Errors ---
from .errors import (
    InputMismatchError,
    ConvergenceError,
    NumericDegeneracyWarning,
    ConvergenceWarning,
)

# --- Input alignment ---
from .adapter import align_inputs, as_count_matrix

# --- GLM fitting ---
from .glm_levenberg import fit_nb_glm, nbinom_loglik
from .glm_fit import FittedModelPair, fit_gene_pair, fit_genes, MAX_ABS_LOG2FC

# --- Testing ---
from .glm_test import lr_test, assemble_table

# --- Results ---
from .results import rank_table, top_genes, decide_tests, adjust_p_values

# --- Parallel execution ---
from .parallel import make_chunks, run_chunks

# --- Main entry point ---
from .compare import compare_expression, detected_genes
