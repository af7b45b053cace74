"""
Group specifications for two-group comparisons.

A group is a single cluster label, a union of labels, or the complement of
a set of labels ("all other cells"). Specifications are resolved once into
boolean cell masks.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from .errors import InputMismatchError


@dataclass(frozen=True)
class Label:
    """Cells carrying exactly this label."""
    label: object

    def describe(self):
        return str(self.label)


@dataclass(frozen=True)
class LabelUnion:
    """Cells carrying any of these labels."""
    labels: tuple

    def __post_init__(self):
        object.__setattr__(self, 'labels', _as_label_tuple(self.labels))
        if len(self.labels) == 0:
            raise ValueError("LabelUnion needs at least one label")

    def describe(self):
        return '+'.join(str(x) for x in self.labels)


@dataclass(frozen=True)
class Complement:
    """Cells carrying none of these labels."""
    labels: tuple

    def __post_init__(self):
        object.__setattr__(self, 'labels', _as_label_tuple(self.labels))

    def describe(self):
        if not self.labels:
            return 'all'
        return 'rest(' + '+'.join(str(x) for x in self.labels) + ')'


def _as_label_tuple(labels):
    if isinstance(labels, (str, bytes)) or np.isscalar(labels):
        return (labels,)
    if isinstance(labels, (set, frozenset)):
        labels = sorted(labels, key=str)
    # dict.fromkeys keeps first-seen order and drops repeats
    return tuple(dict.fromkeys(labels))


def as_group_spec(spec):
    """Coerce a user group specification to Label, LabelUnion or Complement.

    Scalars become ``Label``; lists, tuples, sets and arrays become
    ``LabelUnion`` (a one-element list collapses to ``Label``).
    """
    if isinstance(spec, (Label, LabelUnion, Complement)):
        return spec
    if spec is None:
        raise ValueError("group specification must not be None")
    if isinstance(spec, (str, bytes)) or np.isscalar(spec):
        return Label(spec)
    labels = _as_label_tuple(spec)
    if len(labels) == 1:
        return Label(labels[0])
    return LabelUnion(labels)


def spec_labels(spec):
    """Labels named by a specification, as a tuple."""
    if isinstance(spec, Label):
        return (spec.label,)
    return spec.labels


def resolve_group(labels, spec):
    """Boolean mask over cells selected by ``spec``.

    Parameters
    ----------
    labels : array-like
        Per-cell labels.
    spec : Label, LabelUnion or Complement

    Raises
    ------
    InputMismatchError
        If a named label matches no cells, or a complement selects
        nothing.
    """
    labels = pd.Series(np.asarray(labels, dtype=object))
    named = spec_labels(spec)
    member = labels.isin(list(named)).to_numpy()

    if isinstance(spec, Complement):
        mask = ~member
        if not mask.any():
            raise InputMismatchError(
                f"group '{spec.describe()}' matches no cells")
        return mask

    present = set(labels.unique())
    missing = [lab for lab in named if lab not in present]
    if missing:
        raise InputMismatchError(
            f"group label(s) {missing} match no cells in the labeling")
    return member


def resolve_groups(labels, group1, group2=None):
    """Resolve two group specifications into disjoint cell masks.

    ``group2=None`` compares ``group1`` against every other cell.

    Returns
    -------
    (mask1, mask2, spec1, spec2)
    """
    spec1 = as_group_spec(group1)
    if group2 is None:
        if isinstance(spec1, Complement):
            raise ValueError("group2 is required when group1 is a Complement")
        spec2 = Complement(spec_labels(spec1))
    else:
        spec2 = as_group_spec(group2)

    mask1 = resolve_group(labels, spec1)
    mask2 = resolve_group(labels, spec2)
    overlap = mask1 & mask2
    if overlap.any():
        raise InputMismatchError(
            f"groups '{spec1.describe()}' and '{spec2.describe()}' share "
            f"{int(overlap.sum())} cells")
    return mask1, mask2, spec1, spec2
