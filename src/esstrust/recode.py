"""
Categorical Recoding Module

Maps 0-10 ordinal survey scores to ordered categorical buckets. Bucket sets
and cut points are fixed per scheme and never inferred from data:

==============  ==========================================
Scheme          Buckets (inclusive score ranges)
==============  ==========================================
``three_level`` Low 0-3, Moderate 4-6, High 7-10
``extreme``     Extreme-low 0-1, Moderate 2-8, Extreme-high 9-10
``binary``      Low 0-4, High 5-10
==============  ==========================================

Missing input, non-response codes and anything outside [0, 10] map to
missing, never to a bucket. Each scheme writes to its own derived column
(``<variable>_<scheme>``) so several schemes can coexist on one frame.
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .exceptions import InvalidParameterError
from .preparation import validate_schema
from .variables import SCORE_MAX, SCORE_MIN


@dataclass(frozen=True)
class CategoryScheme:
    """
    Ordered bucketing of the 0-10 score scale.

    Attributes
    ----------
    name : str
        Scheme identifier, also used as the derived-column suffix.
    labels : tuple of str
        Bucket labels in ascending order.
    lower_bounds : tuple of float
        Inclusive lower bound of each bucket. A bucket extends up to, but
        not including, the next bucket's lower bound; the last bucket is
        closed at 10.
    """
    name: str
    labels: Tuple[str, ...]
    lower_bounds: Tuple[float, ...]

    def __post_init__(self):
        if len(self.labels) != len(self.lower_bounds):
            raise InvalidParameterError(
                f"Scheme '{self.name}' has {len(self.labels)} labels but "
                f"{len(self.lower_bounds)} lower bounds."
            )
        if len(set(self.labels)) != len(self.labels):
            raise InvalidParameterError(f"Scheme '{self.name}' has duplicate labels.")
        if self.lower_bounds[0] != SCORE_MIN or list(self.lower_bounds) != sorted(set(self.lower_bounds)):
            raise InvalidParameterError(
                f"Scheme '{self.name}' lower bounds must start at {SCORE_MIN} "
                f"and be strictly increasing. Got: {self.lower_bounds}"
            )

    @property
    def categories(self) -> pd.CategoricalDtype:
        """Ordered categorical dtype with the scheme's fixed bucket order."""
        return pd.CategoricalDtype(categories=list(self.labels), ordered=True)

    def column_name(self, variable: str) -> str:
        return f'{variable}_{self.name}'


THREE_LEVEL = CategoryScheme(
    name='three_level',
    labels=('Low', 'Moderate', 'High'),
    lower_bounds=(0, 4, 7),
)

EXTREME = CategoryScheme(
    name='extreme',
    labels=('Extreme-low', 'Moderate', 'Extreme-high'),
    lower_bounds=(0, 2, 9),
)

BINARY = CategoryScheme(
    name='binary',
    labels=('Low', 'High'),
    lower_bounds=(0, 5),
)

SCHEMES: Dict[str, CategoryScheme] = {s.name: s for s in (THREE_LEVEL, EXTREME, BINARY)}


def get_scheme(scheme: Union[str, CategoryScheme]) -> CategoryScheme:
    """Resolve a scheme given by name or pass a scheme object through."""
    if isinstance(scheme, CategoryScheme):
        return scheme
    try:
        return SCHEMES[scheme]
    except KeyError:
        raise InvalidParameterError(
            f"Unknown recoding scheme: {scheme!r}. Must be one of: {sorted(SCHEMES)}"
        ) from None


def recode_ordinal(value, scheme: Union[str, CategoryScheme]) -> Optional[str]:
    """
    Map one score to its bucket label.

    Parameters
    ----------
    value : number or None
        Raw score.
    scheme : str or CategoryScheme
        Bucketing scheme.

    Returns
    -------
    str or None
        Bucket label, or None when the value is missing, non-numeric or
        outside [0, 10].

    Examples
    --------
    >>> recode_ordinal(4, 'three_level')
    'Moderate'
    >>> recode_ordinal(9, 'extreme')
    'Extreme-high'
    >>> recode_ordinal(88, 'three_level') is None
    True
    """
    scheme = get_scheme(scheme)
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(score) or score < SCORE_MIN or score > SCORE_MAX:
        return None

    label = scheme.labels[0]
    for bucket, lower in zip(scheme.labels, scheme.lower_bounds):
        if score >= lower:
            label = bucket
    return label


def recode_series(values: pd.Series, scheme: Union[str, CategoryScheme]) -> pd.Series:
    """
    Vectorised :func:`recode_ordinal` returning an ordered categorical.

    The result always carries every bucket of the scheme as a category,
    in scheme order, whether or not the data populate it.
    """
    scheme = get_scheme(scheme)
    scores = pd.to_numeric(values, errors='coerce').astype(float)
    valid = scores.between(SCORE_MIN, SCORE_MAX)

    codes = np.searchsorted(np.asarray(scheme.lower_bounds, dtype=float), scores.to_numpy(), side='right') - 1
    codes = np.where(valid.to_numpy(), codes, -1)

    recoded = pd.Categorical.from_codes(codes, dtype=scheme.categories)
    return pd.Series(recoded, index=values.index, name=values.name)


def add_recoded_columns(
    frame: pd.DataFrame,
    variables: Sequence[str],
    scheme: Union[str, CategoryScheme],
) -> pd.DataFrame:
    """
    Return a copy of *frame* with one recoded column per variable.

    Derived columns are named ``<variable>_<scheme.name>``; existing
    columns of other schemes are left untouched.
    """
    scheme = get_scheme(scheme)
    validate_schema(frame, variables)
    recoded = frame.copy()
    for var in variables:
        recoded[scheme.column_name(var)] = recode_series(frame[var], scheme)
    return recoded
