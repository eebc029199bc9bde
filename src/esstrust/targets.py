"""
Derived Target Module

Builds the analysis targets comparing two trust scores ``a`` and ``b``
(typically national parliament vs. European Parliament):

- ``difference``: ``a - b``
- ``signed difference``: which of the two is trusted more, as an ordered
  category ``A-greater`` / ``Equal`` / ``B-greater``
- ``log ratio``: ``log(a / b)`` with zero scores replaced by a small positive
  constant before the ratio is taken

Any target is missing whenever either input is missing.

Notes
-----
The weighted mean of the log ratio exponentiates to the weighted geometric
mean of ``a / b``; see :func:`esstrust.estimation.estimate_geometric_mean_ratio`.
The zero-substitute measurably moves results for respondents at the bottom
of the scale, so it is an explicit argument everywhere.
"""

import math
from typing import Optional

import numpy as np
import pandas as pd

from .exceptions import InvalidParameterError
from .preparation import validate_schema
from .variables import SCORE_MAX, SCORE_MIN

DEFAULT_ZERO_SUBSTITUTE = 0.1

A_GREATER = 'A-greater'
EQUAL = 'Equal'
B_GREATER = 'B-greater'
SIGN_LABELS = (A_GREATER, EQUAL, B_GREATER)
SIGN_CATEGORIES = pd.CategoricalDtype(categories=list(SIGN_LABELS), ordered=True)


def _score_or_none(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(score) or score < SCORE_MIN or score > SCORE_MAX:
        return None
    return score


def _check_zero_substitute(zero_substitute: float) -> None:
    if not (np.isfinite(zero_substitute) and zero_substitute > 0):
        raise InvalidParameterError(
            f"zero_substitute must be a positive finite number. Got: {zero_substitute}"
        )


def build_difference(a, b) -> Optional[float]:
    """``a - b``, or None if either score is missing."""
    a, b = _score_or_none(a), _score_or_none(b)
    if a is None or b is None:
        return None
    return a - b


def build_signed_difference(a, b) -> Optional[str]:
    """
    Classify which of two scores is larger.

    Returns
    -------
    str or None
        ``'A-greater'``, ``'Equal'`` or ``'B-greater'``; None if either score
        is missing.
    """
    diff = build_difference(a, b)
    if diff is None:
        return None
    if diff > 0:
        return A_GREATER
    if diff < 0:
        return B_GREATER
    return EQUAL


def build_log_ratio(a, b, zero_substitute: float = DEFAULT_ZERO_SUBSTITUTE) -> Optional[float]:
    """
    Log ratio ``log(a / b)`` of two scores.

    A score of exactly 0 is replaced by *zero_substitute* before the ratio
    is taken, so ``a=0, b=5`` yields ``log(0.1 / 5)`` with the default.

    Parameters
    ----------
    a, b : number or None
        Scores on the 0-10 scale.
    zero_substitute : float, default 0.1
        Positive value standing in for a zero score.

    Returns
    -------
    float or None
        None if either score is missing.
    """
    _check_zero_substitute(zero_substitute)
    a, b = _score_or_none(a), _score_or_none(b)
    if a is None or b is None:
        return None
    if a == 0:
        a = zero_substitute
    if b == 0:
        b = zero_substitute
    return math.log(a / b)


def _scores(values: pd.Series) -> pd.Series:
    scores = pd.to_numeric(values, errors='coerce').astype(float)
    return scores.where(scores.between(SCORE_MIN, SCORE_MAX))


def difference_series(a: pd.Series, b: pd.Series) -> pd.Series:
    """Vectorised :func:`build_difference`."""
    return _scores(a) - _scores(b)


def signed_difference_series(a: pd.Series, b: pd.Series) -> pd.Series:
    """Vectorised :func:`build_signed_difference` as an ordered categorical."""
    diff = difference_series(a, b).to_numpy()
    codes = np.select([diff > 0, diff == 0, diff < 0], [0, 1, 2], default=-1)
    return pd.Series(
        pd.Categorical.from_codes(codes, dtype=SIGN_CATEGORIES),
        index=a.index,
    )


def log_ratio_series(
    a: pd.Series,
    b: pd.Series,
    zero_substitute: float = DEFAULT_ZERO_SUBSTITUTE,
) -> pd.Series:
    """Vectorised :func:`build_log_ratio`."""
    _check_zero_substitute(zero_substitute)
    a_scores = _scores(a).replace(0.0, zero_substitute)
    b_scores = _scores(b).replace(0.0, zero_substitute)
    return np.log(a_scores / b_scores)


def add_trust_targets(
    frame: pd.DataFrame,
    a: str,
    b: str,
    prefix: Optional[str] = None,
    zero_substitute: float = DEFAULT_ZERO_SUBSTITUTE,
) -> pd.DataFrame:
    """
    Return a copy of *frame* with the three comparison targets of ``a`` vs ``b``.

    Columns added (with ``prefix`` defaulting to ``'<a>_vs_<b>'``):

    - ``<prefix>_diff``: numeric difference
    - ``<prefix>_sign``: ordered category A-greater / Equal / B-greater
    - ``<prefix>_logratio``: log ratio with zero substitution
    """
    validate_schema(frame, [a, b])
    _check_zero_substitute(zero_substitute)
    prefix = prefix or f'{a}_vs_{b}'

    targets = frame.copy()
    targets[f'{prefix}_diff'] = difference_series(frame[a], frame[b])
    targets[f'{prefix}_sign'] = signed_difference_series(frame[a], frame[b])
    targets[f'{prefix}_logratio'] = log_ratio_series(frame[a], frame[b], zero_substitute)
    return targets
