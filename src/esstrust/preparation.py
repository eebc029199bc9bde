"""
Dataset Preparation Module

Turns an already column-filtered survey extract into the analysis dataset
consumed by the sampling-design builder:

1. Rename source survey codes to canonical analysis names
2. Check the required columns are present (``SchemaError`` otherwise)
3. Convert non-response codes and out-of-range scores to missing
4. Resolve the analysis weight and drop rows without one

Each step returns a new frame; the input is never modified.
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .exceptions import SchemaError
from .variables import (
    CANONICAL_WEIGHT,
    COUNTRY,
    NON_RESPONSE_CODES,
    POPULATION_WEIGHT,
    POST_STRAT_WEIGHT,
    ROUND,
    SCORE_MAX,
    SCORE_MIN,
    TRUST_VARIABLES,
    WEIGHT,
    rename_source_columns,
    score_names,
)
from .warnings_categories import DataWarning
from .weights import (
    DEFAULT_CALIBRATION,
    SOURCE_RECONSTRUCTED,
    SOURCE_UNRESOLVED,
    WeightCalibration,
    resolve_weights,
)

logger = logging.getLogger('esstrust.preparation')

WEIGHT_SOURCE = 'weight_source'


def validate_schema(frame: pd.DataFrame, required: Iterable[str]) -> None:
    """
    Check that every required column is present.

    Raises
    ------
    TypeError
        If *frame* is not a pandas DataFrame.
    SchemaError
        Listing every missing column at once.
    """
    if not isinstance(frame, pd.DataFrame):
        raise TypeError(
            f"Input data must be a pandas DataFrame. Got: {type(frame).__name__}"
        )

    missing_cols = [col for col in required if col not in frame.columns]
    if missing_cols:
        raise SchemaError(
            f"Required column(s) not found in data: {missing_cols}. "
            f"Available columns: {list(frame.columns)}"
        )


def _validate_weight_columns(frame: pd.DataFrame) -> None:
    has_canonical = CANONICAL_WEIGHT in frame.columns
    has_auxiliary = POST_STRAT_WEIGHT in frame.columns and POPULATION_WEIGHT in frame.columns
    if not (has_canonical or has_auxiliary):
        raise SchemaError(
            f"No weight columns found: need '{CANONICAL_WEIGHT}' or both "
            f"'{POST_STRAT_WEIGHT}' and '{POPULATION_WEIGHT}'. "
            f"Available columns: {list(frame.columns)}"
        )


def clean_scores(
    frame: pd.DataFrame,
    variables: Sequence[str],
    codes: Tuple[int, ...] = NON_RESPONSE_CODES,
) -> pd.DataFrame:
    """
    Convert non-response codes and out-of-range values to missing.

    Every listed variable is coerced to float; values equal to one of
    *codes*, or outside ``[0, 10]``, become NaN. A :class:`DataWarning`
    reports how many values were converted.

    Parameters
    ----------
    frame : pd.DataFrame
        Survey extract with canonical column names.
    variables : sequence of str
        0-10 score columns to clean.
    codes : tuple of int, optional
        Sentinel non-response codes.

    Returns
    -------
    pd.DataFrame
        Copy of *frame* with cleaned score columns.
    """
    validate_schema(frame, variables)
    cleaned = frame.copy()
    counts: Dict[str, int] = {}

    for var in variables:
        values = pd.to_numeric(cleaned[var], errors='coerce').astype(float)
        invalid = values.isin(codes) | (values < SCORE_MIN) | (values > SCORE_MAX)
        n_invalid = int(invalid.sum())
        if n_invalid:
            counts[var] = n_invalid
        cleaned[var] = values.mask(invalid)

    if counts:
        warnings.warn(
            f"Converted {sum(counts.values())} non-response or out-of-range "
            f"score values to missing: {counts}",
            DataWarning,
            stacklevel=2,
        )

    return cleaned


@dataclass(frozen=True)
class PreparedSurvey:
    """
    Analysis-ready survey dataset.

    Attributes
    ----------
    data : pd.DataFrame
        Cleaned observations with the resolved ``weight`` column and a
        ``weight_source`` label. Treat as read-only.
    score_variables : tuple of str
        Score columns that were cleaned.
    excluded_by_round : dict
        Number of observations dropped per round for lack of a weight.
    reconstructed_rounds : tuple
        Rounds in which at least one weight was reconstructed.
    """
    data: pd.DataFrame
    score_variables: Tuple[str, ...]
    excluded_by_round: Dict = field(default_factory=dict)
    reconstructed_rounds: Tuple = ()

    @property
    def n_excluded(self) -> int:
        return int(sum(self.excluded_by_round.values()))

    @property
    def rounds(self) -> List:
        return sorted(self.data[ROUND].unique())

    @property
    def countries(self) -> List:
        return sorted(self.data[COUNTRY].unique())


def prepare_survey(
    frame: pd.DataFrame,
    score_variables: Optional[Sequence[str]] = None,
    calibration: WeightCalibration = DEFAULT_CALIBRATION,
    rename: bool = True,
) -> PreparedSurvey:
    """
    Prepare a survey extract for weighted estimation.

    Parameters
    ----------
    frame : pd.DataFrame
        Column-filtered survey extract, one row per respondent and round.
    score_variables : sequence of str, optional
        0-10 score columns to clean and require. By default the nine trust
        variables are required, and every other catalogued score column
        present in the extract (``lrscale``, ``stfdem`` ...) is cleaned too.
    calibration : WeightCalibration, optional
        Weight reconstruction constants.
    rename : bool, default True
        Rename source survey codes (``trstprl`` ...) to analysis names first.

    Returns
    -------
    PreparedSurvey

    Raises
    ------
    SchemaError
        If the round, country, any required score column, or all weight
        columns are absent.
    """
    data = rename_source_columns(frame) if rename else frame.copy()

    if score_variables is None:
        required = score_names(TRUST_VARIABLES)
        score_variables = required + tuple(
            name for name in score_names()
            if name not in required and name in data.columns
        )
    else:
        score_variables = tuple(score_variables)
        required = score_variables

    validate_schema(data, [ROUND, COUNTRY, *required])
    _validate_weight_columns(data)

    if WEIGHT in data.columns:
        raise SchemaError(
            f"Column '{WEIGHT}' is reserved for the resolved analysis weight."
        )

    data = clean_scores(data, score_variables)

    weights, source = resolve_weights(data, calibration)
    data[WEIGHT] = weights
    data[WEIGHT_SOURCE] = source

    unresolved = source == SOURCE_UNRESOLVED
    excluded = data.loc[unresolved].groupby(ROUND).size()
    reconstructed_rounds = tuple(
        sorted(data.loc[source == SOURCE_RECONSTRUCTED, ROUND].unique())
    )

    if unresolved.any():
        warnings.warn(
            f"Excluded {int(unresolved.sum())} observations with no resolvable "
            f"analysis weight.",
            DataWarning,
            stacklevel=2,
        )

    data = data.loc[~unresolved].copy()

    logger.info(
        "Prepared %d observations over %d rounds and %d countries",
        len(data), data[ROUND].nunique(), data[COUNTRY].nunique(),
    )

    return PreparedSurvey(
        data=data,
        score_variables=score_variables,
        excluded_by_round={k: int(v) for k, v in excluded.items()},
        reconstructed_rounds=reconstructed_rounds,
    )
