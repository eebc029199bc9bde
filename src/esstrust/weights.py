"""
Analysis Weight Resolution Module

Reconciles the per-observation analysis weight across survey rounds. Early
rounds ship without the canonical analysis weight; for those observations
the weight is reconstructed from the post-stratification and population
size weights:

    reconstructed = pspwght * pweight * scale_constant
    weight        = reconstructed / normalizing_divisor

The two constants are calibration values, not universal facts. The defaults
reproduce the canonical weight on rounds where both are available (the
scale and divisor cancel); :func:`check_reconstruction` verifies that claim
against any extract before the constants are trusted.

Resolution runs once, at dataset-preparation time. The resolved column is
treated as immutable afterwards.
"""

import logging
import math
import warnings
from dataclasses import dataclass
from typing import Mapping, Tuple

import numpy as np
import pandas as pd

from .exceptions import (
    InvalidParameterError,
    InvalidWeightError,
    SchemaError,
    WeightCalibrationError,
)
from .variables import (
    CANONICAL_WEIGHT,
    POPULATION_WEIGHT,
    POST_STRAT_WEIGHT,
    ROUND,
)
from .warnings_categories import CalibrationWarning

logger = logging.getLogger('esstrust.weights')

WEIGHT_SCALE_CONSTANT = 10e3
WEIGHT_NORMALIZING_DIVISOR = 10_000.0

# Relative agreement required between reconstructed and canonical weights
RECONSTRUCTION_TOLERANCE = 0.01
RECONSTRUCTION_MIN_SHARE = 0.99

# Values of the ``weight_source`` column written by resolve_weights()
SOURCE_CANONICAL = 'canonical'
SOURCE_RECONSTRUCTED = 'reconstructed'
SOURCE_UNRESOLVED = 'unresolved'


@dataclass(frozen=True)
class WeightCalibration:
    """
    Calibration constants for weight reconstruction.

    Attributes
    ----------
    scale_constant : float
        Multiplier applied to ``pspwght * pweight``.
    normalizing_divisor : float
        Divisor bringing reconstructed weights onto the canonical scale.
    """
    scale_constant: float = WEIGHT_SCALE_CONSTANT
    normalizing_divisor: float = WEIGHT_NORMALIZING_DIVISOR

    def __post_init__(self):
        for name in ('scale_constant', 'normalizing_divisor'):
            value = getattr(self, name)
            if not (np.isfinite(value) and value > 0):
                raise InvalidParameterError(
                    f"{name} must be a positive finite number. Got: {value}"
                )

    @property
    def factor(self) -> float:
        """Net multiplier applied to ``pspwght * pweight``."""
        return self.scale_constant / self.normalizing_divisor


DEFAULT_CALIBRATION = WeightCalibration()


def _is_valid(value) -> bool:
    if value is None:
        return False
    try:
        value = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and value > 0


def resolve_weight(
    observation: Mapping,
    calibration: WeightCalibration = DEFAULT_CALIBRATION,
) -> float:
    """
    Resolve the analysis weight of a single observation.

    Parameters
    ----------
    observation : mapping
        Record exposing ``anweight``, ``pspwght`` and ``pweight`` (a dict or
        a row of a DataFrame). Absent keys count as missing.
    calibration : WeightCalibration, optional
        Reconstruction constants.

    Returns
    -------
    float
        The canonical weight when it is present, finite and positive;
        otherwise the reconstructed weight.

    Raises
    ------
    InvalidWeightError
        If the canonical weight is unusable and reconstruction is impossible
        or yields a non-positive / non-finite value.
    """
    canonical = observation.get(CANONICAL_WEIGHT)
    if _is_valid(canonical):
        return float(canonical)

    pspwght = observation.get(POST_STRAT_WEIGHT)
    pweight = observation.get(POPULATION_WEIGHT)
    if pspwght is None or pweight is None or pd.isna(pspwght) or pd.isna(pweight):
        raise InvalidWeightError(
            f"Cannot resolve weight: canonical weight is {canonical!r} and the "
            f"auxiliary weights are pspwght={pspwght!r}, pweight={pweight!r}."
        )

    reconstructed = float(pspwght) * float(pweight) * calibration.scale_constant
    weight = reconstructed / calibration.normalizing_divisor
    if not _is_valid(weight):
        raise InvalidWeightError(
            f"Reconstructed weight must be positive and finite. Got: {weight} "
            f"(pspwght={pspwght}, pweight={pweight})."
        )
    return weight


def reconstruct_weights(
    frame: pd.DataFrame,
    calibration: WeightCalibration = DEFAULT_CALIBRATION,
) -> pd.Series:
    """
    Vectorised reconstruction ``pspwght * pweight * scale / divisor``.

    Rows lacking either auxiliary weight yield NaN.
    """
    pspwght = pd.to_numeric(frame[POST_STRAT_WEIGHT], errors='coerce')
    pweight = pd.to_numeric(frame[POPULATION_WEIGHT], errors='coerce')
    reconstructed = pspwght * pweight * calibration.scale_constant
    return reconstructed / calibration.normalizing_divisor


def resolve_weights(
    frame: pd.DataFrame,
    calibration: WeightCalibration = DEFAULT_CALIBRATION,
) -> Tuple[pd.Series, pd.Series]:
    """
    Resolve the analysis weight for every row of a survey extract.

    Applies the same rule as :func:`resolve_weight` row by row, without
    raising: rows that cannot be resolved get a NaN weight and the source
    label ``'unresolved'``. Exclusion counts are logged per round.

    Parameters
    ----------
    frame : pd.DataFrame
        Extract with ``essround`` and the three weight columns. A missing
        ``anweight`` column is treated as an all-missing canonical weight.
    calibration : WeightCalibration, optional
        Reconstruction constants.

    Returns
    -------
    weights : pd.Series
        Resolved weights (float), NaN where unresolved.
    source : pd.Series
        One of ``'canonical'``, ``'reconstructed'``, ``'unresolved'`` per row.
    """
    if CANONICAL_WEIGHT in frame.columns:
        canonical = pd.to_numeric(frame[CANONICAL_WEIGHT], errors='coerce')
    else:
        canonical = pd.Series(np.nan, index=frame.index)

    canonical_ok = np.isfinite(canonical) & (canonical > 0)

    if POST_STRAT_WEIGHT in frame.columns and POPULATION_WEIGHT in frame.columns:
        reconstructed = reconstruct_weights(frame, calibration)
    else:
        reconstructed = pd.Series(np.nan, index=frame.index)
    reconstructed_ok = np.isfinite(reconstructed) & (reconstructed > 0)

    weights = canonical.where(canonical_ok, reconstructed).astype(float)
    resolved_ok = canonical_ok | reconstructed_ok
    weights = weights.where(resolved_ok)

    source = pd.Series(SOURCE_UNRESOLVED, index=frame.index, dtype=object)
    source[~canonical_ok & reconstructed_ok] = SOURCE_RECONSTRUCTED
    source[canonical_ok] = SOURCE_CANONICAL

    rounds = frame[ROUND] if ROUND in frame.columns else pd.Series('all', index=frame.index)
    n_reconstructed = (source == SOURCE_RECONSTRUCTED).groupby(rounds).sum()
    for round_id, count in n_reconstructed[n_reconstructed > 0].items():
        logger.debug("Round %s: reconstructed %d weights", round_id, count)

    n_unresolved = (~resolved_ok).groupby(rounds).sum()
    for round_id, count in n_unresolved[n_unresolved > 0].items():
        logger.info(
            "Round %s: excluded %d observations with no resolvable weight",
            round_id, count,
        )

    return weights, source


def check_reconstruction(
    frame: pd.DataFrame,
    calibration: WeightCalibration = DEFAULT_CALIBRATION,
    tolerance: float = RECONSTRUCTION_TOLERANCE,
    min_share: float = RECONSTRUCTION_MIN_SHARE,
    strict: bool = True,
) -> pd.DataFrame:
    """
    Compare reconstructed against canonical weights round by round.

    Only rows carrying a valid canonical weight and both auxiliary weights
    are compared. A round passes when at least ``min_share`` of its compared
    rows satisfy ``|reconstructed - canonical| / canonical < tolerance``.

    Parameters
    ----------
    frame : pd.DataFrame
        Extract with ``essround`` and the three weight columns.
    calibration : WeightCalibration, optional
        Constants under test.
    tolerance : float, default 0.01
        Relative difference treated as agreement.
    min_share : float, default 0.99
        Minimum share of agreeing rows per round.
    strict : bool, default True
        Raise on failure; otherwise warn with :class:`CalibrationWarning`.

    Returns
    -------
    pd.DataFrame
        One row per compared round with columns ``essround``, ``n``,
        ``n_within_tolerance``, ``share_within_tolerance``,
        ``max_relative_diff`` and ``passed``.

    Raises
    ------
    WeightCalibrationError
        In strict mode, if any round fails, or if no round can be compared.
    """
    if not (0 < tolerance) or not (0 < min_share <= 1):
        raise InvalidParameterError(
            f"tolerance must be > 0 and min_share in (0, 1]. "
            f"Got: tolerance={tolerance}, min_share={min_share}"
        )

    missing_cols = [
        col for col in (ROUND, CANONICAL_WEIGHT, POST_STRAT_WEIGHT, POPULATION_WEIGHT)
        if col not in frame.columns
    ]
    if missing_cols:
        raise SchemaError(
            f"Reconstruction check requires column(s) {missing_cols}, which are not in the data."
        )

    canonical = pd.to_numeric(frame[CANONICAL_WEIGHT], errors='coerce')
    reconstructed = reconstruct_weights(frame, calibration)
    comparable = np.isfinite(canonical) & (canonical > 0) & np.isfinite(reconstructed)

    compared = pd.DataFrame({
        ROUND: frame.loc[comparable, ROUND],
        'relative_diff': ((reconstructed - canonical).abs() / canonical)[comparable],
    })

    if compared.empty:
        message = (
            "No round carries both canonical and auxiliary weights; "
            "the reconstruction constants cannot be verified."
        )
        if strict:
            raise WeightCalibrationError(message)
        warnings.warn(message, CalibrationWarning, stacklevel=2)
        return pd.DataFrame(columns=[
            ROUND, 'n', 'n_within_tolerance', 'share_within_tolerance',
            'max_relative_diff', 'passed',
        ])

    compared['within'] = compared['relative_diff'] < tolerance
    report = (
        compared.groupby(ROUND)
        .agg(
            n=('within', 'size'),
            n_within_tolerance=('within', 'sum'),
            max_relative_diff=('relative_diff', 'max'),
        )
        .reset_index()
    )
    report['n_within_tolerance'] = report['n_within_tolerance'].astype(int)
    report['share_within_tolerance'] = report['n_within_tolerance'] / report['n']
    report['passed'] = report['share_within_tolerance'] >= min_share
    report = report[[
        ROUND, 'n', 'n_within_tolerance', 'share_within_tolerance',
        'max_relative_diff', 'passed',
    ]]

    failed = report.loc[~report['passed'], ROUND].tolist()
    if failed:
        message = (
            f"Reconstructed weights disagree with canonical weights in round(s) "
            f"{failed}: fewer than {min_share:.0%} of observations within a "
            f"relative difference of {tolerance}. Check the calibration "
            f"constants (scale_constant={calibration.scale_constant}, "
            f"normalizing_divisor={calibration.normalizing_divisor})."
        )
        if strict:
            raise WeightCalibrationError(message)
        warnings.warn(message, CalibrationWarning, stacklevel=2)

    return report


def weight_totals_by_round(frame: pd.DataFrame, weight: str) -> pd.DataFrame:
    """
    Sum of weights and respondent count per round.

    Used to compare total-sum behaviour of reconstructed rounds against
    canonical rounds.
    """
    values = pd.to_numeric(frame[weight], errors='coerce')
    return (
        pd.DataFrame({ROUND: frame[ROUND], 'w': values})
        .groupby(ROUND)
        .agg(total_weight=('w', 'sum'), n=('w', 'size'))
        .reset_index()
    )
