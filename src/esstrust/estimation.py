"""
Weighted Estimation Module

Survey-weighted means and proportions by arbitrary grouping keys, with
design-based standard errors and confidence intervals.

Point estimates are ratio (Hajek) estimators::

    mean_d = sum_{i in d} w_i * y_i / sum_{i in d} w_i

over the non-missing observations of group ``d``. Observations missing the
target variable are dropped before anything else is computed, so they
enter neither numerator nor denominator, and removing such a row from the
input changes no estimate.

Standard errors use Taylor linearisation with influence values
``z_i = w_i * (y_i - mean_d) / sum_d(w)`` for members of ``d`` and zero
elsewhere (domain estimation), so every group's variance is computed over
the whole design:

- ``UnclusteredDesign``: each respondent is its own PSU in a single stratum,
  ``var = n / (n - 1) * sum(z_i^2)``.
- ``ClusteredStratifiedDesign``: PSU totals ``t_hc = sum z_i`` are compared
  within strata, ``var = sum_h n_h / (n_h - 1) * sum_c (t_hc - mean_h(t))^2``.
  A stratum with a single PSU contributes zero.

Both designs share the same point estimates; only the standard errors and
interval widths differ.
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import scipy.stats

from .design import ClusteredStratifiedDesign, SurveyDesign, UnclusteredDesign
from .exceptions import (
    EmptyGroupError,
    EstimationError,
    InvalidParameterError,
    NonNumericVariableError,
    SchemaError,
    UnknownVariableError,
)
from .warnings_categories import SmallSampleWarning

logger = logging.getLogger('esstrust.estimation')

DEFAULT_CI_LEVEL = 0.95
CI_METHODS = ('normal', 't')

TABLE_COLUMNS = [
    'variable', 'category', 'estimate', 'se', 'ci_lower', 'ci_upper',
    'ci_level', 'n', 'sum_weights', 'design',
]


@dataclass(frozen=True)
class WeightedEstimate:
    """
    One weighted estimate for a (variable, group) pair.

    Attributes
    ----------
    variable : str
        Target variable.
    group_by : tuple of str
        Grouping keys, in order.
    group : tuple
        Values of the grouping keys for this estimate.
    estimate : float
        Weighted mean, or weighted proportion when ``category`` is set.
    se : float
        Design-based standard error.
    ci_lower, ci_upper : float
        Confidence bounds at ``ci_level``.
    ci_level : float
        Confidence level, e.g. 0.95.
    n : int
        Unweighted number of non-missing observations in the group.
    sum_weights : float
        Sum of weights of those observations.
    design : str
        Design mode the standard error assumes.
    category : str or None
        Category label for proportion estimates.
    transform : str or None
        ``'exp'`` when the estimate was exponentiated from a log-scale mean.
    """
    variable: str
    group_by: Tuple[str, ...]
    group: Tuple[Any, ...]
    estimate: float
    se: float
    ci_lower: float
    ci_upper: float
    ci_level: float
    n: int
    sum_weights: float
    design: str
    category: Optional[str] = None
    transform: Optional[str] = None

    @property
    def ci_width(self) -> float:
        return self.ci_upper - self.ci_lower

    def as_row(self) -> Dict[str, Any]:
        row = dict(zip(self.group_by, self.group))
        row.update({
            'variable': self.variable,
            'category': self.category,
            'estimate': self.estimate,
            'se': self.se,
            'ci_lower': self.ci_lower,
            'ci_upper': self.ci_upper,
            'ci_level': self.ci_level,
            'n': self.n,
            'sum_weights': self.sum_weights,
            'design': self.design,
        })
        return row


@dataclass(frozen=True)
class Diagnostic:
    """Record of one estimate a batch could not compute."""
    variable: str
    error_kind: str
    message: str
    group: Optional[Tuple[Any, ...]] = None


@dataclass(frozen=True)
class BatchResult:
    """
    Output of a batch estimator: tidy results plus what was skipped.

    Unpacks as ``table, diagnostics = estimate_many(...)``.
    """
    table: pd.DataFrame
    diagnostics: Tuple[Diagnostic, ...] = field(default_factory=tuple)

    def __iter__(self):
        return iter((self.table, self.diagnostics))

    @property
    def ok(self) -> bool:
        return not self.diagnostics


# =============================================================================
# Argument checks
# =============================================================================

def _check_ci(ci_level: float, ci_method: str) -> None:
    if not (0 < ci_level < 1):
        raise InvalidParameterError(
            f"ci_level must be in the open interval (0, 1). Got: {ci_level}"
        )
    if ci_method not in CI_METHODS:
        raise InvalidParameterError(
            f"Invalid ci_method: {ci_method!r}. Must be one of: {list(CI_METHODS)}"
        )


def _check_group_by(design: SurveyDesign, group_by: Sequence[str]) -> Tuple[str, ...]:
    if isinstance(group_by, str):
        group_by = (group_by,)
    group_by = tuple(group_by)
    missing = [key for key in group_by if key not in design.data.columns]
    if missing:
        raise SchemaError(
            f"Group-by column(s) not found in design: {missing}. "
            f"Available columns: {list(design.data.columns)}"
        )
    return group_by


def _numeric_values(design: SurveyDesign, variable: str) -> np.ndarray:
    if variable not in design.data.columns:
        raise UnknownVariableError(variable)
    column = design.data[variable]
    if isinstance(column.dtype, pd.CategoricalDtype) or not (
        pd.api.types.is_numeric_dtype(column) or column.dtype == object
    ):
        raise NonNumericVariableError(variable, column.dtype)
    return pd.to_numeric(column, errors='coerce').to_numpy(dtype=float)


def _categorical_codes(design: SurveyDesign, variable: str) -> Tuple[np.ndarray, List]:
    """Category codes (-1 for missing) and the fixed category order."""
    if variable not in design.data.columns:
        raise UnknownVariableError(variable)
    column = design.data[variable]
    if isinstance(column.dtype, pd.CategoricalDtype):
        categorical = column.cat
        return categorical.codes.to_numpy(), list(categorical.categories)
    categories = sorted(column.dropna().unique())
    coded = pd.Categorical(column, categories=categories)
    return np.asarray(coded.codes), categories


# =============================================================================
# Grouping
# =============================================================================

def _as_key(key) -> Tuple[Any, ...]:
    return key if isinstance(key, tuple) else (key,)


def _group_positions(
    design: SurveyDesign,
    group_by: Tuple[str, ...],
    rows: np.ndarray,
) -> Dict[Tuple[Any, ...], np.ndarray]:
    """Map each group key present among *rows* (positions) to its positions."""
    if not group_by:
        return {(): rows} if rows.size else {}
    subset = design.data.iloc[rows]
    indices = subset.groupby(list(group_by), sort=True, observed=True).indices
    return {_as_key(key): rows[idx] for key, idx in indices.items()}


def design_groups(design: SurveyDesign, group_by: Sequence[str]) -> List[Tuple[Any, ...]]:
    """Sorted group-key combinations present in the design."""
    group_by = _check_group_by(design, group_by)
    return list(_group_positions(design, group_by, np.arange(design.n)).keys())


# =============================================================================
# Variance
# =============================================================================

def _linearized_variance(design: SurveyDesign, z: np.ndarray, keep: np.ndarray) -> float:
    """Design-based variance of a total with influence values *z*."""
    if isinstance(design, UnclusteredDesign):
        z_kept = z[keep]
        n = z_kept.size
        if n < 2:
            return np.nan
        centered = z_kept - z_kept.mean()
        return float(n / (n - 1) * np.sum(centered ** 2))

    if isinstance(design, ClusteredStratifiedDesign):
        cluster_codes = design.cluster_codes[keep]
        stratum_codes = design.stratum_codes[keep]
        n_clusters = design.n_clusters

        totals = np.bincount(cluster_codes, weights=z[keep], minlength=n_clusters)
        present = np.bincount(cluster_codes, minlength=n_clusters) > 0
        cluster_stratum = np.zeros(n_clusters, dtype=int)
        cluster_stratum[cluster_codes] = stratum_codes
        totals, cluster_stratum = totals[present], cluster_stratum[present]

        n_strata = design.n_strata
        n_h = np.bincount(cluster_stratum, minlength=n_strata)
        sum_h = np.bincount(cluster_stratum, weights=totals, minlength=n_strata)
        mean_h = np.divide(sum_h, n_h, out=np.zeros(n_strata), where=n_h > 0)
        deviations = totals - mean_h[cluster_stratum]
        ss_h = np.bincount(cluster_stratum, weights=deviations ** 2, minlength=n_strata)

        lonely = n_h == 1
        if lonely.any():
            warnings.warn(
                f"{int(lonely.sum())} stratum/strata contain a single PSU and "
                f"contribute no variance.",
                SmallSampleWarning,
                stacklevel=4,
            )
        factor = np.divide(n_h, n_h - 1, out=np.zeros(n_strata), where=n_h > 1)
        return float(np.sum(factor * ss_h))

    raise TypeError(f"Unsupported design type: {type(design).__name__}")


def _degrees_of_freedom(design: SurveyDesign, keep: np.ndarray) -> int:
    if isinstance(design, UnclusteredDesign):
        return int(keep.sum()) - 1
    if isinstance(design, ClusteredStratifiedDesign):
        n_clusters = np.unique(design.cluster_codes[keep]).size
        n_strata = np.unique(design.stratum_codes[keep]).size
        return int(n_clusters - n_strata)
    raise TypeError(f"Unsupported design type: {type(design).__name__}")


def _critical_value(
    design: SurveyDesign,
    keep: np.ndarray,
    ci_level: float,
    ci_method: str,
) -> float:
    q = 1 - (1 - ci_level) / 2
    if ci_method == 'normal':
        return float(scipy.stats.norm.ppf(q))
    df = _degrees_of_freedom(design, keep)
    if df < 1:
        warnings.warn(
            f"Design has {df} degrees of freedom; t-based intervals are undefined.",
            SmallSampleWarning,
            stacklevel=4,
        )
        return np.nan
    return float(scipy.stats.t.ppf(q, df))


# =============================================================================
# Core per-group estimation
# =============================================================================

def _estimate_group(
    design: SurveyDesign,
    variable: str,
    y: np.ndarray,
    keep: np.ndarray,
    positions: np.ndarray,
    group_by: Tuple[str, ...],
    key: Tuple[Any, ...],
    crit: float,
    ci_level: float,
    category: Optional[str] = None,
) -> WeightedEstimate:
    weights = design.weights
    w = weights[positions]
    total_weight = float(w.sum())
    if positions.size == 0 or total_weight <= 0:
        raise EmptyGroupError(variable, key)

    y_group = y[positions]
    mean = float(np.dot(w, y_group) / total_weight)

    z = np.zeros(design.n)
    z[positions] = w * (y_group - mean) / total_weight
    se = float(np.sqrt(_linearized_variance(design, z, keep)))

    return WeightedEstimate(
        variable=variable,
        group_by=group_by,
        group=key,
        estimate=mean,
        se=se,
        ci_lower=mean - crit * se,
        ci_upper=mean + crit * se,
        ci_level=ci_level,
        n=int(positions.size),
        sum_weights=total_weight,
        design=design.mode.value,
        category=category,
    )


def _requested_positions(
    design: SurveyDesign,
    group_by: Tuple[str, ...],
    keep_rows: np.ndarray,
    groups: Optional[Iterable],
) -> List[Tuple[Tuple[Any, ...], np.ndarray]]:
    present = _group_positions(design, group_by, keep_rows)
    if groups is None:
        return list(present.items())
    requested = sorted(_as_key(g) for g in groups)
    empty = np.array([], dtype=int)
    return [(key, present.get(key, empty)) for key in requested]


def _iter_mean_estimates(
    design: SurveyDesign,
    variable: str,
    group_by: Tuple[str, ...],
    ci_level: float,
    ci_method: str,
    groups: Optional[Iterable],
    on_empty: Optional[List[Diagnostic]],
) -> Iterator[WeightedEstimate]:
    y = _numeric_values(design, variable)
    keep = ~np.isnan(y)
    keep_rows = np.flatnonzero(keep)
    crit = _critical_value(design, keep, ci_level, ci_method)

    requested = _requested_positions(design, group_by, keep_rows, groups)
    if not requested:
        raise EmptyGroupError(variable, (), f"No non-missing observations of '{variable}'.")

    for key, positions in requested:
        try:
            yield _estimate_group(
                design, variable, y, keep, positions, group_by, key, crit, ci_level,
            )
        except EmptyGroupError as exc:
            if on_empty is None:
                raise
            on_empty.append(_diagnostic(exc, variable, key))


def _iter_proportion_estimates(
    design: SurveyDesign,
    variable: str,
    group_by: Tuple[str, ...],
    ci_level: float,
    ci_method: str,
    groups: Optional[Iterable],
    on_empty: Optional[List[Diagnostic]],
) -> Iterator[WeightedEstimate]:
    codes, categories = _categorical_codes(design, variable)
    keep = codes >= 0
    keep_rows = np.flatnonzero(keep)
    crit = _critical_value(design, keep, ci_level, ci_method)

    requested = _requested_positions(design, group_by, keep_rows, groups)
    if not requested:
        raise EmptyGroupError(variable, (), f"No non-missing observations of '{variable}'.")

    for key, positions in requested:
        try:
            for k, category in enumerate(categories):
                indicator = (codes == k).astype(float)
                yield _estimate_group(
                    design, variable, indicator, keep, positions, group_by, key,
                    crit, ci_level, category=str(category),
                )
        except EmptyGroupError as exc:
            if on_empty is None:
                raise
            on_empty.append(_diagnostic(exc, variable, key))


def _diagnostic(exc: EstimationError, variable: str, group=None) -> Diagnostic:
    return Diagnostic(
        variable=variable,
        error_kind=type(exc).__name__,
        message=str(exc),
        group=group,
    )


# =============================================================================
# Public API
# =============================================================================

def estimate_mean(
    design: SurveyDesign,
    variable: str,
    group_by: Sequence[str] = (),
    ci_level: float = DEFAULT_CI_LEVEL,
    ci_method: str = 'normal',
    groups: Optional[Iterable] = None,
    strict: bool = False,
) -> List[WeightedEstimate]:
    """
    Weighted mean of a numeric variable per group.

    Missing values of *variable* are removed before estimation (``na.rm``):
    they count in neither the numerator nor the denominator of any group.

    Parameters
    ----------
    design : UnclusteredDesign or ClusteredStratifiedDesign
        Sampling design over the analysis subset.
    variable : str
        Numeric target column.
    group_by : sequence of str, optional
        Ordered grouping keys, e.g. ``['cntry', 'essround']``. Empty for a
        single overall estimate.
    ci_level : float, default 0.95
        Confidence level.
    ci_method : {'normal', 't'}, default 'normal'
        ``'t'`` uses the design degrees of freedom (n - 1 unclustered,
        #PSU - #strata clustered).
    groups : iterable of tuples, optional
        Explicit group combinations to estimate. By default every
        combination with at least one non-missing observation; design
        groups in which *variable* is entirely missing are omitted from the
        result without error.
    strict : bool, default False
        Request every group combination present in the design, so that a
        group with no non-missing observations raises
        :class:`EmptyGroupError` instead of being omitted. Ignored when
        *groups* is given.

    Returns
    -------
    list of WeightedEstimate
        One per group, sorted by group key.

    Raises
    ------
    UnknownVariableError
        If *variable* is not a column of the design.
    NonNumericVariableError
        If *variable* is categorical.
    EmptyGroupError
        If a requested group has zero weight, or no group has data.
    SchemaError
        If a group-by key is not a column of the design.
    """
    _check_ci(ci_level, ci_method)
    group_by = _check_group_by(design, group_by)
    if strict and groups is None:
        groups = design_groups(design, group_by)
    return list(_iter_mean_estimates(
        design, variable, group_by, ci_level, ci_method, groups, on_empty=None,
    ))


def estimate_proportion(
    design: SurveyDesign,
    variable: str,
    group_by: Sequence[str] = (),
    ci_level: float = DEFAULT_CI_LEVEL,
    ci_method: str = 'normal',
    groups: Optional[Iterable] = None,
    strict: bool = False,
) -> List[WeightedEstimate]:
    """
    Weighted proportion of every category of a categorical variable per group.

    Categories follow the variable's fixed categorical order (sorted unique
    values for non-categorical columns), and every category is reported for
    every group, including zero shares. Within a group the proportions sum
    to one. Missing values are excluded, and *groups* and *strict* behave,
    as in :func:`estimate_mean`.

    Returns
    -------
    list of WeightedEstimate
        One per (group, category), sorted by group key then category order.

    Raises
    ------
    UnknownVariableError, EmptyGroupError, SchemaError
        As for :func:`estimate_mean`.
    """
    _check_ci(ci_level, ci_method)
    group_by = _check_group_by(design, group_by)
    if strict and groups is None:
        groups = design_groups(design, group_by)
    return list(_iter_proportion_estimates(
        design, variable, group_by, ci_level, ci_method, groups, on_empty=None,
    ))


def estimate_geometric_mean_ratio(
    design: SurveyDesign,
    variable: str,
    group_by: Sequence[str] = (),
    ci_level: float = DEFAULT_CI_LEVEL,
    ci_method: str = 'normal',
) -> List[WeightedEstimate]:
    """
    Weighted geometric mean ratio from a log-ratio variable.

    Exponentiates the weighted mean of *variable* (a ``log(a / b)`` column)
    and its confidence bounds. The standard error is the delta-method value
    ``exp(m) * se(m)``.
    """
    estimates = estimate_mean(design, variable, group_by, ci_level, ci_method)
    return [
        WeightedEstimate(
            variable=e.variable,
            group_by=e.group_by,
            group=e.group,
            estimate=float(np.exp(e.estimate)),
            se=float(np.exp(e.estimate) * e.se),
            ci_lower=float(np.exp(e.ci_lower)),
            ci_upper=float(np.exp(e.ci_upper)),
            ci_level=e.ci_level,
            n=e.n,
            sum_weights=e.sum_weights,
            design=e.design,
            transform='exp',
        )
        for e in estimates
    ]


def estimates_to_frame(
    estimates: Sequence[WeightedEstimate],
    group_by: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Tidy table with one row per estimate.

    Columns are the group keys followed by ``variable``, ``category``,
    ``estimate``, ``se``, ``ci_lower``, ``ci_upper``, ``ci_level``, ``n``,
    ``sum_weights`` and ``design``.
    """
    if group_by is None:
        group_by = estimates[0].group_by if estimates else ()
    columns = list(group_by) + TABLE_COLUMNS
    if not estimates:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame([e.as_row() for e in estimates], columns=columns)


def _run_batch(
    design: SurveyDesign,
    variables: Iterable[str],
    group_by: Sequence[str],
    ci_level: float,
    ci_method: str,
    iter_estimates,
) -> BatchResult:
    _check_ci(ci_level, ci_method)
    group_by = _check_group_by(design, group_by)
    if isinstance(variables, (set, frozenset)):
        variables = sorted(variables)

    universe = design_groups(design, group_by)
    estimates: List[WeightedEstimate] = []
    diagnostics: List[Diagnostic] = []

    for variable in variables:
        try:
            estimates.extend(iter_estimates(
                design, variable, group_by, ci_level, ci_method, universe, diagnostics,
            ))
        except EstimationError as exc:
            diagnostics.append(_diagnostic(exc, variable))

    for diag in diagnostics:
        logger.info(
            "Skipped %s%s: %s", diag.variable,
            f" group {diag.group}" if diag.group is not None else '',
            diag.error_kind,
        )

    return BatchResult(
        table=estimates_to_frame(estimates, group_by),
        diagnostics=tuple(diagnostics),
    )


def estimate_many(
    design: SurveyDesign,
    variables: Iterable[str],
    group_by: Sequence[str] = (),
    ci_level: float = DEFAULT_CI_LEVEL,
    ci_method: str = 'normal',
) -> BatchResult:
    """
    Apply :func:`estimate_mean` to many variables and union the rows.

    Every group combination present in the design is attempted for every
    variable. Failures (unknown or categorical variable, group with no
    non-missing observations) do not abort the batch; each one is recorded in the
    diagnostics with the variable, the group where applicable and the error
    kind.

    Returns
    -------
    BatchResult
        ``table`` (tidy estimates with a ``variable`` column) and
        ``diagnostics``.
    """
    return _run_batch(design, variables, group_by, ci_level, ci_method, _iter_mean_estimates)


def estimate_proportions_many(
    design: SurveyDesign,
    variables: Iterable[str],
    group_by: Sequence[str] = (),
    ci_level: float = DEFAULT_CI_LEVEL,
    ci_method: str = 'normal',
) -> BatchResult:
    """Batch counterpart of :func:`estimate_proportion`; see :func:`estimate_many`."""
    return _run_batch(
        design, variables, group_by, ci_level, ci_method, _iter_proportion_estimates,
    )
