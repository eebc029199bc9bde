"""
Difference-in-Differences Module

Weighted least-squares difference-in-differences between one treatment and
one control country over selected survey rounds.

Two model forms are provided:

``estimate_did``
    Two-period form ``y ~ treated * post [+ covariates]``. The coefficient on
    ``treated x post`` is the DiD estimate: the post-period change in the
    treatment country net of the control country's change.

``estimate_did_eventstudy``
    Multi-period form ``y ~ treated * factor(round)`` with a baseline round
    omitted, giving one interaction coefficient per non-baseline round.
    Interactions in rounds before the shock are the pre-trend check.

Inference uses heteroskedasticity-robust HC2 standard errors with
t-distribution critical values on the residual degrees of freedom.

Notes
-----
The engine only computes estimates. It does not judge parallel trends or
anticipation; :meth:`EventStudyResult.pretrend_wald` is available for the
caller to run. An inestimable model always raises
:class:`~esstrust.exceptions.InsufficientDataError`.
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import scipy.stats
import statsmodels.api as sm

from .exceptions import (
    InsufficientDataError,
    InvalidParameterError,
    InvalidWeightError,
)
from .preparation import PreparedSurvey, validate_schema
from .variables import COUNTRY, ROUND, WEIGHT
from .warnings_categories import DataWarning, NumericalWarning, SmallSampleWarning

logger = logging.getLogger('esstrust.did')

COV_TYPE = 'HC2'
TREATED = 'treated'
POST = 'post'
INTERACTION = 'treated_x_post'

# Cells with fewer unweighted observations than this trigger a warning
MIN_CELL_OBS = 10


@dataclass(frozen=True)
class DidResult:
    """
    Two-period difference-in-differences estimate.

    Attributes
    ----------
    interaction_coefficient : float
        Coefficient on ``treated x post``.
    standard_error : float
        HC2 standard error of the interaction.
    p_value : float
        Two-sided p-value, t distribution on ``df_resid``.
    n_observations : int
        Rows used in the regression.
    t_stat : float
    ci_lower, ci_upper : float
        Confidence bounds at ``ci_level``.
    ci_level : float
    df_resid : int
    treatment_group, control_group : str
    outcome : str
    covariates : tuple of str
        Covariates entered in the model.
    cell_counts : pd.DataFrame
        Unweighted and weighted observations per (treated, post) cell.
    params, bse : pd.Series
        All coefficients and their HC2 standard errors.
    """
    interaction_coefficient: float
    standard_error: float
    p_value: float
    n_observations: int
    t_stat: float
    ci_lower: float
    ci_upper: float
    ci_level: float
    df_resid: int
    treatment_group: str
    control_group: str
    outcome: str
    covariates: Tuple[str, ...] = ()
    cell_counts: pd.DataFrame = field(default=None, repr=False, compare=False)
    params: pd.Series = field(default=None, repr=False, compare=False)
    bse: pd.Series = field(default=None, repr=False, compare=False)

    def summary(self) -> str:
        pct = int(round(self.ci_level * 100))
        return (
            f"DiD {self.treatment_group} vs {self.control_group} on {self.outcome}: "
            f"{self.interaction_coefficient:.4f} (SE {self.standard_error:.4f}, "
            f"p={self.p_value:.4f}, {pct}% CI [{self.ci_lower:.4f}, {self.ci_upper:.4f}], "
            f"N={self.n_observations})"
        )


@dataclass(frozen=True, eq=False)
class EventStudyResult:
    """
    Event-study (multi-period) difference-in-differences estimates.

    Attributes
    ----------
    coefficients : pd.DataFrame
        One row per non-baseline round with columns ``round``,
        ``coefficient``, ``se``, ``t_stat``, ``p_value``, ``ci_lower``,
        ``ci_upper``, ``n``.
    vcov : pd.DataFrame
        HC2 covariance of the interaction coefficients, indexed by round.
    baseline_round : int
    n_observations : int
    df_resid : int
    ci_level : float
    treatment_group, control_group : str
    outcome : str
    """
    coefficients: pd.DataFrame
    vcov: pd.DataFrame
    baseline_round: Any
    n_observations: int
    df_resid: int
    ci_level: float
    treatment_group: str
    control_group: str
    outcome: str
    covariates: Tuple[str, ...] = ()

    def pretrend_wald(self, pre_rounds: Sequence) -> Dict[str, float]:
        """
        Joint Wald test that the given pre-period interactions are all zero.

        Uses the full HC2 covariance of the selected coefficients:
        ``W = b' V^-1 b`` compared with chi-squared(q).

        Parameters
        ----------
        pre_rounds : sequence
            Non-baseline rounds before the shock.

        Returns
        -------
        dict
            ``statistic``, ``df`` and ``p_value``.
        """
        pre_rounds = list(pre_rounds)
        unknown = [r for r in pre_rounds if r not in self.vcov.index]
        if not pre_rounds or unknown:
            raise InvalidParameterError(
                f"pre_rounds must be non-empty non-baseline rounds of the event "
                f"study. Unknown: {unknown}; available: {list(self.vcov.index)}"
            )
        coefs = self.coefficients.set_index('round').loc[pre_rounds, 'coefficient'].to_numpy()
        cov = self.vcov.loc[pre_rounds, pre_rounds].to_numpy()
        statistic = float(coefs @ np.linalg.pinv(cov) @ coefs)
        q = len(pre_rounds)
        return {
            'statistic': statistic,
            'df': q,
            'p_value': float(scipy.stats.chi2.sf(statistic, q)),
        }


# =============================================================================
# Data preparation helpers
# =============================================================================

def _frame(data: Union[PreparedSurvey, pd.DataFrame]) -> pd.DataFrame:
    return data.data if isinstance(data, PreparedSurvey) else data


def _restrict(
    data: pd.DataFrame,
    treatment_group: str,
    control_group: str,
    rounds: Sequence,
    outcome: str,
    weight: str,
    covariates: Sequence[str],
    country: str,
    round_col: str,
) -> pd.DataFrame:
    if treatment_group == control_group:
        raise InvalidParameterError(
            f"Treatment and control groups must differ. Got: {treatment_group!r} for both."
        )

    validate_schema(data, [country, round_col, outcome, weight, *covariates])

    sample = data.loc[
        data[country].isin([treatment_group, control_group]) & data[round_col].isin(rounds)
    ]

    needed = [outcome, weight, *covariates]
    complete = sample[needed].notna().all(axis=1)
    n_dropped = int((~complete).sum())
    if n_dropped:
        logger.info("Dropped %d rows with missing outcome, weight or covariates", n_dropped)
        warnings.warn(
            f"Dropped {n_dropped} observations with missing values in {needed}.",
            DataWarning,
            stacklevel=3,
        )
    sample = sample.loc[complete].copy()

    weights = pd.to_numeric(sample[weight], errors='coerce').to_numpy(dtype=float)
    if not np.all(np.isfinite(weights) & (weights > 0)):
        raise InvalidWeightError(
            f"Weights in '{weight}' must be positive and finite for every DiD observation."
        )

    sample[TREATED] = (sample[country] == treatment_group).astype(float)
    return sample


def _covariate_matrix(sample: pd.DataFrame, covariates: Sequence[str]) -> pd.DataFrame:
    """Numeric covariates as-is, categorical ones as treatment-coded dummies."""
    parts = []
    for cov in covariates:
        column = sample[cov]
        if isinstance(column.dtype, pd.CategoricalDtype):
            column = column.cat.remove_unused_categories()
        if isinstance(column.dtype, pd.CategoricalDtype) or column.dtype == object:
            # reference level is the first observed category
            parts.append(pd.get_dummies(column, prefix=cov, prefix_sep='=', drop_first=True, dtype=float))
        else:
            parts.append(pd.to_numeric(column, errors='coerce').astype(float).to_frame(cov))
    if not parts:
        return pd.DataFrame(index=sample.index)
    return pd.concat(parts, axis=1)


def _cell_counts(sample: pd.DataFrame, period: str, weight: str) -> pd.DataFrame:
    return (
        sample.groupby([TREATED, period])[weight]
        .agg(n='size', sum_weights='sum')
        .reset_index()
    )


def _check_cells(
    sample: pd.DataFrame,
    period: str,
    periods: Sequence,
    weight: str,
) -> pd.DataFrame:
    counts = _cell_counts(sample, period, weight)
    for treated in (1.0, 0.0):
        for p in periods:
            cell = counts[(counts[TREATED] == treated) & (counts[period] == p)]
            group = 'treatment' if treated else 'control'
            if cell.empty or cell['sum_weights'].iloc[0] <= 0:
                raise InsufficientDataError(
                    f"No weighted observations for the {group} group in "
                    f"{period}={p}. DiD requires every group x period cell."
                )
            if cell['n'].iloc[0] < MIN_CELL_OBS:
                warnings.warn(
                    f"Only {int(cell['n'].iloc[0])} observations for the {group} "
                    f"group in {period}={p}; inference may be unreliable.",
                    SmallSampleWarning,
                    stacklevel=3,
                )
    return counts


def _fit_wls(y: pd.Series, X: pd.DataFrame, weights: np.ndarray):
    if np.linalg.matrix_rank(X.to_numpy()) < X.shape[1]:
        raise InsufficientDataError(
            f"Design matrix is rank deficient ({X.shape[1]} columns: {list(X.columns)}); "
            f"a covariate is collinear with the group or period indicators."
        )
    model = sm.WLS(y.astype(float), X, weights=weights)
    return model.fit(cov_type=COV_TYPE)


def _t_inference(coef: float, se: float, df: int, ci_level: float, term: str):
    if not (np.isfinite(coef) and np.isfinite(se)) or se <= 0:
        raise InsufficientDataError(
            f"Coefficient on '{term}' is not estimable (coef={coef}, se={se})."
        )
    if se < 1e-10:
        warnings.warn(
            f"Standard error of '{term}' is extremely small (SE={se:.2e}); "
            f"t-statistic and p-value may be unreliable.",
            NumericalWarning,
            stacklevel=3,
        )
    t_stat = coef / se
    p_value = float(2 * scipy.stats.t.sf(abs(t_stat), df))
    t_crit = float(scipy.stats.t.ppf(1 - (1 - ci_level) / 2, df))
    return t_stat, p_value, coef - t_crit * se, coef + t_crit * se


def _check_ci_level(ci_level: float) -> None:
    if not (0 < ci_level < 1):
        raise InvalidParameterError(
            f"ci_level must be in the open interval (0, 1). Got: {ci_level}"
        )


# =============================================================================
# Public API
# =============================================================================

def estimate_did(
    data: Union[PreparedSurvey, pd.DataFrame],
    treatment_group: str,
    control_group: str,
    period_map: Mapping[Any, int],
    outcome_variable: str,
    weight: str = WEIGHT,
    covariates: Sequence[str] = (),
    ci_level: float = 0.95,
    country: str = COUNTRY,
    round_col: str = ROUND,
) -> DidResult:
    """
    Two-period weighted difference-in-differences with HC2 inference.

    Fits ``outcome ~ treated + post + treated:post [+ covariates]`` by
    weighted least squares on the rows whose country is the treatment or
    control group and whose round is a key of *period_map*.

    Parameters
    ----------
    data : PreparedSurvey or pd.DataFrame
        Observations with country, round, outcome and weight columns.
    treatment_group, control_group : str
        Country codes of the treated and comparison countries.
    period_map : mapping
        Round -> 0 (pre) or 1 (post). Rounds absent from the mapping are
        excluded.
    outcome_variable : str
        Numeric outcome column.
    weight : str, default 'weight'
        Analysis weight column.
    covariates : sequence of str, optional
        Additional regressors. Categorical columns (e.g. recoded score
        buckets) enter as dummies against their first category; numeric
        columns enter linearly. Rows missing any covariate are dropped.
    ci_level : float, default 0.95

    Returns
    -------
    DidResult

    Raises
    ------
    SchemaError
        If a required column is absent.
    InvalidParameterError
        If *period_map* is not a 0/1 mapping with both periods, or the two
        groups coincide.
    InsufficientDataError
        If any group x period cell is empty, or the model is inestimable.
    """
    _check_ci_level(ci_level)
    period_map = dict(period_map)
    if set(period_map.values()) != {0, 1}:
        raise InvalidParameterError(
            f"period_map must map rounds to 0 (pre) and 1 (post), with both "
            f"present. Got: {period_map}"
        )
    covariates = tuple(covariates)
    frame = _frame(data)

    sample = _restrict(
        frame, treatment_group, control_group, list(period_map), outcome_variable,
        weight, covariates, country, round_col,
    )
    sample[POST] = sample[round_col].map(period_map).astype(float)
    counts = _check_cells(sample, POST, (0.0, 1.0), weight)

    X = pd.DataFrame({
        'const': 1.0,
        TREATED: sample[TREATED],
        POST: sample[POST],
        INTERACTION: sample[TREATED] * sample[POST],
    }, index=sample.index)
    X = pd.concat([X, _covariate_matrix(sample, covariates)], axis=1)

    fit = _fit_wls(sample[outcome_variable], X, sample[weight].to_numpy(dtype=float))
    coef = float(fit.params[INTERACTION])
    se = float(fit.bse[INTERACTION])
    df_resid = int(fit.df_resid)
    t_stat, p_value, ci_lower, ci_upper = _t_inference(coef, se, df_resid, ci_level, INTERACTION)

    logger.info(
        "DiD %s vs %s on %s: %.4f (SE %.4f, N=%d)",
        treatment_group, control_group, outcome_variable, coef, se, int(fit.nobs),
    )

    return DidResult(
        interaction_coefficient=coef,
        standard_error=se,
        p_value=p_value,
        n_observations=int(fit.nobs),
        t_stat=float(t_stat),
        ci_lower=float(ci_lower),
        ci_upper=float(ci_upper),
        ci_level=ci_level,
        df_resid=df_resid,
        treatment_group=treatment_group,
        control_group=control_group,
        outcome=outcome_variable,
        covariates=covariates,
        cell_counts=counts,
        params=fit.params,
        bse=fit.bse,
    )


def estimate_did_eventstudy(
    data: Union[PreparedSurvey, pd.DataFrame],
    treatment_group: str,
    control_group: str,
    outcome_variable: str,
    weight: str = WEIGHT,
    baseline_round: Any = None,
    rounds: Optional[Sequence] = None,
    covariates: Sequence[str] = (),
    ci_level: float = 0.95,
    country: str = COUNTRY,
    round_col: str = ROUND,
) -> EventStudyResult:
    """
    Event-study difference-in-differences, one interaction per round.

    Fits ``outcome ~ treated * factor(round) [+ covariates]`` with
    *baseline_round* as the omitted round. Each reported coefficient is the
    treatment-control gap in that round relative to the gap in the baseline.

    Parameters
    ----------
    data : PreparedSurvey or pd.DataFrame
    treatment_group, control_group : str
    outcome_variable : str
    weight : str, default 'weight'
    baseline_round : round id
        Reference round, typically the last one before the shock.
    rounds : sequence, optional
        Rounds to include; must contain *baseline_round*. Defaults to every
        round in which either group appears.
    covariates : sequence of str, optional
    ci_level : float, default 0.95

    Returns
    -------
    EventStudyResult

    Raises
    ------
    InvalidParameterError
        If *baseline_round* is missing or not among the rounds, or fewer
        than two rounds are included.
    InsufficientDataError
        If any group x round cell is empty, or an interaction is
        inestimable.
    """
    _check_ci_level(ci_level)
    covariates = tuple(covariates)
    frame = _frame(data)
    validate_schema(frame, [country, round_col])

    if rounds is None:
        in_groups = frame[country].isin([treatment_group, control_group])
        rounds = sorted(frame.loc[in_groups, round_col].dropna().unique())
    rounds = sorted(rounds)
    if baseline_round is None or baseline_round not in rounds:
        raise InvalidParameterError(
            f"baseline_round must be one of the included rounds {rounds}. "
            f"Got: {baseline_round!r}"
        )
    if len(rounds) < 2:
        raise InvalidParameterError(
            f"An event study needs at least two rounds. Got: {rounds}"
        )

    sample = _restrict(
        frame, treatment_group, control_group, rounds, outcome_variable,
        weight, covariates, country, round_col,
    )
    _check_cells(sample, round_col, rounds, weight)

    others = [r for r in rounds if r != baseline_round]
    X = pd.DataFrame({'const': 1.0, TREATED: sample[TREATED]}, index=sample.index)
    for r in others:
        X[f'round_{r}'] = (sample[round_col] == r).astype(float)
    interaction_cols: List[str] = []
    for r in others:
        name = f'{TREATED}_x_round_{r}'
        X[name] = sample[TREATED] * X[f'round_{r}']
        interaction_cols.append(name)
    X = pd.concat([X, _covariate_matrix(sample, covariates)], axis=1)

    fit = _fit_wls(sample[outcome_variable], X, sample[weight].to_numpy(dtype=float))
    df_resid = int(fit.df_resid)
    n_by_round = sample.groupby(round_col).size()

    rows = []
    for r, name in zip(others, interaction_cols):
        coef = float(fit.params[name])
        se = float(fit.bse[name])
        t_stat, p_value, ci_lower, ci_upper = _t_inference(coef, se, df_resid, ci_level, name)
        rows.append({
            'round': r,
            'coefficient': coef,
            'se': se,
            't_stat': float(t_stat),
            'p_value': p_value,
            'ci_lower': float(ci_lower),
            'ci_upper': float(ci_upper),
            'n': int(n_by_round.get(r, 0)),
        })

    vcov = fit.cov_params().loc[interaction_cols, interaction_cols]
    vcov.index = others
    vcov.columns = others

    return EventStudyResult(
        coefficients=pd.DataFrame(rows),
        vcov=vcov,
        baseline_round=baseline_round,
        n_observations=int(fit.nobs),
        df_resid=df_resid,
        ci_level=ci_level,
        treatment_group=treatment_group,
        control_group=control_group,
        outcome=outcome_variable,
        covariates=covariates,
    )
