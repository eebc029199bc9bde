"""
Sampling Design Module

Defines the two sampling designs used for variance estimation:

``UnclusteredDesign``
    Pseudo-design treating every respondent as its own sampling unit.
    Valid for every round; understates variance where the true sample was
    clustered.

``ClusteredStratifiedDesign``
    Design with primary sampling units nested in strata. Valid only for the
    rounds in which PSU and stratum ids are populated.

A design is built once per analysis subset with :func:`build_design` and is
read-only afterwards. Estimators branch on the design type explicitly.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple, Union

import numpy as np
import pandas as pd

from .exceptions import InvalidParameterError, InvalidWeightError, MissingDesignInfoError
from .preparation import PreparedSurvey, validate_schema
from .variables import PSU, STRATUM, WEIGHT


class DesignMode(Enum):
    """Sampling design variant."""
    UNCLUSTERED = 'unclustered'
    CLUSTERED_STRATIFIED = 'clustered_stratified'


@dataclass(frozen=True, eq=False)
class UnclusteredDesign:
    """
    Single-stage pseudo-design: weights only, no clusters or strata.

    Attributes
    ----------
    data : pd.DataFrame
        Observations in the design. Treat as read-only.
    weight : str
        Name of the weight column.
    """
    data: pd.DataFrame
    weight: str = WEIGHT

    @property
    def mode(self) -> DesignMode:
        return DesignMode.UNCLUSTERED

    @property
    def n(self) -> int:
        return len(self.data)

    @property
    def weights(self) -> np.ndarray:
        return self.data[self.weight].to_numpy(dtype=float)

    @property
    def schema(self) -> Tuple[str, ...]:
        return tuple(self.data.columns)

    @property
    def degrees_of_freedom(self) -> int:
        return self.n - 1


@dataclass(frozen=True, eq=False)
class ClusteredStratifiedDesign:
    """
    Stratified design with primary sampling units (PSUs) nested in strata.

    PSU ids only need to be unique within their stratum; the design keys
    clusters on the (stratum, psu) pair.

    Attributes
    ----------
    data : pd.DataFrame
        Observations in the design. Treat as read-only.
    weight : str
        Name of the weight column.
    cluster : str
        Name of the PSU column.
    stratum : str
        Name of the stratum column.
    """
    data: pd.DataFrame
    weight: str = WEIGHT
    cluster: str = PSU
    stratum: str = STRATUM
    stratum_codes: np.ndarray = field(init=False, repr=False, compare=False)
    cluster_codes: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        stratum_codes = self.data.groupby(self.stratum, sort=True).ngroup()
        cluster_codes = self.data.groupby([self.stratum, self.cluster], sort=True).ngroup()
        object.__setattr__(self, 'stratum_codes', stratum_codes.to_numpy(dtype=int))
        object.__setattr__(self, 'cluster_codes', cluster_codes.to_numpy(dtype=int))

    @property
    def mode(self) -> DesignMode:
        return DesignMode.CLUSTERED_STRATIFIED

    @property
    def n(self) -> int:
        return len(self.data)

    @property
    def weights(self) -> np.ndarray:
        return self.data[self.weight].to_numpy(dtype=float)

    @property
    def schema(self) -> Tuple[str, ...]:
        return tuple(self.data.columns)

    @property
    def n_strata(self) -> int:
        return int(self.stratum_codes.max()) + 1 if self.n else 0

    @property
    def n_clusters(self) -> int:
        return int(self.cluster_codes.max()) + 1 if self.n else 0

    @property
    def degrees_of_freedom(self) -> int:
        return self.n_clusters - self.n_strata


SurveyDesign = Union[UnclusteredDesign, ClusteredStratifiedDesign]


def _coerce_mode(mode) -> DesignMode:
    if isinstance(mode, DesignMode):
        return mode
    try:
        return DesignMode(str(mode).lower())
    except ValueError:
        raise InvalidParameterError(
            f"Invalid design mode: {mode!r}. "
            f"Must be one of: {[m.value for m in DesignMode]}"
        ) from None


def build_design(
    observations: Union[PreparedSurvey, pd.DataFrame],
    mode: Union[DesignMode, str] = DesignMode.UNCLUSTERED,
    weight: str = WEIGHT,
    cluster: str = PSU,
    stratum: str = STRATUM,
) -> SurveyDesign:
    """
    Build a sampling design over a set of observations.

    Parameters
    ----------
    observations : PreparedSurvey or pd.DataFrame
        Analysis subset. The frame is copied so later changes to the
        caller's frame cannot leak into the design.
    mode : DesignMode or {'unclustered', 'clustered_stratified'}
        Design variant.
    weight : str, default 'weight'
        Weight column.
    cluster, stratum : str
        PSU and stratum columns (clustered mode only).

    Returns
    -------
    UnclusteredDesign or ClusteredStratifiedDesign

    Raises
    ------
    SchemaError
        If the weight column (or, in clustered mode, the PSU/stratum
        columns) is absent.
    InvalidWeightError
        If any weight is non-positive or non-finite.
    MissingDesignInfoError
        In clustered mode, if any observation lacks a PSU or stratum id.
    InvalidParameterError
        If *mode* is not a known design mode.
    """
    mode = _coerce_mode(mode)
    frame = observations.data if isinstance(observations, PreparedSurvey) else observations

    validate_schema(frame, [weight])
    weights = pd.to_numeric(frame[weight], errors='coerce').to_numpy(dtype=float)
    bad = ~(np.isfinite(weights) & (weights > 0))
    if bad.any():
        raise InvalidWeightError(
            f"Design weights must be positive and finite. Found {int(bad.sum())} "
            f"invalid value(s) in '{weight}'."
        )

    data = frame.copy()

    if mode is DesignMode.UNCLUSTERED:
        return UnclusteredDesign(data=data, weight=weight)

    if mode is DesignMode.CLUSTERED_STRATIFIED:
        missing_cols = [c for c in (cluster, stratum) if c not in frame.columns]
        if missing_cols:
            raise MissingDesignInfoError(
                f"Clustered/stratified design requires column(s) {missing_cols}, "
                f"which are not in the data."
            )
        lacking = frame[cluster].isna() | frame[stratum].isna()
        if lacking.any():
            raise MissingDesignInfoError(
                f"{int(lacking.sum())} observation(s) lack a PSU or stratum id. "
                f"Restrict the subset to rounds with design information or use "
                f"the unclustered design."
            )
        return ClusteredStratifiedDesign(
            data=data, weight=weight, cluster=cluster, stratum=stratum,
        )

    raise InvalidParameterError(f"Unhandled design mode: {mode}")
