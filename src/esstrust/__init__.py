"""
esstrust: Survey-Weighted Trust Estimation for Multi-Round Social Surveys
==========================================================================

Survey-weighted descriptive and causal estimation of institutional trust
(e.g. national vs. European Parliament) across the rounds and countries of
a repeated cross-national social survey.

Key Features
------------
- Weight resolution: canonical analysis weight where present, reconstructed
  from design weights elsewhere, with a per-round calibration check
- Two sampling designs: an unclustered pseudo-design valid for every round
  and a clustered/stratified design for rounds with PSU and stratum ids
- Weighted means and proportions by any grouping (country x round x ...)
  with linearised standard errors and normal or t intervals
- Fixed ordinal recoding schemes (three-level, extreme, binary)
- Comparison targets: difference, sign of difference and log ratio
- Difference-in-differences by weighted least squares with HC2 standard
  errors, two-period and event-study forms, with covariates
- Batch estimation that records failures instead of aborting

Main Components
---------------
prepare_survey : function
    Schema check, non-response cleaning and weight resolution.
build_design : function
    Build an ``UnclusteredDesign`` or ``ClusteredStratifiedDesign``.
estimate_mean, estimate_proportion, estimate_many : functions
    Weighted estimators returning ``WeightedEstimate`` records.
estimate_did, estimate_did_eventstudy : functions
    Difference-in-differences estimators.
Exception hierarchy : module
    Typed exceptions inheriting from ``ESSTrustError``.

Quick Start
-----------
>>> import pandas as pd
>>> from esstrust import prepare_survey, build_design, estimate_many
>>>
>>> survey = prepare_survey(pd.read_parquet('ess_extract.parquet'))
>>> design = build_design(survey, mode='unclustered')
>>> table, diagnostics = estimate_many(
...     design,
...     ['trust_parliament', 'trust_europ'],
...     group_by=['cntry', 'essround'],
... )
>>>
>>> from esstrust import estimate_did
>>> did = estimate_did(
...     survey, treatment_group='GB', control_group='IE',
...     period_map={7: 0, 8: 1}, outcome_variable='trust_parliament',
... )
>>> print(did.summary())

Notes
-----
Logging goes to the ``'esstrust'`` logger; the package installs no
handlers.
"""

import logging

from .design import (
    ClusteredStratifiedDesign,
    DesignMode,
    UnclusteredDesign,
    build_design,
)
from .did import DidResult, EventStudyResult, estimate_did, estimate_did_eventstudy
from .estimation import (
    BatchResult,
    Diagnostic,
    WeightedEstimate,
    estimate_geometric_mean_ratio,
    estimate_many,
    estimate_mean,
    estimate_proportion,
    estimate_proportions_many,
    estimates_to_frame,
)
from .exceptions import (
    EmptyGroupError,
    ESSTrustError,
    EstimationError,
    InsufficientDataError,
    InvalidParameterError,
    InvalidWeightError,
    MissingDesignInfoError,
    NonNumericVariableError,
    SchemaError,
    UnknownVariableError,
    WeightCalibrationError,
)
from .preparation import PreparedSurvey, clean_scores, prepare_survey, validate_schema
from .recode import (
    BINARY,
    EXTREME,
    THREE_LEVEL,
    CategoryScheme,
    add_recoded_columns,
    recode_ordinal,
    recode_series,
)
from .summary import responses_by_country, responses_by_round, responses_by_round_country
from .targets import (
    add_trust_targets,
    build_difference,
    build_log_ratio,
    build_signed_difference,
)
from .warnings_categories import (
    CalibrationWarning,
    DataWarning,
    ESSTrustWarning,
    NumericalWarning,
    SmallSampleWarning,
)
from .weights import (
    WeightCalibration,
    check_reconstruction,
    resolve_weight,
    resolve_weights,
    weight_totals_by_round,
)

logging.getLogger('esstrust').addHandler(logging.NullHandler())

__version__ = '0.1.0'

__all__ = [
    # Preparation
    'prepare_survey',
    'PreparedSurvey',
    'validate_schema',
    'clean_scores',
    # Weights
    'WeightCalibration',
    'resolve_weight',
    'resolve_weights',
    'check_reconstruction',
    'weight_totals_by_round',
    # Designs
    'DesignMode',
    'UnclusteredDesign',
    'ClusteredStratifiedDesign',
    'build_design',
    # Estimation
    'WeightedEstimate',
    'Diagnostic',
    'BatchResult',
    'estimate_mean',
    'estimate_proportion',
    'estimate_many',
    'estimate_proportions_many',
    'estimate_geometric_mean_ratio',
    'estimates_to_frame',
    # Recoding and targets
    'CategoryScheme',
    'THREE_LEVEL',
    'EXTREME',
    'BINARY',
    'recode_ordinal',
    'recode_series',
    'add_recoded_columns',
    'build_difference',
    'build_signed_difference',
    'build_log_ratio',
    'add_trust_targets',
    # Coverage summaries
    'responses_by_country',
    'responses_by_round',
    'responses_by_round_country',
    # DiD
    'DidResult',
    'EventStudyResult',
    'estimate_did',
    'estimate_did_eventstudy',
    # Exceptions
    'ESSTrustError',
    'InvalidParameterError',
    'SchemaError',
    'InvalidWeightError',
    'WeightCalibrationError',
    'MissingDesignInfoError',
    'EstimationError',
    'UnknownVariableError',
    'NonNumericVariableError',
    'EmptyGroupError',
    'InsufficientDataError',
    # Warnings
    'ESSTrustWarning',
    'DataWarning',
    'SmallSampleWarning',
    'NumericalWarning',
    'CalibrationWarning',
]
