"""
Exception Classes Module

Defines the exception hierarchy for the esstrust package.

Dataset-level problems (schema, weights) are fatal and propagate to the
caller. Per-estimate problems derive from :class:`EstimationError` so that
batch helpers can catch exactly those and record them as diagnostics.
"""


class ESSTrustError(Exception):
    """
    Base exception class for all esstrust package errors.

    All custom exceptions in the esstrust package inherit from this class,
    allowing users to catch any package-specific error with:

        try:
            prepared = prepare_survey(frame)
        except ESSTrustError as e:
            print(f"esstrust error: {e}")
    """
    pass


class InvalidParameterError(ESSTrustError, ValueError):
    """
    Exception raised when an argument value is invalid.

    Common triggers include:

    - A confidence level outside the open interval (0, 1)
    - An unknown design mode or CI method
    - A non-positive zero-substitute for the log-ratio transform
    """
    pass


class SchemaError(ESSTrustError):
    """
    Exception raised when the survey extract is missing required columns.

    The core assumes the ingestion layer has already selected the relevant
    columns. A missing column means the input contract is violated, so the
    run is aborted rather than continued on a partial schema.

    Examples
    --------
    >>> validate_schema(frame, ['essround', 'cntry'])  # doctest: +SKIP
    SchemaError: Required column(s) not found in data: ['cntry']

    See Also
    --------
    esstrust.preparation.validate_schema : Function that performs this check.
    """
    pass


class InvalidWeightError(ESSTrustError):
    """
    Exception raised when an analysis weight cannot be resolved.

    Trigger conditions:

    - The resolved weight is zero, negative, NaN or infinite
    - Neither the canonical weight nor both auxiliary design weights are
      available for the observation

    During dataset preparation affected observations are excluded and the
    exclusions are logged per round; the exception itself surfaces only from
    :func:`esstrust.weights.resolve_weight`.
    """
    pass


class WeightCalibrationError(InvalidWeightError):
    """
    Exception raised when reconstructed weights disagree with canonical ones.

    For rounds where both the canonical weight and the auxiliary design
    weights exist, the reconstructed weight must match the canonical weight
    within a relative tolerance for a minimum share of observations. A
    violation indicates a unit or scaling error in the calibration constants.

    See Also
    --------
    esstrust.weights.check_reconstruction : Function that performs this check.
    """
    pass


class MissingDesignInfoError(ESSTrustError):
    """
    Exception raised when a clustered/stratified design lacks cluster info.

    Raised by :func:`esstrust.design.build_design` in ``clustered_stratified``
    mode when any included observation has no PSU or stratum id. The failure
    is local to that design; callers may fall back to the unclustered
    pseudo-design.
    """
    pass


class EstimationError(ESSTrustError):
    """
    Base class for per-estimate failures.

    Batch estimators catch subclasses of this exception, record them in the
    diagnostics list and continue with the remaining variables and groups.
    """
    pass


class UnknownVariableError(EstimationError):
    """
    Exception raised when the target variable is absent from the design.

    Attributes
    ----------
    variable : str
        Name of the variable that was requested.
    """

    def __init__(self, variable, message=None):
        self.variable = variable
        super().__init__(
            message or f"Variable '{variable}' not found in design schema."
        )


class NonNumericVariableError(EstimationError, InvalidParameterError):
    """
    Exception raised when a mean is requested for a categorical variable.

    Attributes
    ----------
    variable : str
        Name of the variable that was requested.
    dtype : object
        Dtype of the offending column.
    """

    def __init__(self, variable, dtype, message=None):
        self.variable = variable
        self.dtype = dtype
        super().__init__(
            message or f"Variable '{variable}' is not numeric (dtype {dtype}); "
                       f"use estimate_proportion for categorical variables."
        )


class EmptyGroupError(EstimationError):
    """
    Exception raised when a group-by combination carries zero weight.

    This happens when a requested (country, round, ...) combination has no
    observations, or when every observation in it is missing the target
    variable.

    Attributes
    ----------
    variable : str
        Name of the target variable.
    group : tuple
        Group-by key values of the empty combination.
    """

    def __init__(self, variable, group, message=None):
        self.variable = variable
        self.group = group
        super().__init__(
            message or f"No weighted observations of '{variable}' in group {group}."
        )


class InsufficientDataError(ESSTrustError):
    """
    Exception raised when a difference-in-differences model is inestimable.

    Trigger conditions:

    - A treatment-group x period cell has zero weighted observations
    - The interaction coefficient or its standard error is not finite
      (e.g. collinear covariates absorb the interaction)

    The DiD engine never returns a degenerate estimate in place of raising.
    """
    pass
