"""
Warning category hierarchy for the esstrust package.

All warning classes inherit from :class:`ESSTrustWarning`, which itself
inherits from :class:`UserWarning`, so existing filter rules on
``UserWarning`` keep working.

Examples
--------
Silence the per-call notice about cleaned non-response codes:

>>> import warnings
>>> from esstrust import DataWarning
>>> warnings.filterwarnings('ignore', category=DataWarning)
"""


class ESSTrustWarning(UserWarning):
    """Base warning class for all esstrust package warnings."""
    pass


class DataWarning(ESSTrustWarning):
    """
    Warning raised for data quality issues.

    Triggered when non-response codes are converted to missing, or when
    rows are dropped because of missing outcome, covariate or weight values.
    """
    pass


class SmallSampleWarning(ESSTrustWarning):
    """
    Warning raised when a variance component rests on too few units.

    Triggered by strata holding a single PSU (their variance contribution
    is zero) and by DiD cells with very few observations.
    """
    pass


class NumericalWarning(ESSTrustWarning):
    """
    Warning raised when numerical instability is detected.

    Triggered by extremely small standard errors that make t-statistics and
    p-values unreliable.
    """
    pass


class CalibrationWarning(ESSTrustWarning):
    """
    Warning raised when reconstructed weights drift from canonical weights.

    Only issued when the caller runs the reconstruction check in non-strict
    mode; in strict mode the same condition raises
    :class:`esstrust.exceptions.WeightCalibrationError`.
    """
    pass
