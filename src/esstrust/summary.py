"""
Survey coverage summaries.

Respondent counts by country and by round, used to check which
country x round cells an analysis can rely on before estimating.
"""

import logging

import pandas as pd

from .preparation import validate_schema
from .variables import COUNTRY, ROUND

logger = logging.getLogger('esstrust.summary')


def responses_by_country(frame: pd.DataFrame) -> pd.DataFrame:
    """
    Rounds and respondents per country.

    Returns
    -------
    pd.DataFrame
        Columns ``cntry``, ``num_rounds``, ``num_resp``, ``avg_resp``
        (respondents per round), sorted by country.
    """
    validate_schema(frame, [ROUND, COUNTRY])
    summary = (
        frame.groupby(COUNTRY)
        .agg(num_rounds=(ROUND, 'nunique'), num_resp=(ROUND, 'size'))
        .reset_index()
    )
    summary['avg_resp'] = summary['num_resp'] / summary['num_rounds']
    for row in summary.itertuples(index=False):
        logger.debug(
            "%s: %d rounds, %.0f responses per round",
            row.cntry, row.num_rounds, row.avg_resp,
        )
    return summary


def responses_by_round(frame: pd.DataFrame) -> pd.DataFrame:
    """
    Countries and respondents per round.

    Returns
    -------
    pd.DataFrame
        Columns ``essround``, ``num_countries``, ``num_resp``.
    """
    validate_schema(frame, [ROUND, COUNTRY])
    return (
        frame.groupby(ROUND)
        .agg(num_countries=(COUNTRY, 'nunique'), num_resp=(COUNTRY, 'size'))
        .reset_index()
    )


def responses_by_round_country(frame: pd.DataFrame) -> pd.DataFrame:
    """Round x country matrix of respondent counts (0 where absent)."""
    validate_schema(frame, [ROUND, COUNTRY])
    return (
        frame.groupby([ROUND, COUNTRY])
        .size()
        .unstack(COUNTRY, fill_value=0)
    )
