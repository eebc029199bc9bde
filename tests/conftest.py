"""
Pytest configuration file providing shared synthetic survey fixtures.
"""
import warnings

import numpy as np
import pandas as pd
import pytest

from esstrust import prepare_survey

TRUST_SOURCE_CODES = [
    'ppltrst', 'trstep', 'trstlgl', 'trstplc', 'trstplt',
    'trstprl', 'trstprt', 'trstun', 'trstsci',
]

# Rounds before 8 ship without the canonical weight and without PSU/stratum ids
EARLY_ROUNDS = (2, 3)
LATE_ROUNDS = (8, 9)


def build_raw_survey(
    countries=('GB', 'IE', 'FR'),
    rounds=EARLY_ROUNDS + LATE_ROUNDS,
    n_per_cell=120,
    seed=2024,
):
    """
    Construct a synthetic survey extract with source column codes.

    Early rounds have ``anweight`` missing (to be reconstructed from
    ``pspwght * pweight``) and no design ids; late rounds carry the
    canonical weight and four PSUs in each of two strata per country.
    About 3% of trust answers are non-response codes.
    """
    rng = np.random.default_rng(seed)
    frames = []
    for c_idx, country in enumerate(countries):
        pweight = 0.5 + 0.5 * c_idx
        for round_id in rounds:
            n = n_per_cell
            pspwght = rng.uniform(0.5, 1.5, size=n)
            frame = pd.DataFrame({
                'essround': round_id,
                'cntry': country,
                'pspwght': pspwght,
                'pweight': pweight,
            })
            if round_id in EARLY_ROUNDS:
                frame['anweight'] = np.nan
                frame['psu'] = np.nan
                frame['stratum'] = np.nan
            else:
                frame['anweight'] = pspwght * pweight
                frame['stratum'] = [f'{country}-{i % 2}' for i in range(n)]
                frame['psu'] = [i % 8 for i in range(n)]
            for code in TRUST_SOURCE_CODES:
                scores = rng.integers(0, 11, size=n).astype(float)
                sentinel = rng.random(n) < 0.03
                scores[sentinel] = rng.choice([77, 88, 99], size=int(sentinel.sum()))
                frame[code] = scores
            frames.append(frame)
    return pd.concat(frames, ignore_index=True)


@pytest.fixture
def raw_survey():
    """Synthetic raw extract (source column codes, sentinel codes present)."""
    return build_raw_survey()


@pytest.fixture
def prepared_survey(raw_survey):
    """Prepared survey with non-response warnings silenced."""
    with warnings.catch_warnings():
        warnings.simplefilter('ignore')
        return prepare_survey(raw_survey)


@pytest.fixture
def late_rounds(prepared_survey):
    """Prepared observations from the rounds carrying PSU and stratum ids."""
    data = prepared_survey.data
    return data[data['essround'].isin(LATE_ROUNDS)].copy()


def build_did_data(
    effect_treated=2.0,
    effect_control=0.5,
    n_per_cell=400,
    noise=0.5,
    seed=7,
):
    """
    Two countries x two rounds with a known post-period shift per country.

    Outcome = 5 + 1 * treated + shift(country) * post + N(0, noise).
    """
    rng = np.random.default_rng(seed)
    rows = []
    for country, shift, level in (('GB', effect_treated, 1.0), ('IE', effect_control, 0.0)):
        for round_id, post in ((7, 0), (8, 1)):
            y = 5.0 + level + shift * post + rng.normal(0, noise, size=n_per_cell)
            rows.append(pd.DataFrame({
                'cntry': country,
                'essround': round_id,
                'outcome': y,
                'weight': rng.uniform(0.5, 2.0, size=n_per_cell),
                'lrscale': rng.integers(0, 11, size=n_per_cell).astype(float),
            }))
    return pd.concat(rows, ignore_index=True)


@pytest.fixture
def did_data():
    return build_did_data()
