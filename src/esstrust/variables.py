"""
Variable Catalogue Module

Static catalogue of the survey variables used by the analysis. Every column
the core reads is listed here once, with its canonical analysis name, the
code it carries in the source survey extract and the kind of values it
holds. Lookups are by exact name only.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

import pandas as pd

# Score bounds of the 0-10 ordinal scales
SCORE_MIN = 0
SCORE_MAX = 10

# Refusal (77), don't know (88) and no answer (99) codes on 0-10 items
NON_RESPONSE_CODES = (77, 88, 99)

# Canonical column names written by the preparation pipeline
ROUND = 'essround'
COUNTRY = 'cntry'
WEIGHT = 'weight'
CANONICAL_WEIGHT = 'anweight'
POST_STRAT_WEIGHT = 'pspwght'
POPULATION_WEIGHT = 'pweight'
PSU = 'psu'
STRATUM = 'stratum'


class VariableKind(Enum):
    """Kind of values a catalogued variable holds."""
    IDENTIFIER = 'identifier'
    WEIGHT = 'weight'
    DESIGN = 'design'
    SCORE = 'score'
    CATEGORICAL = 'categorical'
    NUMERIC = 'numeric'


@dataclass(frozen=True)
class SurveyVariable:
    """
    One catalogued survey variable.

    Attributes
    ----------
    name : str
        Canonical analysis name.
    source : str
        Column code in the source survey extract.
    kind : VariableKind
        Kind of values held.
    label : str
        Short human-readable description.
    """
    name: str
    source: str
    kind: VariableKind
    label: str = ''

    @property
    def is_score(self) -> bool:
        return self.kind is VariableKind.SCORE


def _score(name, source, label):
    return SurveyVariable(name, source, VariableKind.SCORE, label)


DESIGN_VARIABLES: Tuple[SurveyVariable, ...] = (
    SurveyVariable(ROUND, 'essround', VariableKind.IDENTIFIER, 'Survey round'),
    SurveyVariable(COUNTRY, 'cntry', VariableKind.IDENTIFIER, 'Country code (ISO 3166-1 alpha-2)'),
    SurveyVariable(CANONICAL_WEIGHT, 'anweight', VariableKind.WEIGHT, 'Analysis weight'),
    SurveyVariable(POST_STRAT_WEIGHT, 'pspwght', VariableKind.WEIGHT, 'Post-stratification weight'),
    SurveyVariable(POPULATION_WEIGHT, 'pweight', VariableKind.WEIGHT, 'Population size weight'),
    SurveyVariable(PSU, 'psu', VariableKind.DESIGN, 'Primary sampling unit'),
    SurveyVariable(STRATUM, 'stratum', VariableKind.DESIGN, 'Sampling stratum'),
)

TRUST_VARIABLES: Tuple[SurveyVariable, ...] = (
    _score('trust_people', 'ppltrst', 'Most people can be trusted'),
    _score('trust_europ', 'trstep', 'Trust in the European Parliament'),
    _score('trust_legal', 'trstlgl', 'Trust in the legal system'),
    _score('trust_police', 'trstplc', 'Trust in the police'),
    _score('trust_politicians', 'trstplt', 'Trust in politicians'),
    _score('trust_parliament', 'trstprl', "Trust in country's parliament"),
    _score('trust_polparties', 'trstprt', 'Trust in political parties'),
    _score('trust_un', 'trstun', 'Trust in the United Nations'),
    _score('trust_scien', 'trstsci', 'Trust in scientists'),
)

ATTITUDE_VARIABLES: Tuple[SurveyVariable, ...] = (
    _score('lrscale', 'lrscale', 'Placement on left-right scale'),
    _score('happy', 'happy', 'How happy are you'),
    _score('stflife', 'stflife', 'Satisfaction with life as a whole'),
    _score('stfdem', 'stfdem', 'Satisfaction with the way democracy works'),
    _score('stfeco', 'stfeco', 'Satisfaction with the present state of the economy'),
    _score('stfgov', 'stfgov', 'Satisfaction with the national government'),
    _score('stfedu', 'stfedu', 'State of education in country nowadays'),
    _score('stfhlth', 'stfhlth', 'State of health services in country nowadays'),
    _score('euftf', 'euftf', 'European unification go further or gone too far'),
    _score('imbgeco', 'imbgeco', "Immigration bad or good for country's economy"),
    _score('imueclt', 'imueclt', 'Cultural life undermined or enriched by immigrants'),
    _score('imwbcnt', 'imwbcnt', 'Immigrants make country worse or better place to live'),
    _score('atchctr', 'atchctr', 'Emotional attachment to country'),
    _score('atcherp', 'atcherp', 'Emotional attachment to Europe'),
)

DEMOGRAPHIC_VARIABLES: Tuple[SurveyVariable, ...] = (
    SurveyVariable('gndr', 'gndr', VariableKind.CATEGORICAL, 'Gender'),
    SurveyVariable('agea', 'agea', VariableKind.NUMERIC, 'Age of respondent'),
    SurveyVariable('hhmmb', 'hhmmb', VariableKind.NUMERIC, 'Household members'),
    SurveyVariable('eisced', 'eisced', VariableKind.CATEGORICAL, 'Highest level of education'),
    SurveyVariable('pdwrk', 'pdwrk', VariableKind.CATEGORICAL, 'In paid work'),
    SurveyVariable('hinctnta', 'hinctnta', VariableKind.CATEGORICAL, 'Household income decile'),
    SurveyVariable('hincfel', 'hincfel', VariableKind.CATEGORICAL, 'Feeling about household income'),
    SurveyVariable('ctzcntr', 'ctzcntr', VariableKind.CATEGORICAL, 'Citizen of country'),
    SurveyVariable('brncntr', 'brncntr', VariableKind.CATEGORICAL, 'Born in country'),
    SurveyVariable('blgetmg', 'blgetmg', VariableKind.CATEGORICAL, 'Belong to minority ethnic group'),
    SurveyVariable('domicil', 'domicil', VariableKind.CATEGORICAL, 'Domicile, urban or rural'),
    SurveyVariable('health', 'health', VariableKind.CATEGORICAL, 'Subjective general health'),
    SurveyVariable('vote', 'vote', VariableKind.CATEGORICAL, 'Voted last national election'),
    SurveyVariable('polintr', 'polintr', VariableKind.CATEGORICAL, 'Interest in politics'),
)

CATALOGUE: Dict[str, SurveyVariable] = {
    v.name: v
    for v in DESIGN_VARIABLES + TRUST_VARIABLES + ATTITUDE_VARIABLES + DEMOGRAPHIC_VARIABLES
}

SCORE_VARIABLES: Tuple[SurveyVariable, ...] = TRUST_VARIABLES + ATTITUDE_VARIABLES


def get_variable(name: str) -> SurveyVariable:
    """
    Look up a catalogued variable by its canonical name.

    Raises
    ------
    KeyError
        If *name* is not catalogued.
    """
    try:
        return CATALOGUE[name]
    except KeyError:
        raise KeyError(
            f"Variable '{name}' is not in the catalogue. "
            f"Known variables: {sorted(CATALOGUE)}"
        ) from None


def score_names(variables: Optional[Tuple[SurveyVariable, ...]] = None) -> Tuple[str, ...]:
    """Canonical names of the 0-10 score variables (all of them by default)."""
    chosen = SCORE_VARIABLES if variables is None else variables
    return tuple(v.name for v in chosen if v.is_score)


def rename_source_columns(frame: pd.DataFrame) -> pd.DataFrame:
    """
    Rename source survey codes to canonical analysis names.

    Only catalogued columns whose source code differs from the canonical name
    are renamed; every other column is left untouched. A new frame is
    returned.
    """
    mapping = {
        v.source: v.name
        for v in CATALOGUE.values()
        if v.source != v.name and v.source in frame.columns
    }
    return frame.rename(columns=mapping)
