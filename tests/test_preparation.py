"""
Tests for schema validation, score cleaning and survey preparation.
"""

import warnings

import numpy as np
import pandas as pd
import pytest

from esstrust import prepare_survey
from esstrust.exceptions import SchemaError
from esstrust.preparation import WEIGHT_SOURCE, clean_scores, validate_schema
from esstrust.variables import score_names, TRUST_VARIABLES
from esstrust.warnings_categories import DataWarning


class TestValidateSchema:

    def test_lists_every_missing_column(self):
        frame = pd.DataFrame({'essround': [1]})
        with pytest.raises(SchemaError) as excinfo:
            validate_schema(frame, ['essround', 'cntry', 'trust_europ'])
        assert 'cntry' in str(excinfo.value)
        assert 'trust_europ' in str(excinfo.value)

    def test_rejects_non_dataframe(self):
        with pytest.raises(TypeError, match="DataFrame"):
            validate_schema({'essround': [1]}, ['essround'])

    def test_passes_when_complete(self):
        validate_schema(pd.DataFrame({'a': [1], 'b': [2]}), ['a', 'b'])


class TestCleanScores:

    def test_sentinels_and_out_of_range_become_missing(self):
        frame = pd.DataFrame({'trust_un': [1, 77, 88, 99, 11, -1, 5, 0, 10]})
        with pytest.warns(DataWarning, match="Converted 5 "):
            cleaned = clean_scores(frame, ['trust_un'])

        values = cleaned['trust_un']
        assert values.iloc[[1, 2, 3, 4, 5]].isna().all()
        assert values.iloc[[0, 6, 7, 8]].tolist() == [1.0, 5.0, 0.0, 10.0]

    def test_no_warning_when_clean(self):
        frame = pd.DataFrame({'trust_un': [0, 5, 10]})
        with warnings.catch_warnings():
            warnings.simplefilter('error')
            clean_scores(frame, ['trust_un'])

    def test_input_not_modified(self):
        frame = pd.DataFrame({'trust_un': [1, 77]})
        with pytest.warns(DataWarning):
            clean_scores(frame, ['trust_un'])
        assert frame['trust_un'].tolist() == [1, 77]


class TestPrepareSurvey:

    def test_renames_source_codes(self, prepared_survey):
        data = prepared_survey.data
        for name in score_names(TRUST_VARIABLES):
            assert name in data.columns
        assert 'trstprl' not in data.columns

    def test_scores_within_scale(self, prepared_survey):
        data = prepared_survey.data
        for name in prepared_survey.score_variables:
            valid = data[name].dropna()
            assert valid.between(0, 10).all()

    def test_weight_sources(self, prepared_survey):
        data = prepared_survey.data
        assert prepared_survey.reconstructed_rounds == (2, 3)
        late = data['essround'].isin([8, 9])
        assert (data.loc[late, WEIGHT_SOURCE] == 'canonical').all()
        assert (data.loc[~late, WEIGHT_SOURCE] == 'reconstructed').all()
        assert (data['weight'] > 0).all()

    def test_rounds_and_countries(self, prepared_survey):
        assert prepared_survey.rounds == [2, 3, 8, 9]
        assert prepared_survey.countries == ['FR', 'GB', 'IE']

    def test_excludes_rows_without_weight(self, raw_survey):
        raw = raw_survey.copy()
        first_round2 = raw.index[raw['essround'] == 2][0]
        raw.loc[first_round2, ['pspwght', 'pweight']] = np.nan

        with pytest.warns(DataWarning, match="Excluded 1"):
            prepared = prepare_survey(raw)

        assert prepared.excluded_by_round == {2: 1}
        assert prepared.n_excluded == 1
        assert len(prepared.data) == len(raw) - 1

    def test_missing_country_column(self, raw_survey):
        with pytest.raises(SchemaError, match="cntry"):
            prepare_survey(raw_survey.drop(columns='cntry'))

    def test_missing_score_column(self, raw_survey):
        with pytest.raises(SchemaError, match="trust_europ"):
            prepare_survey(raw_survey.drop(columns='trstep'))

    def test_no_weight_columns(self, raw_survey):
        raw = raw_survey.drop(columns=['anweight', 'pweight'])
        with pytest.raises(SchemaError, match="weight"):
            prepare_survey(raw)

    def test_weight_column_is_reserved(self, raw_survey):
        raw = raw_survey.assign(weight=1.0)
        with pytest.raises(SchemaError, match="reserved"):
            prepare_survey(raw)

    def test_custom_score_variables(self, raw_survey):
        raw = raw_survey[['essround', 'cntry', 'anweight', 'pspwght', 'pweight', 'trstprl']]
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', DataWarning)
            prepared = prepare_survey(raw, score_variables=['trust_parliament'])
        assert prepared.score_variables == ('trust_parliament',)

    def test_cleans_catalogued_attitude_scores(self, raw_survey):
        raw = raw_survey.copy()
        raw['lrscale'] = np.tile(np.arange(10, dtype=float), len(raw) // 10)
        raw.loc[raw.index[::10], 'lrscale'] = 88.0
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', DataWarning)
            prepared = prepare_survey(raw)

        assert 'lrscale' in prepared.score_variables
        assert prepared.data['lrscale'].max() <= 10
        assert prepared.data['lrscale'].isna().sum() == len(raw) // 10

    def test_attitude_scores_not_required(self, prepared_survey):
        assert 'lrscale' not in prepared_survey.data.columns
        assert 'lrscale' not in prepared_survey.score_variables

    def test_input_not_modified(self, raw_survey):
        before = raw_survey.copy()
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', DataWarning)
            prepare_survey(raw_survey)
        pd.testing.assert_frame_equal(raw_survey, before)
