"""
Tests for survey-weighted means, proportions and batch estimation.

Standard errors are checked against hand-computed Taylor linearisation
values on small designs; the synthetic survey fixtures are used for the
structural properties (missing-row invariance, design equivalence of
point estimates, batch diagnostics).
"""

import warnings

import numpy as np
import pandas as pd
import pytest
import scipy.stats

from esstrust import build_design
from esstrust.estimation import (
    TABLE_COLUMNS,
    estimate_geometric_mean_ratio,
    estimate_many,
    estimate_mean,
    estimate_proportion,
    estimate_proportions_many,
    estimates_to_frame,
)
from esstrust.exceptions import (
    EmptyGroupError,
    InvalidParameterError,
    NonNumericVariableError,
    SchemaError,
    UnknownVariableError,
)
from esstrust.recode import THREE_LEVEL, add_recoded_columns
from esstrust.targets import add_trust_targets
from esstrust.warnings_categories import SmallSampleWarning


@pytest.fixture
def small_frame():
    """Two strata with two PSUs each; weighted mean of y is 29/8."""
    return pd.DataFrame({
        'y': [1.0, 3.0, 2.0, 5.0, 4.0, 6.0],
        'weight': [1.0, 1.0, 2.0, 1.0, 1.0, 2.0],
        'stratum': ['A', 'A', 'A', 'B', 'B', 'B'],
        'psu': [1, 1, 2, 1, 2, 2],
    })


class TestEstimateMean:

    def test_weighted_mean(self, small_frame):
        (est,) = estimate_mean(build_design(small_frame), 'y')
        assert est.estimate == pytest.approx(29 / 8)
        assert est.n == 6
        assert est.sum_weights == pytest.approx(8.0)
        assert est.group == ()

    def test_unclustered_se(self, small_frame):
        (est,) = estimate_mean(build_design(small_frame), 'y')

        y, w = small_frame['y'].to_numpy(), small_frame['weight'].to_numpy()
        z = w * (y - 29 / 8) / w.sum()
        n = len(z)
        expected = np.sqrt(n / (n - 1) * np.sum((z - z.mean()) ** 2))
        assert est.se == pytest.approx(expected)

    def test_clustered_se(self, small_frame):
        design = build_design(small_frame, mode='clustered_stratified')
        (est,) = estimate_mean(design, 'y')

        # PSU totals are equal within stratum A, so only stratum B contributes
        assert est.estimate == pytest.approx(29 / 8)
        assert est.se == pytest.approx(0.46875)
        assert est.design == 'clustered_stratified'

    def test_lonely_psu_warns(self, small_frame):
        frame = pd.concat([
            small_frame,
            pd.DataFrame({'y': [2.0], 'weight': [1.0], 'stratum': ['C'], 'psu': [1]}),
        ], ignore_index=True)
        design = build_design(frame, mode='clustered_stratified')
        with pytest.warns(SmallSampleWarning, match="single PSU"):
            (est,) = estimate_mean(design, 'y')
        assert np.isfinite(est.se)

    def test_normal_interval(self, small_frame):
        (est,) = estimate_mean(build_design(small_frame), 'y', ci_level=0.9)
        z = scipy.stats.norm.ppf(0.95)
        assert est.ci_lower == pytest.approx(est.estimate - z * est.se)
        assert est.ci_upper == pytest.approx(est.estimate + z * est.se)
        assert est.ci_level == 0.9

    def test_t_interval_uses_design_df(self, small_frame):
        design = build_design(small_frame, mode='clustered_stratified')
        (normal,) = estimate_mean(design, 'y')
        (t_based,) = estimate_mean(design, 'y', ci_method='t')

        # 4 PSUs - 2 strata = 2 degrees of freedom
        crit = scipy.stats.t.ppf(0.975, 2)
        assert t_based.se == normal.se
        assert t_based.ci_width == pytest.approx(2 * crit * t_based.se)
        assert t_based.ci_width > normal.ci_width

    def test_grouped_estimates_match_weighted_average(self, late_rounds):
        design = build_design(late_rounds)
        estimates = estimate_mean(design, 'trust_parliament', group_by=['cntry', 'essround'])

        assert len(estimates) == 6
        assert [e.group for e in estimates] == sorted(e.group for e in estimates)
        for est in estimates:
            cntry, rnd = est.group
            cell = late_rounds[(late_rounds['cntry'] == cntry) & (late_rounds['essround'] == rnd)]
            cell = cell.dropna(subset=['trust_parliament'])
            expected = np.average(cell['trust_parliament'], weights=cell['weight'])
            assert est.estimate == pytest.approx(expected)
            assert est.n == len(cell)

    def test_group_by_accepts_string(self, late_rounds):
        design = build_design(late_rounds)
        estimates = estimate_mean(design, 'trust_parliament', group_by='cntry')
        assert [e.group for e in estimates] == [('FR',), ('GB',), ('IE',)]

    @pytest.mark.parametrize('mode', ['unclustered', 'clustered_stratified'])
    def test_missing_rows_do_not_matter(self, late_rounds, mode):
        assert late_rounds['trust_parliament'].isna().any()
        complete = late_rounds.dropna(subset=['trust_parliament'])

        with_missing = estimate_mean(
            build_design(late_rounds, mode=mode), 'trust_parliament', ['cntry'], ci_method='t',
        )
        without = estimate_mean(
            build_design(complete, mode=mode), 'trust_parliament', ['cntry'], ci_method='t',
        )

        for a, b in zip(with_missing, without):
            assert a.group == b.group
            assert a.estimate == pytest.approx(b.estimate, abs=1e-12)
            assert a.se == pytest.approx(b.se, abs=1e-12)
            assert a.ci_lower == pytest.approx(b.ci_lower, abs=1e-12)
            assert a.n == b.n

    def test_designs_share_point_estimates(self, late_rounds):
        unclustered = estimate_mean(
            build_design(late_rounds), 'trust_europ', ['cntry', 'essround'],
        )
        clustered = estimate_mean(
            build_design(late_rounds, mode='clustered_stratified'),
            'trust_europ', ['cntry', 'essround'],
        )
        for a, b in zip(unclustered, clustered):
            assert a.group == b.group
            assert abs(a.estimate - b.estimate) < 1e-9
            assert a.design != b.design

    def test_unknown_variable(self, late_rounds):
        with pytest.raises(UnknownVariableError) as excinfo:
            estimate_mean(build_design(late_rounds), 'trust_martians')
        assert excinfo.value.variable == 'trust_martians'

    def test_unknown_group_key(self, late_rounds):
        with pytest.raises(SchemaError):
            estimate_mean(build_design(late_rounds), 'trust_un', group_by=['region'])

    def test_requested_empty_group(self, late_rounds):
        design = build_design(late_rounds)
        with pytest.raises(EmptyGroupError) as excinfo:
            estimate_mean(design, 'trust_un', group_by=['cntry'], groups=[('GB',), ('DE',)])
        assert excinfo.value.group == ('DE',)

    def test_all_missing_variable(self, late_rounds):
        frame = late_rounds.assign(trust_un=np.nan)
        with pytest.raises(EmptyGroupError):
            estimate_mean(build_design(frame), 'trust_un')

    def test_all_missing_group(self, late_rounds):
        frame = late_rounds.copy()
        frame.loc[frame['cntry'] == 'IE', 'trust_un'] = np.nan
        design = build_design(frame)

        lenient = estimate_mean(design, 'trust_un', group_by=['cntry'])
        assert [e.group for e in lenient] == [('FR',), ('GB',)]

        with pytest.raises(EmptyGroupError) as excinfo:
            estimate_mean(design, 'trust_un', group_by=['cntry'], strict=True)
        assert excinfo.value.group == ('IE',)

    def test_strict_with_complete_groups(self, late_rounds):
        design = build_design(late_rounds)
        strict = estimate_mean(
            design, 'trust_un', group_by=['cntry', 'essround'], strict=True,
        )
        assert len(strict) == 6

    def test_categorical_variable_rejected(self, late_rounds):
        frame = add_recoded_columns(late_rounds, ['trust_un'], THREE_LEVEL)
        with pytest.raises(InvalidParameterError, match="estimate_proportion"):
            estimate_mean(build_design(frame), 'trust_un_three_level')
        with pytest.raises(NonNumericVariableError) as excinfo:
            estimate_mean(build_design(frame), 'trust_un_three_level')
        assert excinfo.value.variable == 'trust_un_three_level'

    @pytest.mark.parametrize('kwargs', [
        {'ci_level': 1.0}, {'ci_level': 0}, {'ci_method': 'bootstrap'},
    ])
    def test_invalid_ci_arguments(self, small_frame, kwargs):
        with pytest.raises(InvalidParameterError):
            estimate_mean(build_design(small_frame), 'y', **kwargs)


class TestEstimateProportion:

    def test_proportions_sum_to_one(self, late_rounds):
        frame = add_recoded_columns(late_rounds, ['trust_parliament'], THREE_LEVEL)
        design = build_design(frame, mode='clustered_stratified')
        estimates = estimate_proportion(
            design, 'trust_parliament_three_level', group_by=['cntry', 'essround'],
        )

        assert len(estimates) == 6 * 3
        totals = {}
        for est in estimates:
            totals[est.group] = totals.get(est.group, 0.0) + est.estimate
        for total in totals.values():
            assert abs(total - 1.0) < 1e-6

    def test_category_order_and_zero_shares(self):
        frame = pd.DataFrame({
            'score': [1.0, 2.0, 8.0, 9.0],
            'weight': [1.0, 1.0, 1.0, 3.0],
            'cntry': ['GB', 'GB', 'IE', 'IE'],
        })
        frame = add_recoded_columns(frame, ['score'], THREE_LEVEL)
        estimates = estimate_proportion(build_design(frame), 'score_three_level', 'cntry')

        by_group = {}
        for est in estimates:
            by_group.setdefault(est.group, []).append((est.category, est.estimate))
        assert by_group[('GB',)] == [('Low', 1.0), ('Moderate', 0.0), ('High', 0.0)]
        assert by_group[('IE',)] == [('Low', 0.0), ('Moderate', 0.0), ('High', 1.0)]

    def test_weighted_share(self):
        frame = pd.DataFrame({
            'vote': ['yes', 'no', 'yes', None],
            'weight': [1.0, 3.0, 1.0, 10.0],
        })
        estimates = estimate_proportion(build_design(frame), 'vote')
        shares = {e.category: e.estimate for e in estimates}
        # the row missing 'vote' is excluded from the denominator
        assert shares == pytest.approx({'no': 0.6, 'yes': 0.4})


class TestGeometricMeanRatio:

    def test_identical_scores_give_exactly_one(self, late_rounds):
        frame = add_trust_targets(late_rounds, 'trust_parliament', 'trust_parliament', prefix='self')
        estimates = estimate_geometric_mean_ratio(build_design(frame), 'self_logratio', 'cntry')

        for est in estimates:
            assert est.estimate == 1.0
            assert est.transform == 'exp'

    def test_exponentiates_bounds(self, small_frame):
        design = build_design(small_frame)
        (log_scale,) = estimate_mean(design, 'y')
        (ratio,) = estimate_geometric_mean_ratio(design, 'y')

        assert ratio.estimate == pytest.approx(np.exp(log_scale.estimate))
        assert ratio.ci_lower == pytest.approx(np.exp(log_scale.ci_lower))
        assert ratio.ci_upper == pytest.approx(np.exp(log_scale.ci_upper))
        assert ratio.se == pytest.approx(np.exp(log_scale.estimate) * log_scale.se)


class TestBatchEstimation:

    def test_unknown_variable_is_recorded(self, late_rounds):
        design = build_design(late_rounds, mode='clustered_stratified')
        variables = ['trust_parliament', 'trust_europ', 'trust_un', 'trust_police', 'trust_martians']
        table, diagnostics = estimate_many(design, variables, group_by=['cntry', 'essround'])

        assert sorted(table['variable'].unique()) == sorted(variables[:4])
        assert len(table) == 4 * 6
        assert len(diagnostics) == 1
        assert diagnostics[0].variable == 'trust_martians'
        assert diagnostics[0].error_kind == 'UnknownVariableError'

    def test_categorical_variable_is_recorded(self, late_rounds):
        frame = add_recoded_columns(late_rounds, ['trust_un'], THREE_LEVEL)
        design = build_design(frame)
        table, diagnostics = estimate_many(
            design, ['trust_parliament', 'trust_un_three_level', 'trust_europ'], ['cntry'],
        )

        assert sorted(table['variable'].unique()) == ['trust_europ', 'trust_parliament']
        assert len(table) == 2 * 3
        assert len(diagnostics) == 1
        assert diagnostics[0].variable == 'trust_un_three_level'
        assert diagnostics[0].error_kind == 'NonNumericVariableError'

    def test_table_columns(self, late_rounds):
        result = estimate_many(build_design(late_rounds), ['trust_un'], group_by=['cntry'])
        assert list(result.table.columns) == ['cntry'] + TABLE_COLUMNS
        assert result.ok

    def test_empty_group_is_recorded(self, late_rounds):
        frame = late_rounds.copy()
        frame.loc[(frame['cntry'] == 'GB') & (frame['essround'] == 8), 'trust_un'] = np.nan
        design = build_design(frame)

        table, diagnostics = estimate_many(
            design, ['trust_un', 'trust_legal'], group_by=['cntry', 'essround'],
        )

        assert len(table) == 5 + 6
        assert len(diagnostics) == 1
        diag = diagnostics[0]
        assert diag.error_kind == 'EmptyGroupError'
        assert diag.variable == 'trust_un'
        assert diag.group == ('GB', 8)

    def test_set_of_variables_is_sorted(self, late_rounds):
        result = estimate_many(build_design(late_rounds), {'trust_un', 'trust_legal'})
        assert result.table['variable'].tolist() == ['trust_legal', 'trust_un']

    def test_proportions_batch(self, late_rounds):
        frame = add_recoded_columns(late_rounds, ['trust_un', 'trust_legal'], THREE_LEVEL)
        result = estimate_proportions_many(
            build_design(frame),
            ['trust_un_three_level', 'trust_legal_three_level', 'nope'],
            group_by=['cntry'],
        )
        assert len(result.table) == 2 * 3 * 3
        assert [d.variable for d in result.diagnostics] == ['nope']

    def test_group_error_is_fatal(self, late_rounds):
        with pytest.raises(SchemaError):
            estimate_many(build_design(late_rounds), ['trust_un'], group_by=['region'])


class TestEstimatesToFrame:

    def test_empty(self):
        frame = estimates_to_frame([], group_by=['cntry'])
        assert frame.empty
        assert list(frame.columns) == ['cntry'] + TABLE_COLUMNS

    def test_rows(self, small_frame):
        with warnings.catch_warnings():
            warnings.simplefilter('ignore')
            estimates = estimate_mean(build_design(small_frame), 'y', group_by=['stratum'])
        frame = estimates_to_frame(estimates)
        assert frame['stratum'].tolist() == ['A', 'B']
        assert frame['variable'].unique().tolist() == ['y']
        assert frame['category'].isna().all()
