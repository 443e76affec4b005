"""
Tests for the geographic cascade engine.
"""

import pytest
import pandas as pd
import numpy as np

from regional_cascade.cascade.engine import (
    CascadeEngine, cascade_to_fine, cascade_available, resolve_levels
)
from regional_cascade.config.settings import PipelineSettings, CascadeSettings, ForecastSettings
from regional_cascade.data.models import GeoLevel
from regional_cascade.exceptions import (
    MissingColumnError, HierarchyError, GeoLevelError, PreconditionError, ConfigurationError
)


def row(frame, entity_id, year):
    match = frame[(frame['entity_id'] == entity_id) & (frame['year'] == year)]
    assert len(match) == 1
    return match.iloc[0]


class TestCascadePriority:
    """Test that the finest available level wins."""

    def test_priority_example(self, mixed_level_data, mock_hierarchy):
        out = cascade_to_fine(mixed_level_data, ['value'], mock_hierarchy, impute=False)

        de11 = row(out, 'DE11', 2020)
        de12 = row(out, 'DE12', 2020)
        fr10 = row(out, 'FR10', 2020)
        assert (de11['value'], de11['src_value_level']) == (100, 2)
        assert (de12['value'], de12['src_value_level']) == (200, 1)
        assert (fr10['value'], fr10['src_value_level']) == (300, 0)

    def test_coarse_only_region(self, mixed_level_data, mock_hierarchy):
        # DE21 has no own row and no DE2 row, so the country value applies
        out = cascade_to_fine(mixed_level_data, ['value'], mock_hierarchy, impute=False)

        de21 = row(out, 'DE21', 2020)
        assert (de21['value'], de21['src_value_level']) == (300, 0)

    def test_missing_fine_value_does_not_shadow_parent(self, mock_hierarchy):
        data = pd.DataFrame({
            'entity_id': ['DE11', 'DE1'],
            'year': [2020, 2020],
            'value': [np.nan, 200.0],
        })

        out = cascade_to_fine(data, ['value'], mock_hierarchy, impute=False)

        de11 = row(out, 'DE11', 2020)
        assert (de11['value'], de11['src_value_level']) == (200, 1)

    def test_duplicates_keep_first_non_missing(self, mock_hierarchy):
        data = pd.DataFrame({
            'entity_id': ['DE11', 'DE11', 'DE11'],
            'year': [2020, 2020, 2020],
            'value': [np.nan, 5.0, 7.0],
        })

        out = cascade_to_fine(data, ['value'], mock_hierarchy, impute=False)

        assert row(out, 'DE11', 2020)['value'] == 5.0

    def test_resolve_levels_no_data(self):
        candidates = {level: np.array([np.nan]) for level in GeoLevel}

        values, source = resolve_levels(candidates)

        assert np.isnan(values[0])
        assert source[0] == -1


class TestSkeleton:

    def test_skeleton_completeness(self, mixed_level_data, mock_hierarchy):
        data = pd.concat([
            mixed_level_data,
            pd.DataFrame({'entity_id': ['DE11'], 'year': [2021], 'value': [110.0]}),
        ])

        out = cascade_to_fine(data, ['value'], mock_hierarchy, impute=False)

        assert len(out) == 10
        assert list(out.columns) == ['entity_id', 'year', 'value', 'src_value_level']
        # Only DE11 has data in 2021; every other region keeps a row with missing values
        others_2021 = out[(out['year'] == 2021) & (out['entity_id'] != 'DE11')]
        assert len(others_2021) == 4
        assert others_2021['value'].isna().all()
        assert others_2021['src_value_level'].isna().all()

    def test_sorted_by_entity_and_year(self, mixed_level_data, mock_hierarchy):
        out = cascade_to_fine(mixed_level_data, ['value'], mock_hierarchy,
                              years=[2021, 2020], impute=False)

        assert out['entity_id'].tolist() == sorted(out['entity_id'].tolist())
        assert out['year'].tolist()[:2] == [2020, 2021]

    def test_unknown_fine_entities_not_in_output(self, mock_hierarchy):
        data = pd.DataFrame({
            'entity_id': ['IT11', 'DE11'],
            'year': [2020, 2020],
            'value': [1.0, 2.0],
        })

        out = cascade_to_fine(data, ['value'], mock_hierarchy, impute=False)

        assert 'IT11' not in set(out['entity_id'])
        assert set(out['entity_id']) == {'DE11', 'DE12', 'DE21', 'FR10', 'FR20'}

    def test_full_fine_coverage_is_unchanged(self, mock_hierarchy):
        fine = ['DE11', 'DE12', 'DE21', 'FR10', 'FR20']
        data = pd.DataFrame({
            'entity_id': fine * 2,
            'year': [2020] * 5 + [2021] * 5,
            'value': np.arange(10, dtype=float),
        })

        panel = CascadeEngine().run(data, ['value'], mock_hierarchy)
        out = panel.to_frame()

        assert (out['src_value_level'] == 2).all()
        assert (out['imp_value_flag'] == 0).all()
        merged = out.merge(data, on=['entity_id', 'year'], suffixes=('', '_raw'))
        np.testing.assert_array_equal(merged['value'], merged['value_raw'])

    def test_ids_are_stripped(self, mock_hierarchy):
        data = pd.DataFrame({'entity_id': [' DE1 '], 'year': [2020], 'value': [5.0]})

        out = cascade_to_fine(data, ['value'], mock_hierarchy, impute=False)

        assert row(out, 'DE12', 2020)['src_value_level'] == 1


class TestPreconditions:

    def test_missing_variable_named(self, mixed_level_data, mock_hierarchy):
        with pytest.raises(MissingColumnError) as exc_info:
            cascade_to_fine(mixed_level_data, ['beds'], mock_hierarchy)

        assert 'beds' in str(exc_info.value)
        assert exc_info.value.missing_columns == ['beds']

    def test_malformed_hierarchy(self, mixed_level_data):
        bad = pd.DataFrame({'fine_id': ['DE11'], 'coarse_id': ['DE']})

        with pytest.raises(HierarchyError):
            cascade_to_fine(mixed_level_data, ['value'], bad)

    def test_unrecognised_level(self, mock_hierarchy):
        data = pd.DataFrame({'entity_id': ['DE111'], 'year': [2020], 'value': [1.0]})

        with pytest.raises(GeoLevelError):
            cascade_to_fine(data, ['value'], mock_hierarchy)

    def test_time_column_accepted(self, mock_hierarchy):
        data = pd.DataFrame({'entity_id': ['DE'], 'time': ['2020-01-01'], 'value': [1.0]})

        out = cascade_to_fine(data, ['value'], mock_hierarchy, impute=False)

        assert set(out['year']) == {2020}

    def test_invalid_settings_rejected(self):
        settings = PipelineSettings(cascade=CascadeSettings(max_workers=0))

        with pytest.raises(ConfigurationError):
            CascadeEngine(settings)


class TestCascadeImputation:

    @pytest.fixture
    def gappy_data(self):
        return pd.DataFrame({
            'entity_id': ['DE11'] * 4 + ['FR'] * 5,
            'year': [2018, 2020, 2021, 2022] + list(range(2018, 2023)),
            'value': [10.0, 30.0, 40.0, 50.0] + [1.0, 2.0, 3.0, 4.0, 5.0],
        })

    def test_flags_per_entity(self, gappy_data, mock_hierarchy):
        out = cascade_to_fine(gappy_data, ['value'], mock_hierarchy, years=range(2018, 2023))

        de11 = out[out['entity_id'] == 'DE11']
        assert de11['imp_value_flag'].tolist() == [0, 1, 0, 0, 0]
        assert 10 < de11['value'].iloc[1] < 30
        # DE11's gap year is filled, but its provenance stays missing
        assert pd.isna(de11['src_value_level'].iloc[1])

    def test_all_missing_series_untouched(self, gappy_data, mock_hierarchy):
        out = cascade_to_fine(gappy_data, ['value'], mock_hierarchy)

        de12 = out[out['entity_id'] == 'DE12']
        assert de12['value'].isna().all()
        assert de12['imp_value_flag'].isna().all()

    def test_complete_series_flag_zero(self, gappy_data, mock_hierarchy):
        out = cascade_to_fine(gappy_data, ['value'], mock_hierarchy)

        fr10 = out[out['entity_id'] == 'FR10']
        assert (fr10['imp_value_flag'] == 0).all()
        assert fr10['value'].tolist() == [1.0, 2.0, 3.0, 4.0, 5.0]

    def test_no_flag_column_without_imputation(self, gappy_data, mock_hierarchy):
        out = cascade_to_fine(gappy_data, ['value'], mock_hierarchy, impute=False)

        assert 'imp_value_flag' not in out.columns

    def test_empty_input_gives_empty_panel(self, mock_hierarchy):
        empty = pd.DataFrame({'entity_id': pd.Series(dtype=object),
                              'year': pd.Series(dtype=np.int64),
                              'value': pd.Series(dtype=np.float64)})

        out = cascade_to_fine(empty, ['value'], mock_hierarchy)

        assert len(out) == 0
        assert list(out.columns) == ['entity_id', 'year', 'value', 'src_value_level', 'imp_value_flag']

    def test_empty_year_axis_with_forecast(self, gappy_data, mock_hierarchy):
        out = cascade_to_fine(gappy_data, ['value'], mock_hierarchy, years=[], forecast_to=2025)

        assert len(out) == 0

    def test_forecast_extends_every_entity(self, gappy_data, mock_hierarchy):
        settings = PipelineSettings()
        settings.forecast.method = "holt_linear"

        out = cascade_to_fine(gappy_data, ['value'], mock_hierarchy, forecast_to=2024, settings=settings)

        assert len(out) == 5 * 7
        fr20 = out[out['entity_id'] == 'FR20']
        assert fr20['year'].tolist() == list(range(2018, 2025))
        assert fr20['imp_value_flag'].tolist() == [0, 0, 0, 0, 0, 2, 2]
        assert np.all(np.isfinite(fr20['value']))
        assert fr20['src_value_level'].iloc[5:].isna().all()

        de12 = out[out['entity_id'] == 'DE12']
        assert de12['value'].isna().all()

    def test_entities_imputed_independently(self, gappy_data, mock_hierarchy):
        # Changing FR data must not affect DE11's interpolated value
        base = cascade_to_fine(gappy_data, ['value'], mock_hierarchy)
        changed = gappy_data.copy()
        changed.loc[changed['entity_id'] == 'FR', 'value'] *= 100
        other = cascade_to_fine(changed, ['value'], mock_hierarchy)

        assert row(base, 'DE11', 2019)['value'] == row(other, 'DE11', 2019)['value']

    def test_thread_pool_matches_sequential(self, gappy_data, mock_hierarchy):
        sequential = cascade_to_fine(gappy_data, ['value'], mock_hierarchy, forecast_to=2023,
                                     settings=PipelineSettings(forecast=ForecastSettings(method="holt_linear")))
        parallel = cascade_to_fine(gappy_data, ['value'], mock_hierarchy, forecast_to=2023,
                                   settings=PipelineSettings(forecast=ForecastSettings(method="holt_linear"),
                                                             cascade=CascadeSettings(max_workers=4)))

        pd.testing.assert_frame_equal(sequential, parallel)


class TestCascadedPanel:

    def test_panel_record(self, mixed_level_data, mock_hierarchy):
        panel = CascadeEngine().run(mixed_level_data, ['value'], mock_hierarchy, impute=False)

        assert len(panel) == 5
        assert panel.variable_names == ['value']
        result = panel.variable('value')
        assert result.src_column == 'src_value_level'
        assert result.imputation_flag is None

        with pytest.raises(KeyError):
            panel.variable('beds')

    def test_summary(self, mixed_level_data, mock_hierarchy):
        panel = CascadeEngine().run(mixed_level_data, ['value'], mock_hierarchy, impute=False)

        summary = panel.summary()['value']
        assert summary['cells'] == 5
        assert summary['source_level'] == {'coarse': 3, 'intermediate': 1, 'fine': 1}

    def test_frame_with_hierarchy(self, mixed_level_data, mock_hierarchy):
        panel = CascadeEngine().run(mixed_level_data, ['value'], mock_hierarchy, impute=False)

        frame = panel.to_frame(include_hierarchy=True)
        assert list(frame.columns[:4]) == ['entity_id', 'year', 'intermediate_id', 'coarse_id']


class TestCascadeAvailable:

    def test_only_reachable_keys(self, mock_hierarchy):
        data = pd.DataFrame({
            'entity_id': ['DE1', 'DE11'],
            'year': [2020, 2021],
            'value': [200.0, 100.0],
        })

        out = cascade_available(data, ['value'], mock_hierarchy)

        # DE1 reaches DE11 and DE12 in 2020; DE11 has its own 2021 row; France is absent
        keys = set(zip(out['entity_id'], out['year']))
        assert keys == {('DE11', 2020), ('DE12', 2020), ('DE11', 2021)}
        assert row(out, 'DE11', 2021)['src_value_level'] == 2
        assert row(out, 'DE12', 2020)['src_value_level'] == 1

    def test_aggregates_duplicates(self, mock_hierarchy):
        data = pd.DataFrame({
            'entity_id': ['DE', 'DE'],
            'year': [2020, 2020],
            'value': [10.0, 30.0],
        })

        first = cascade_available(data, ['value'], mock_hierarchy)
        mean = cascade_available(data, ['value'], mock_hierarchy, agg="mean")
        custom = cascade_available(data, ['value'], mock_hierarchy, agg=lambda s: s.sum())

        assert (first['value'] == 10.0).all()
        assert (mean['value'] == 20.0).all()
        assert (custom['value'] == 40.0).all()
        assert len(first) == 3

    def test_years_filter(self, mixed_level_data, mock_hierarchy):
        out = cascade_available(mixed_level_data, ['value'], mock_hierarchy, years=[2021])

        assert out.empty

    def test_unknown_aggregator(self, mixed_level_data, mock_hierarchy):
        with pytest.raises(PreconditionError):
            cascade_available(mixed_level_data, ['value'], mock_hierarchy, agg="median")

    def test_multiple_variables_outer_joined(self, mock_hierarchy):
        data = pd.DataFrame({
            'entity_id': ['FR10', 'FR20'],
            'year': [2020, 2020],
            'a': [1.0, np.nan],
            'b': [np.nan, 2.0],
        })

        out = cascade_available(data, ['a', 'b'], mock_hierarchy)

        assert len(out) == 2
        assert row(out, 'FR10', 2020)['src_a_level'] == 2
        assert pd.isna(row(out, 'FR10', 2020)['b'])
