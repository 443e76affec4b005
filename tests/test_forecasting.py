"""
Tests for the forecasting strategy chain.
"""

import logging

import pytest
import numpy as np
from scipy.stats import norm

from regional_cascade.config.settings import ForecastSettings
from regional_cascade.exceptions import ForecastError, PreconditionError
from regional_cascade.imputation.forecasting import (
    AutoregressiveForecaster, ConstantForecast, ETSForecast, ForecastStrategy,
    HoltLinearForecast, build_strategy_chain, forecast_autoregressive
)


class FailingStrategy(ForecastStrategy):
    """Strategy that always fails, standing in for a model that cannot be fitted."""

    name = "failing"

    def accepts(self, y):
        return True

    def forecast(self, y, h):
        raise ForecastError("fit diverged", strategy=self.name)


class TestDegenerateForecasts:

    def test_single_element_is_constant(self):
        result = forecast_autoregressive([42.0], h=3)

        assert result.method == "constant"
        np.testing.assert_array_equal(result.forecast, [42.0, 42.0, 42.0])
        np.testing.assert_array_equal(result.lower, result.forecast)
        np.testing.assert_array_equal(result.upper, result.forecast)

    def test_all_missing_gives_nan_sentinel(self):
        result = forecast_autoregressive([np.nan, np.nan], h=2)

        assert result.method == "constant"
        assert result.horizon == 2
        assert np.isnan(result.forecast).all()

    def test_gaps_closed_before_counting(self):
        # One observation plus gaps interpolates to a constant series
        result = forecast_autoregressive([None, 5.0, None], h=1, method="holt_linear")

        assert result.method == "holt_linear"
        assert result.forecast[0] == pytest.approx(5.0)

    def test_horizon_must_be_positive(self):
        with pytest.raises(PreconditionError):
            forecast_autoregressive([1.0, 2.0, 3.0], h=0)


class TestHoltLinear:

    def test_linear_series_extrapolates_trend(self):
        result = forecast_autoregressive([10, 20, 30, 40, 50], h=2, method="holt_linear")

        assert result.method == "holt_linear"
        assert result.forecast[0] > 50
        assert result.forecast[1] > result.forecast[0]

    def test_recursion_matches_hand_computation(self):
        strategy = HoltLinearForecast(ForecastSettings())
        y = np.array([1.0, 3.0])

        level, trend, fitted = strategy.smooth(y)

        # level0 = mean(1, 3) = 2, trend0 = 2
        # step 1: fitted 4, level 0.3*1 + 0.7*4 = 3.1, trend 0.1*1.1 + 0.9*2 = 1.91
        # step 2: fitted 5.01, level 0.3*3 + 0.7*5.01 = 4.407
        np.testing.assert_allclose(fitted, [4.0, 5.01])
        assert level == pytest.approx(4.407)
        assert trend == pytest.approx(0.1 * (4.407 - 3.1) + 0.9 * 1.91)

    def test_bounds_widen_with_horizon(self):
        result = forecast_autoregressive([5.0, 7.0, 6.0, 9.0, 8.0], h=4, method="holt_linear")

        width = result.upper - result.lower
        assert np.all(width > 0)
        assert np.all(np.diff(width) > 0)
        np.testing.assert_allclose(width[3] / width[0], 2.0)

    def test_constant_series_has_collapsed_bounds(self):
        result = forecast_autoregressive([3.0, 3.0, 3.0], h=2, method="holt_linear")

        np.testing.assert_allclose(result.forecast, [3.0, 3.0])
        np.testing.assert_allclose(result.lower, result.upper)


class TestETS:

    def test_candidates_respect_positivity(self):
        strategy = ETSForecast(ForecastSettings())
        y = np.array([-1.0, 2.0, 3.0, 5.0, 4.0, 6.0, 7.0, 8.0, 9.0, 10.0])

        specs = strategy.candidate_specs(y)

        assert specs
        assert all(error == "add" for error, _, _ in specs)
        assert all(trend != "mul" for _, trend, _ in specs)

    def test_short_series_limits_candidates(self):
        strategy = ETSForecast(ForecastSettings())

        specs = strategy.candidate_specs(np.array([1.0, 2.0, 3.0, 4.0, 5.0]))

        # Five points only support the trendless models
        assert specs
        assert all(trend is None for _, trend, _ in specs)

    def test_not_attempted_below_minimum(self):
        strategy = ETSForecast(ForecastSettings(ets_min_observations=4))
        assert not strategy.accepts(np.array([1.0, 2.0, 3.0]))
        assert strategy.accepts(np.array([1.0, 2.0, 3.0, 4.0]))

    @pytest.mark.slow
    def test_auto_forecast_is_finite(self):
        y = 100 + 5 * np.arange(15) + np.random.normal(0, 1, 15)

        result = forecast_autoregressive(y, h=3, method="auto")

        assert result.method == "ets"
        assert result.horizon == 3
        assert np.all(np.isfinite(result.forecast))
        assert np.all(result.lower <= result.forecast)
        assert np.all(result.upper >= result.forecast)

    def test_growth_series_uses_ets(self):
        y = [1.0, 1.5, 2.3, 3.4, 5.1, 7.6, 11.4, 17.1, 25.6, 38.4]

        result = forecast_autoregressive(y, h=3)

        assert result.method == "ets"
        assert result.horizon == 3
        assert np.all(np.isfinite(result.forecast))
        assert np.all(result.lower <= result.forecast)
        assert np.all(result.forecast <= result.upper)

    def test_strategy_forecasts_directly(self):
        y = np.array([1.0, 1.5, 2.3, 3.4, 5.1, 7.6, 11.4, 17.1, 25.6, 38.4])

        result = ETSForecast(ForecastSettings()).forecast(y, 3)

        assert result.method == "ets"
        assert result.forecast.shape == (3,)
        assert result.forecast[0] > 25.6

    def test_interval_level_follows_settings(self):
        # Negative values restrict the search to additive models with analytic intervals
        y = np.array([-3.0, -1.2, 0.8, 3.1, 4.9, 7.2, 8.8, 11.1, 13.0, 15.2])

        at_80 = ETSForecast(ForecastSettings()).forecast(y, 3)
        at_95 = ETSForecast(ForecastSettings(confidence_level=0.95)).forecast(y, 3)

        np.testing.assert_allclose(at_80.forecast, at_95.forecast)
        assert np.all(at_80.lower <= at_80.forecast)
        assert np.all(at_80.forecast <= at_80.upper)

        ratio = (at_95.upper - at_95.lower) / (at_80.upper - at_80.lower)
        np.testing.assert_allclose(ratio, norm.ppf(0.975) / norm.ppf(0.9), rtol=1e-6)


class TestStrategyChain:

    def test_chain_order(self):
        assert [s.name for s in build_strategy_chain("auto")] == ["constant", "ets", "holt_linear"]
        assert [s.name for s in build_strategy_chain("holt_linear")] == ["constant", "holt_linear"]

    def test_unknown_method(self):
        with pytest.raises(PreconditionError):
            build_strategy_chain("arima")

    def test_falls_back_after_failure(self, caplog):
        settings = ForecastSettings()
        forecaster = AutoregressiveForecaster(
            settings, [ConstantForecast(settings), FailingStrategy(settings), HoltLinearForecast(settings)]
        )

        with caplog.at_level(logging.INFO, logger="regional_cascade.imputation.forecasting"):
            result = forecaster.forecast([1.0, 2.0, 3.0, 4.0], h=2)

        assert result.method == "holt_linear"
        assert "Fallback 2/2 after ForecastError: holt_linear" in caplog.text
        assert "Recovered from ForecastError" in caplog.text

    def test_last_resort_is_constant(self):
        settings = ForecastSettings()
        forecaster = AutoregressiveForecaster(settings, [FailingStrategy(settings)])

        result = forecaster.forecast([1.0, 2.0, 4.0], h=2)

        assert result.method == "constant"
        np.testing.assert_array_equal(result.forecast, [4.0, 4.0])

    def test_strategy_names(self):
        forecaster = AutoregressiveForecaster(ForecastSettings(method="holt_linear"))
        assert forecaster.strategy_names == ["constant", "holt_linear"]
