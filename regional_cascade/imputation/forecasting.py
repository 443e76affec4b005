"""
Forward forecasting of cleaned yearly series.

Forecasts are produced by an ordered chain of strategies. Each strategy
declares which series it accepts and either returns a ``ForecastResult``
or raises ``ForecastError``; the forecaster takes the first success:

1. ``constant``    - series with fewer than two clean values
2. ``ets``         - exponential smoothing state-space model chosen by AICc
3. ``holt_linear`` - Holt's linear trend with fixed smoothing weights

For valid input the forecaster never raises.
"""

import itertools
import warnings
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from statsmodels.tools.sm_exceptions import ConvergenceWarning
from statsmodels.tsa.exponential_smoothing.ets import ETSModel

from ..config.settings import ForecastSettings
from ..data.models import ForecastResult
from ..exceptions import ForecastError, PreconditionError
from ..logging_config import get_logger, ErrorLogger
from .interpolation import interpolate_pchip

logger = get_logger(__name__)

# Process-wide: ETS fits may run in worker threads, where catch_warnings is unsafe
warnings.filterwarnings("ignore", category=ConvergenceWarning)
warnings.filterwarnings("ignore", category=RuntimeWarning, module=r"statsmodels|scipy\.optimize")


class ForecastStrategy:
    """Base class for one link of the forecasting chain."""

    name = "base"

    def __init__(self, settings: Optional[ForecastSettings] = None):
        self.settings = settings or ForecastSettings()

    def accepts(self, y: np.ndarray) -> bool:
        """Whether this strategy should be tried for ``y``."""
        raise NotImplementedError

    def forecast(self, y: np.ndarray, h: int) -> ForecastResult:
        """
        Forecast ``h`` periods ahead.

        Raises:
            ForecastError: If the strategy cannot produce a forecast
        """
        raise NotImplementedError


class ConstantForecast(ForecastStrategy):
    """Repeat the last clean value; the only option below two observations."""

    name = "constant"

    def accepts(self, y: np.ndarray) -> bool:
        return y.size < 2

    def forecast(self, y: np.ndarray, h: int) -> ForecastResult:
        last = y[-1] if y.size else np.nan
        values = np.full(h, last, dtype=np.float64)
        return ForecastResult(values, values.copy(), values.copy(), self.name)


class ETSForecast(ForecastStrategy):
    """
    Exponential smoothing with automatic model selection.

    Candidate models cover additive/multiplicative errors and no, additive
    or multiplicative trend with and without damping; seasonality is never
    used. Multiplicative components are only tried on strictly positive
    series, and additive errors are not combined with a multiplicative trend
    (unstable forecast variance). The candidate with the lowest AICc wins.
    """

    name = "ets"

    def accepts(self, y: np.ndarray) -> bool:
        return y.size >= self.settings.ets_min_observations

    def candidate_specs(self, y: np.ndarray) -> List[Tuple[str, Optional[str], bool]]:
        positive = bool(np.all(y > 0))
        errors = ["add", "mul"] if positive else ["add"]
        trends: List[Optional[str]] = [None, "add"]
        if positive and self.settings.allow_multiplicative_trend:
            trends.append("mul")

        specs = []
        for error, trend, damped in itertools.product(errors, trends, (False, True)):
            if trend is None and damped:
                continue
            if error == "add" and trend == "mul":
                continue
            if y.size <= self._n_params(trend, damped) + 1:
                continue
            specs.append((error, trend, damped))
        return specs

    @staticmethod
    def _n_params(trend: Optional[str], damped: bool) -> int:
        # smoothing weights + initial states + residual variance
        n = 3
        if trend is not None:
            n += 2
        if damped:
            n += 1
        return n

    def _select_model(self, y: np.ndarray):
        # predictions need an index on the endog
        series = pd.Series(y, dtype=np.float64)
        best = None
        for error, trend, damped in self.candidate_specs(y):
            label = f"ETS({error[0].upper()},{'N' if trend is None else trend[0].upper()}{'d' if damped else ''},N)"
            try:
                fit = ETSModel(
                    series,
                    error=error,
                    trend=trend,
                    damped_trend=damped,
                    seasonal=None,
                ).fit(disp=False)
            except Exception as e:
                logger.debug(f"{label} failed to fit: {e}")
                continue

            aicc = fit.aicc
            if not np.isfinite(aicc):
                logger.debug(f"{label} has non-finite AICc")
                continue
            if best is None or aicc < best[0]:
                best = (aicc, label, fit)
        return best

    def forecast(self, y: np.ndarray, h: int) -> ForecastResult:
        best = self._select_model(y)
        if best is None:
            raise ForecastError(
                "No exponential smoothing configuration could be fitted",
                strategy=self.name,
                fit_details={'observations': int(y.size)}
            )

        aicc, label, fit = best
        try:
            prediction = fit.get_prediction(start=y.size, end=y.size + h - 1, random_state=0)
            frame = prediction.summary_frame(alpha=1 - self.settings.confidence_level)
        except Exception as e:
            raise ForecastError(
                f"{label} failed to forecast: {e}", strategy=self.name
            ) from e

        mean = frame['mean'].to_numpy(dtype=np.float64)
        if mean.size != h or not np.all(np.isfinite(mean)):
            raise ForecastError(f"{label} produced non-finite forecasts", strategy=self.name)

        logger.debug(f"Selected {label} with AICc {aicc:.3f}")
        return ForecastResult(
            forecast=mean,
            lower=frame['pi_lower'].to_numpy(dtype=np.float64),
            upper=frame['pi_upper'].to_numpy(dtype=np.float64),
            method=self.name,
        )


class HoltLinearForecast(ForecastStrategy):
    """
    Holt's linear trend with fixed smoothing weights.

    Level starts at the mean of the first few observations and trend at the
    average slope from first to last observation. Bounds are
    ``z * sd(one-step residuals) * sqrt(step)``: a growing-uncertainty
    heuristic, not the model's analytic forecast variance.
    """

    name = "holt_linear"

    def accepts(self, y: np.ndarray) -> bool:
        return y.size >= 2

    def smooth(self, y: np.ndarray) -> Tuple[float, float, np.ndarray]:
        """Run the recursion; returns final level, final trend and one-step fitted values."""
        alpha, beta = self.settings.holt_alpha, self.settings.holt_beta
        n = y.size

        level = float(np.mean(y[:min(self.settings.holt_init_points, n)]))
        trend = float((y[-1] - y[0]) / (n - 1))

        fitted = np.empty(n, dtype=np.float64)
        for i, obs in enumerate(y):
            fitted[i] = level + trend
            new_level = alpha * obs + (1 - alpha) * (level + trend)
            trend = beta * (new_level - level) + (1 - beta) * trend
            level = new_level

        return level, trend, fitted

    def forecast(self, y: np.ndarray, h: int) -> ForecastResult:
        level, trend, fitted = self.smooth(y)

        steps = np.arange(1, h + 1, dtype=np.float64)
        point = level + trend * steps

        residuals = y - fitted
        se = float(np.std(residuals, ddof=1)) if residuals.size > 1 else 0.0
        margin = self.settings.confidence_z * se * np.sqrt(steps)

        if not np.all(np.isfinite(point)):
            raise ForecastError("Holt recursion produced non-finite forecasts", strategy=self.name)

        return ForecastResult(point, point - margin, point + margin, self.name)


def build_strategy_chain(method: str = "auto",
                         settings: Optional[ForecastSettings] = None) -> List[ForecastStrategy]:
    """
    Ordered strategies for a method preference.

    ``auto`` and ``ets`` try ETS before Holt; ``holt_linear`` skips ETS.
    """
    settings = settings or ForecastSettings()
    if method in ("auto", "ets"):
        return [ConstantForecast(settings), ETSForecast(settings), HoltLinearForecast(settings)]
    if method == "holt_linear":
        return [ConstantForecast(settings), HoltLinearForecast(settings)]
    raise PreconditionError(
        f"Unknown forecast method '{method}'",
        context={'method': method}
    )


class AutoregressiveForecaster:
    """
    Runs the strategy chain over a series and returns the first success.
    """

    def __init__(self,
                 settings: Optional[ForecastSettings] = None,
                 strategies: Optional[Sequence[ForecastStrategy]] = None):
        self.settings = settings or ForecastSettings()
        self.strategies = list(strategies) if strategies is not None else \
            build_strategy_chain(self.settings.method, self.settings)
        self.error_logger = ErrorLogger(logger)

    @property
    def strategy_names(self) -> List[str]:
        return [strategy.name for strategy in self.strategies]

    @staticmethod
    def clean(y: Sequence) -> np.ndarray:
        """Close gaps by interpolation and drop anything still missing."""
        values = interpolate_pchip(y).values
        return values[~np.isnan(values)]

    def forecast(self, y: Sequence, h: int) -> ForecastResult:
        """
        Forecast ``h`` periods beyond the end of ``y``.

        Args:
            y: Series values, gaps allowed
            h: Horizon, at least 1

        Returns:
            ForecastResult from the first strategy that succeeded
        """
        if h < 1:
            raise PreconditionError(f"Forecast horizon must be at least 1, got {h}", context={'h': h})

        clean = self.clean(y)
        candidates = [s for s in self.strategies if s.accepts(clean)]

        last_error: Optional[ForecastError] = None
        for position, strategy in enumerate(candidates, start=1):
            if last_error is not None:
                self.error_logger.log_recovery_attempt(
                    last_error, position, len(candidates), strategy.name
                )
            try:
                result = strategy.forecast(clean, h)
            except ForecastError as e:
                last_error = e
                continue

            if last_error is not None:
                self.error_logger.log_recovery_success(last_error, position, strategy.name)
            return result

        fallback = ConstantForecast(self.settings)
        if last_error is not None:
            self.error_logger.log_recovery_failure(
                last_error, len(candidates), [s.name for s in candidates],
                fallback=fallback.name
            )
        return fallback.forecast(clean, h)


def forecast_autoregressive(y: Sequence, h: int = 3, method: str = "auto",
                            settings: Optional[ForecastSettings] = None) -> ForecastResult:
    """
    Forecast a series ``h`` periods ahead with automatic fallback.

    Args:
        y: Series values (gaps are interpolated first)
        h: Number of periods to forecast
        method: ``auto``/``ets`` for ETS with Holt fallback, ``holt_linear`` for Holt only
        settings: Forecast settings (smoothing weights, interval level)

    Returns:
        ForecastResult with ``forecast``, ``lower``, ``upper`` and ``method``
    """
    settings = settings or ForecastSettings()
    strategies = build_strategy_chain(method, settings)
    return AutoregressiveForecaster(settings, strategies).forecast(y, h)
