"""
Configuration settings classes for regional cascade and imputation.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, List, Any, Optional
import json
from pathlib import Path

from ..exceptions import ConfigurationError
from ..logging_config import LoggingConfig, setup_logging


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
INTERPOLATION_METHODS = ("pchip", "linear")
FORECAST_METHODS = ("auto", "ets", "holt_linear")


@dataclass
class InterpolationSettings:
    """Configuration for interior gap filling."""

    method: str = "pchip"  # pchip, linear


@dataclass
class ForecastSettings:
    """Configuration for forward forecasting of imputed series."""

    # Strategy preference: "auto" tries ETS then Holt, "holt_linear" skips ETS
    method: str = "auto"

    # Holt's linear trend fallback
    holt_alpha: float = 0.3
    holt_beta: float = 0.1
    holt_init_points: int = 3

    # Prediction interval (80% two-sided)
    confidence_level: float = 0.80
    confidence_z: float = 1.282

    # ETS model search
    allow_multiplicative_trend: bool = True
    ets_min_observations: int = 4


@dataclass
class CascadeSettings:
    """Configuration for the geographic cascade engine."""

    impute: bool = True
    forecast_to: Optional[int] = None
    max_workers: int = 1


@dataclass
class IndicatorSettings:
    """Variable names and gates for derived ratio indicators."""

    inpatient_discharges: str = "disch_inp"
    day_case_discharges: str = "disch_day"
    beds: str = "beds"
    length_of_stay: str = "los"
    physicians: str = "physicians"
    min_eligibility_level: int = 1

    @property
    def variables(self) -> List[str]:
        return [
            self.inpatient_discharges,
            self.day_case_discharges,
            self.beds,
            self.physicians,
            self.length_of_stay,
        ]


@dataclass
class PipelineSettings:
    """Master configuration combining all settings."""

    interpolation: InterpolationSettings = field(default_factory=InterpolationSettings)
    forecast: ForecastSettings = field(default_factory=ForecastSettings)
    cascade: CascadeSettings = field(default_factory=CascadeSettings)
    indicators: IndicatorSettings = field(default_factory=IndicatorSettings)

    # General options
    log_level: str = "INFO"
    log_dir: Optional[str] = None
    enable_json_logging: bool = False

    @classmethod
    def from_file(cls, config_path: str) -> 'PipelineSettings':
        """
        Load configuration from JSON file.

        Args:
            config_path: Path to configuration JSON file

        Returns:
            PipelineSettings instance
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_file, 'r') as f:
            config_dict = json.load(f)

        return cls.from_dict(config_dict)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'PipelineSettings':
        """
        Create PipelineSettings from dictionary.

        Unknown keys are reported as a ConfigurationError rather than
        silently dropped.
        """
        sections = {
            'interpolation': InterpolationSettings,
            'forecast': ForecastSettings,
            'cascade': CascadeSettings,
            'indicators': IndicatorSettings,
        }
        try:
            parsed = {name: section_cls(**config_dict.get(name, {}))
                      for name, section_cls in sections.items()}

            general_settings = {k: v for k, v in config_dict.items() if k not in sections}
            settings = cls(**parsed, **general_settings)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        return settings

    def configure_logging(self, enable_console: bool = True) -> LoggingConfig:
        """
        Install root logging from the general options.

        A file log is written only when ``log_dir`` is set.
        """
        return setup_logging(
            log_level=self.log_level,
            log_dir=self.log_dir,
            enable_console=enable_console,
            enable_file=self.log_dir is not None,
            enable_json=self.enable_json_logging,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def save_to_file(self, config_path: str):
        """
        Save configuration to JSON file.

        Args:
            config_path: Path where to save configuration
        """
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def validate(self) -> List[str]:
        """
        Validate configuration settings.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if self.log_level.upper() not in LOG_LEVELS:
            errors.append(f"Log level must be one of {LOG_LEVELS}")

        if self.interpolation.method not in INTERPOLATION_METHODS:
            errors.append(f"Interpolation method must be one of {INTERPOLATION_METHODS}")

        fc = self.forecast
        if fc.method not in FORECAST_METHODS:
            errors.append(f"Forecast method must be one of {FORECAST_METHODS}")
        if not 0 < fc.holt_alpha <= 1:
            errors.append("Holt alpha must be in (0, 1]")
        if not 0 < fc.holt_beta <= 1:
            errors.append("Holt beta must be in (0, 1]")
        if fc.holt_init_points < 1:
            errors.append("Holt initialisation needs at least one point")
        if not 0 < fc.confidence_level < 1:
            errors.append("Confidence level must be between 0 and 1")
        if fc.confidence_z <= 0:
            errors.append("Confidence z-score must be positive")
        if fc.ets_min_observations < 2:
            errors.append("ETS needs at least two observations")

        if self.cascade.max_workers < 1:
            errors.append("Max workers must be positive")

        if self.indicators.min_eligibility_level not in (0, 1, 2):
            errors.append("Minimum eligibility level must be 0, 1 or 2")

        return errors

    def ensure_valid(self) -> 'PipelineSettings':
        """Raise ConfigurationError listing every problem, or return self."""
        errors = self.validate()
        if errors:
            raise ConfigurationError(
                "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors),
                validation_errors=errors
            )
        return self
