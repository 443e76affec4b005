"""
Logging setup for the regional cascade package.

Library modules only ask for named loggers; handlers are attached to the
root logger by ``setup_logging`` alone. Structured fields travel on each
record as ``extra_fields`` and are written out by ``JSONFormatter``.
"""

import json
import logging
import logging.handlers
import sys
import time
import traceback
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .exceptions import RegionalCascadeError

CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
LOG_FILE_NAME = "regional_cascade.log"

# Sub-packages whose loggers follow the configured level
COMPONENTS = ('cascade', 'imputation', 'indicators', 'data', 'performance')


def _fields(**fields) -> Dict[str, Any]:
    return {'extra_fields': fields}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with ``extra_fields`` merged at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'location': f"{record.module}.{record.funcName}:{record.lineno}",
        }

        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            entry['exception'] = {
                'type': exc_type.__name__,
                'message': str(exc_value),
                'traceback': traceback.format_exception(exc_type, exc_value, exc_tb),
            }

        entry.update(getattr(record, 'extra_fields', {}))
        return json.dumps(entry, default=str)


class ContextFilter(logging.Filter):
    """Stamps fixed fields, such as a run id, onto every record of one logger."""

    def __init__(self, context: Dict[str, Any]):
        super().__init__()
        self.context = dict(context)

    def filter(self, record: logging.LogRecord) -> bool:
        record.extra_fields = {**self.context, **getattr(record, 'extra_fields', {})}
        return True


class PerformanceLogger:
    """Times pipeline stages and reports per-variable progress."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    @contextmanager
    def timer(self, stage: str, **context):
        """
        Time a pipeline stage.

        Completion is logged at INFO with the elapsed seconds. An exception
        raised inside the block is logged at ERROR and re-raised.

        Args:
            stage: Stage name, e.g. ``cascade`` or ``imputation``
            **context: Fields added to the start, completion and error records
        """
        started = time.perf_counter()
        self.logger.debug(f"Starting {stage}", extra=_fields(stage=stage, event='start', **context))
        try:
            yield
        except Exception as e:
            elapsed = time.perf_counter() - started
            self.logger.error(f"{stage} failed after {elapsed:.3f}s: {e}",
                              extra=_fields(stage=stage, event='error', seconds=elapsed,
                                            error=str(e), **context))
            raise
        elapsed = time.perf_counter() - started
        self.logger.info(f"{stage} finished in {elapsed:.3f}s",
                         extra=_fields(stage=stage, event='complete', seconds=elapsed, **context))

    def log_progress(self, stage: str, done: int, total: int, **context):
        share = 100.0 * done / total if total else 0.0
        self.logger.debug(f"{stage}: {done}/{total} ({share:.0f}%)",
                          extra=_fields(stage=stage, event='progress', done=done, total=total, **context))


class LoggingConfig:
    """
    Root handlers for an application run.

    Creating an instance replaces whatever handlers the root logger had,
    so calling ``setup_logging`` twice does not duplicate output.
    """

    def __init__(self,
                 log_level: str = "INFO",
                 log_dir: Optional[Union[str, Path]] = None,
                 enable_console: bool = True,
                 enable_file: bool = False,
                 enable_json: bool = False,
                 max_file_size: int = 10 * 1024 * 1024,
                 backup_count: int = 5):
        """
        Build and install the handlers.

        Args:
            log_level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for the rotating log file (defaults to logs/)
            enable_console: Log to stdout
            enable_file: Log to ``<log_dir>/regional_cascade.log``
            enable_json: Write JSON records instead of plain text
            max_file_size: Bytes before the log file is rotated
            backup_count: Rotated files to keep
        """
        self.log_level = getattr(logging, log_level.upper())
        self.log_dir = Path(log_dir) if log_dir else Path("logs")
        self.enable_json = enable_json
        self.handlers: List[logging.Handler] = []

        if enable_console:
            self.handlers.append(self._prepare(logging.StreamHandler(sys.stdout), CONSOLE_FORMAT))
        if enable_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            rotating = logging.handlers.RotatingFileHandler(
                self.log_dir / LOG_FILE_NAME, maxBytes=max_file_size, backupCount=backup_count
            )
            self.handlers.append(self._prepare(rotating, FILE_FORMAT))

        self._install()

    def _prepare(self, handler: logging.Handler, fmt: str) -> logging.Handler:
        handler.setLevel(self.log_level)
        handler.setFormatter(JSONFormatter() if self.enable_json else logging.Formatter(fmt))
        return handler

    def _install(self):
        root = logging.getLogger()
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()

        root.setLevel(self.log_level)
        for handler in self.handlers:
            root.addHandler(handler)

        for component in COMPONENTS:
            logging.getLogger(f"regional_cascade.{component}").setLevel(self.log_level)
        # statsmodels only reports through warnings; keep its logger quiet
        logging.getLogger('statsmodels').setLevel(max(self.log_level, logging.WARNING))


def setup_logging(log_level: str = "INFO",
                  log_dir: Optional[Union[str, Path]] = None,
                  enable_console: bool = True,
                  enable_file: bool = False,
                  enable_json: bool = False,
                  **kwargs) -> LoggingConfig:
    """
    Configure root logging for an application run.

    Args:
        log_level: Level name
        log_dir: Directory for the log file
        enable_console: Log to stdout
        enable_file: Log to a rotating file in ``log_dir``
        enable_json: Structured JSON records
        **kwargs: ``max_file_size`` and ``backup_count`` for the rotating file

    Returns:
        The installed LoggingConfig
    """
    return LoggingConfig(
        log_level=log_level,
        log_dir=log_dir,
        enable_console=enable_console,
        enable_file=enable_file,
        enable_json=enable_json,
        **kwargs
    )


def get_logger(name: str, context: Optional[Dict[str, Any]] = None) -> logging.Logger:
    """Named logger, optionally stamping ``context`` onto each of its records."""
    logger = logging.getLogger(name)
    if context:
        logger.addFilter(ContextFilter(context))
    return logger


def get_performance_logger(name: str) -> PerformanceLogger:
    return PerformanceLogger(get_logger(name))


class ErrorLogger:
    """
    Records how a chain of strategies got past a failure.

    Used by the forecaster: each failed strategy produces a fallback record
    at WARNING, and the outcome is logged once the chain settles.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    @staticmethod
    def _describe(error: Exception) -> Dict[str, Any]:
        fields = {'error_type': type(error).__name__, 'error_message': str(error)}
        if isinstance(error, RegionalCascadeError):
            fields['error_code'] = error.error_code
        return fields

    def log_recovery_attempt(self, error: Exception, attempt: int, max_attempts: int,
                             strategy: str, **context):
        """
        Log that strategy number ``attempt`` of ``max_attempts`` is tried after ``error``.
        """
        self.logger.warning(
            f"Fallback {attempt}/{max_attempts} after {type(error).__name__}: {strategy}",
            extra=_fields(attempt=attempt, max_attempts=max_attempts, recovery_strategy=strategy,
                          **self._describe(error), **context)
        )

    def log_recovery_success(self, error: Exception, attempts: int, strategy: str, **context):
        self.logger.info(
            f"Recovered from {type(error).__name__} after {attempts} attempts using {strategy}",
            extra=_fields(recovery_attempts=attempts, recovery_strategy=strategy, recovered=True,
                          **self._describe(error), **context)
        )

    def log_recovery_failure(self, error: Exception, attempts: int, strategies: List[str], **context):
        self.logger.error(
            f"No strategy recovered from {type(error).__name__} after {attempts} attempts",
            extra=_fields(recovery_attempts=attempts, recovery_strategies=strategies, recovered=False,
                          **self._describe(error), **context)
        )
