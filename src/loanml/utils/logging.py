"""Structured logging configuration using structlog."""

import logging
import sys
import warnings
from typing import Any

import structlog

# Third-party loggers that report per-trial or per-iteration progress
_CHATTY_LOGGERS = ("optuna", "mlflow", "xgboost", "urllib3")


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: If True, render events as JSON lines.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors: list[structlog.types.Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def set_backend_progress(*, enabled: bool) -> None:
    """
    Toggle progress reporting of the backend libraries.

    With progress disabled, Optuna trial messages, MLflow chatter and
    convergence warnings from iterative estimators are suppressed.

    Args:
        enabled: Whether backend progress output should be shown.
    """
    import optuna

    level = logging.INFO if enabled else logging.WARNING
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(level)

    optuna.logging.set_verbosity(optuna.logging.INFO if enabled else optuna.logging.WARNING)

    if not enabled:
        from sklearn.exceptions import ConvergenceWarning

        warnings.filterwarnings("ignore", category=ConvergenceWarning)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__ of the module).

    Returns:
        Configured structlog logger.
    """
    return structlog.get_logger(name)


def log_context(**kwargs: Any) -> Any:
    """
    Context manager for adding context to all logs within the block.

    Example:
        with log_context(algorithm="gbm", grid_id="gbm_grid_1"):
            log.info("Training model")  # Will include algorithm and grid_id

    Args:
        **kwargs: Key-value pairs to add to log context.

    Returns:
        Context manager that binds the values.
    """
    return structlog.contextvars.bound_contextvars(**kwargs)
