"""
Logging utilities for the drowsiness feature engine.
"""

import logging
import sys
import time
import traceback
from datetime import datetime
from pathlib import Path
from typing import Optional

from .config import config


class DrowsinessLogger:
    """Custom logger for the drowsiness feature engine."""

    def __init__(self, name: str = "drowsiness_tcn", log_file: Optional[str] = None):
        """Initialize the logger."""
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, config.logging.log_level.upper(), logging.INFO))

        # Prevent duplicate handlers
        if self.logger.handlers:
            return

        # Module loggers are children of the package logger; each owns its handlers
        self.logger.propagate = False

        # Create formatters
        detailed_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
        )
        simple_formatter = logging.Formatter(
            '%(asctime)s - %(levelname)s - %(message)s'
        )

        # Console handler (errors only)
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.ERROR)
        console_handler.setFormatter(simple_formatter)
        self.logger.addHandler(console_handler)

        if config.logging.enable_file_logging or log_file is not None:
            if log_file is None:
                logs_dir = Path(config.logging.log_dir)
                logs_dir.mkdir(parents=True, exist_ok=True)

                timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
                log_file = logs_dir / f"drowsiness_tcn_{timestamp}.log"

            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(detailed_formatter)
            self.logger.addHandler(file_handler)

    def debug(self, message: str) -> None:
        """Log debug message."""
        self.logger.debug(message)

    def info(self, message: str) -> None:
        """Log info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log error message."""
        self.logger.error(message)

    def critical(self, message: str) -> None:
        """Log critical message."""
        self.logger.critical(message)

    def log_event(self, event: str, tick_index: int, timestamp: float, **details) -> None:
        """Log a discrete behavioral event (blink, yawn, nod...)."""
        extra = ", ".join(f"{k}={v:.3f}" if isinstance(v, float) else f"{k}={v}"
                          for k, v in details.items())
        message = f"Event {event} at tick {tick_index} (t={timestamp:.3f}s)"
        if extra:
            message += f" - {extra}"
        self.debug(message)

    def log_normalization(self, status: str, sample_count: int, elapsed_s: float) -> None:
        """Log the outcome of a baseline normalization window."""
        message = f"Normalization {status} - samples: {sample_count}, elapsed: {elapsed_s:.2f}s"
        if status == "ready":
            self.info(message)
        else:
            self.warning(message)

    def log_classifier_state(self, probability: float, drowsy: bool, changed: bool) -> None:
        """Log temporal classifier output."""
        if changed:
            self.info(f"Classifier state -> {'drowsy' if drowsy else 'awake'} (p={probability:.3f})")
        else:
            self.debug(f"Classifier p={probability:.3f} ({'drowsy' if drowsy else 'awake'})")

    def log_error_with_context(self, error: Exception, context: str) -> None:
        """Log error with additional context."""
        self.error(f"Error in {context}: {str(error)}")
        if error.__traceback__ is not None:
            self.debug(f"Traceback: {''.join(traceback.format_tb(error.__traceback__))}")


# Global logger instance
logger = DrowsinessLogger()


def get_logger(name: str = "drowsiness_tcn") -> DrowsinessLogger:
    """Get a logger instance."""
    return DrowsinessLogger(name)


def log_function_call(func):
    """Decorator to log function calls."""
    def wrapper(*args, **kwargs):
        logger.debug(f"Calling {func.__name__}")
        try:
            result = func(*args, **kwargs)
            logger.debug(f"Completed {func.__name__}")
            return result
        except Exception as e:
            logger.log_error_with_context(e, func.__name__)
            raise
    wrapper.__name__ = func.__name__
    wrapper.__doc__ = func.__doc__
    return wrapper


def log_performance_metrics(func):
    """Decorator to log performance metrics."""
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        try:
            result = func(*args, **kwargs)
            processing_time = (time.perf_counter() - start_time) * 1000  # Convert to milliseconds
            logger.debug(f"{func.__name__} took {processing_time:.2f}ms")
            return result
        except Exception as e:
            logger.log_error_with_context(e, func.__name__)
            raise
    wrapper.__name__ = func.__name__
    wrapper.__doc__ = func.__doc__
    return wrapper
