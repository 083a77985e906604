"""Logging configuration for bgone."""

import logging
import sys
import time
from pathlib import Path
from typing import Dict, Optional, Sequence

import colorlog


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    enable_colors: bool = True,
    format_string: Optional[str] = None,
) -> None:
    """Setup logging configuration for bgone.

    Args:
        level: Logging level
        log_file: Optional log file path
        enable_colors: Whether to use colored output
        format_string: Custom format string
    """
    # Clear any existing handlers
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    use_colors = enable_colors and sys.stderr.isatty()

    if format_string is None:
        if use_colors:
            format_string = "%(log_color)s%(levelname)-8s%(reset)s %(blue)s%(name)s%(reset)s: %(message)s"
        else:
            format_string = "%(asctime)s - %(levelname)-8s - %(name)s - %(message)s"

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)

    if use_colors:
        formatter = colorlog.ColoredFormatter(
            format_string,
            datefmt="%Y-%m-%d %H:%M:%S",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    else:
        formatter = logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S")

    console_handler.setFormatter(formatter)

    handlers = [console_handler]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)  # Always debug level for file

        file_formatter = logging.Formatter(
            "%(asctime)s - %(levelname)-8s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # The file handler records debug messages whatever the console level
    logger_level = logging.DEBUG if log_file else level
    logging.basicConfig(level=logger_level, handlers=handlers, force=True)

    _configure_library_loggers(logger_level)


def _configure_library_loggers(level: int) -> None:
    """Configure logging levels for third-party libraries."""
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("joblib").setLevel(logging.WARNING)

    logging.getLogger("bgone").setLevel(level)


class ProgressLogger:
    """Logger for reporting pipeline milestones."""

    def __init__(self, name: str = "bgone.progress"):
        """Initialize progress logger.

        Args:
            name: Logger name
        """
        self.logger = logging.getLogger(name)

    def log_histogram(self, num_pixels: int, num_colors: int) -> None:
        """Log the size of the distinct color histogram."""
        self.logger.info(f"Found {num_colors} unique colors in {num_pixels} pixels")

    def log_deduced_colors(self, colors: Sequence) -> None:
        """Log colors resolved for unknown foreground slots.

        Args:
            colors: Deduced colors in slot order
        """
        plural = "color" if len(colors) == 1 else "colors"
        deduced = " ".join(str(c) for c in colors)
        self.logger.info(f"Deduced {len(colors)} unknown {plural}: {deduced}")

    def log_fidelity(self, stats: Dict[str, float]) -> None:
        """Log aggregate reconstruction fidelity.

        Args:
            stats: Fidelity statistics from the pipeline
        """
        self.logger.info(
            f"Mean alpha {stats['mean_alpha']:.3f}, "
            f"mean residual {stats['mean_residual']:.5f}, "
            f"max residual {stats['max_residual']:.5f}"
        )
        inexact = int(stats.get("inexact_pixels", 0))
        if inexact:
            self.logger.warning(
                f"{inexact} pixels ({stats['inexact_fraction'] * 100:.2f}%) "
                "could not be reproduced exactly from the declared colors"
            )


class PerformanceLogger:
    """Logger for tracking performance metrics."""

    def __init__(self, name: str = "bgone.performance"):
        """Initialize performance logger."""
        self.logger = logging.getLogger(name)
        self.timers: Dict[str, float] = {}

    def start_timer(self, name: str) -> None:
        """Start a performance timer.

        Args:
            name: Timer name
        """
        self.timers[name] = time.perf_counter()

    def end_timer(self, name: str) -> float:
        """End a performance timer and log result.

        Args:
            name: Timer name

        Returns:
            Elapsed time in seconds
        """
        if name not in self.timers:
            self.logger.warning(f"Timer '{name}' was not started")
            return 0.0

        elapsed = time.perf_counter() - self.timers.pop(name)
        self.logger.debug(f"{name}: {elapsed:.2f}s")
        return elapsed


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name.

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def log_system_info() -> None:
    """Log system information for debugging."""
    import os
    import platform

    import numpy as np

    logger = get_logger("bgone.system")

    logger.info("System Information:")
    logger.info(f"  Platform: {platform.platform()}")
    logger.info(f"  Python: {platform.python_version()}")
    logger.info(f"  NumPy: {np.__version__}")
    logger.info(f"  CPUs: {os.cpu_count()}")
