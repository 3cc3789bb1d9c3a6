"""
Structured logging for terroir.

Console and optional file output, plus counters that track how merges are
doing (attempts, retries, failures by type, followers consumed per level).
"""

import logging
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks merge metrics for monitoring.
    """

    def __init__(
        self,
        name: str = "terroir",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()

        self.metrics = {
            "merges_attempted": 0,
            "merges_succeeded": 0,
            "merges_failed": 0,
            "retries": 0,
            "followers_merged": 0,
            "errors_by_type": {},
            "levels": {},
        }

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"terroir_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # file gets everything
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def _level_stats(self, level: str) -> dict:
        return self.metrics["levels"].setdefault(
            level, {"attempts": 0, "successes": 0, "followers_merged": 0}
        )

    def record_merge_attempt(self, level: str):
        """Record a merge call for a hierarchy level."""
        self.metrics["merges_attempted"] += 1
        self._level_stats(level)["attempts"] += 1

    def record_merge_success(self, level: str, followers_merged: int):
        self.metrics["merges_succeeded"] += 1
        self.metrics["followers_merged"] += followers_merged
        stats = self._level_stats(level)
        stats["successes"] += 1
        stats["followers_merged"] += followers_merged

    def record_merge_failure(self, level: str, error_type: str):
        self.metrics["merges_failed"] += 1
        self._level_stats(level)

        if error_type not in self.metrics["errors_by_type"]:
            self.metrics["errors_by_type"][error_type] = 0
        self.metrics["errors_by_type"][error_type] += 1

    def record_retry(self):
        self.metrics["retries"] += 1

    def get_metrics(self) -> dict:
        """Return current metrics with per-level success rates filled in."""
        metrics_copy = self.metrics.copy()
        for stats in metrics_copy["levels"].values():
            if stats["attempts"] > 0:
                stats["success_rate"] = round(
                    stats["successes"] / stats["attempts"], 3
                )

        return metrics_copy

    def log_metrics_summary(self):
        metrics = self.get_metrics()

        total_attempts = metrics["merges_attempted"]
        total_successes = metrics["merges_succeeded"]
        overall_rate = 0
        if total_attempts > 0:
            overall_rate = round(total_successes / total_attempts * 100, 1)

        self.info("=== Merge Session Metrics ===")
        self.info(f"Merges: {total_successes}/{total_attempts} ({overall_rate}% success)")
        self.info(f"Followers merged: {metrics['followers_merged']}")
        self.info(f"Retries: {metrics['retries']}")

        if metrics["levels"]:
            self.info("Per level:")
            for level, stats in metrics["levels"].items():
                rate = stats.get("success_rate", 0) * 100
                self.info(
                    f"  {level}: {stats['successes']}/{stats['attempts']} ({rate:.1f}%), "
                    f"{stats['followers_merged']} followers"
                )

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "terroir",
    level: Optional[str] = None,
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Level and file output default to the configured settings; file logging
    is on only when TERROIR_LOG_DIR is set.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        from .config import load_settings

        settings = load_settings()
        if level is None:
            level = settings.log_level
        kwargs.setdefault("log_dir", settings.log_dir)
        kwargs.setdefault("enable_file", settings.log_dir is not None)
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
