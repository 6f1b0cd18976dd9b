"""
Logging Setup for the Path Finder

Console (and optional file) handlers on the "pathfinder" logger
hierarchy, in plain text or one JSON object per line. Worker log lines
carry the receiver range they belong to; run statistics go through
MetricsLogger on the "<name>.metrics" child logger.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with the thread and receiver range of workers"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'thread': record.threadName,
            'message': record.getMessage(),
            'function': record.funcName,
            'line': record.lineno,
        }

        receiver_range = getattr(record, 'receiver_range', None)
        if receiver_range is not None:
            entry['receiver_range'] = list(receiver_range)

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(entry)


def _handler(handler: logging.Handler, level: int, json_format: bool) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(TEXT_FORMAT))
    return handler


def setup_logging(
    logger_name: str = "pathfinder",
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = False
) -> logging.Logger:
    """
    Attach fresh handlers to a logger hierarchy.

    Args:
        logger_name: Root of the configured hierarchy
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_file: Also write to this file (parent directories are created)
        json_format: JSON lines instead of plain text

    Returns:
        The configured logger
    """
    level = getattr(logging, log_level.upper())
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.handlers.clear()

    logger.addHandler(_handler(logging.StreamHandler(sys.stdout), level, json_format))
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.addHandler(_handler(logging.FileHandler(log_file), level, json_format))

    return logger


def setup_logging_from_config(logging_config, logger_name: str = "pathfinder") -> logging.Logger:
    """Apply the logging section of a PathfinderConfig."""
    return setup_logging(
        logger_name=logger_name,
        log_level=logging_config.level,
        log_file=logging_config.log_file,
        json_format=logging_config.json_format,
    )


class MetricsLogger:
    """
    Run statistics as JSON log records.

    Example:
        metrics = MetricsLogger("pathfinder")
        metrics.log_counter("ray_count", 42)
        metrics.log_duration("receiver_range", 1.7, labels={'range': '0-50'})
    """

    def __init__(self, logger_name: str):
        self.logger = logging.getLogger(f"{logger_name}.metrics")

    def log_metric(self, metric_name: str, value: float, labels: Dict[str, str] = None):
        metric: Dict[str, Any] = {'metric': metric_name, 'value': value}
        if labels:
            metric['labels'] = labels
        self.logger.info(json.dumps(metric))

    def log_counter(self, name: str, total: int, labels: Dict[str, str] = None):
        """Final value of a run counter"""
        self.log_metric(f"{name}_total", total, labels)

    def log_gauge(self, name: str, value: float, labels: Dict[str, str] = None):
        self.log_metric(name, value, labels)

    def log_duration(self, name: str, seconds: float, labels: Dict[str, str] = None):
        """Wall time of one unit of work"""
        self.log_metric(f"{name}_seconds", seconds, labels)
