"""
Logging configuration for CDR ingestion and analysis
"""

import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from cdr_intel import config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logger(level: Optional[str] = None, log_dir: Optional[str] = None) -> logging.Logger:
    """Setup application logging"""
    level = level or config.LOG_LEVEL
    log_dir = config.LOG_DIR if log_dir is None else log_dir

    # Convert string level to logging constant
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]
    log_path = None
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        log_path = Path(log_dir) / f"cdr_intel_{datetime.now().strftime('%Y%m%d')}.log"
        handlers.append(logging.FileHandler(log_path, encoding='utf-8'))

    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=handlers,
        force=True,
    )

    logger = get_logger()
    logger.info(f"Log Level: {str(level).upper()}")
    if log_path:
        logger.info(f"Log File: {log_path}")
    return logger


def get_logger(name=None):
    """Get a logger instance"""
    return logging.getLogger(name or 'cdr_intel')


class PerformanceLogger:
    """Context manager for performance logging"""

    def __init__(self, operation_name, logger=None):
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.start_time = None
        self.elapsed = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.info(f"Starting operation: {self.operation_name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.perf_counter() - self.start_time

        if exc_type is None:
            self.logger.info(f"Completed operation: {self.operation_name} in {self.elapsed:.2f}s")
        else:
            self.logger.error(f"Failed operation: {self.operation_name} after {self.elapsed:.2f}s - {exc_val}")

        return False  # Don't suppress exceptions
