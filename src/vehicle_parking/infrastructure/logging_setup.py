# File: src/vehicle_parking/infrastructure/logging_setup.py
"""Application logging configuration"""

from typing import Optional, Union
import logging
import os
import sys

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: Union[str, int] = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Setup application logging configuration

    Logs go to stdout and, when log_file is given, to that file as well
    (its directory is created if missing).
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level}")
        level = resolved

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)
    return logging.getLogger("vehicle_parking")
