"""
Logging setup for scripts and host applications.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(log_level: str = "INFO", log_path: Optional[str] = None) -> None:
    level = getattr(logging, str(log_level).upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level!r}")

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_path:
        log_dir = os.path.dirname(log_path)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
