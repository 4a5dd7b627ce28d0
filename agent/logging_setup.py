"""
Logging Configuration

Console output plus two log files in the log directory:
- agent.log: every record at or above the configured level
- agent-error.log: errors only
"""

import logging
from pathlib import Path
from typing import Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE = "agent.log"
ERROR_LOG_FILE = "agent-error.log"


def configure_logging(level: Union[str, int] = "INFO", log_dir: Path = Path(".")) -> None:
    """Install console and file handlers on the root logger."""
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)

    combined = logging.FileHandler(log_dir / LOG_FILE)
    combined.setFormatter(formatter)

    errors = logging.FileHandler(log_dir / ERROR_LOG_FILE)
    errors.setLevel(logging.ERROR)
    errors.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[console, combined, errors],
        force=True,
    )
