"""
Runtime settings for the signal engine
Loaded from the environment (and a local .env file when present)
"""

import os
import sys
from dataclasses import dataclass

from dotenv import load_dotenv
from loguru import logger

load_dotenv()

DEFAULT_DB_PATH = "data/trading_signals.db"

_TRUTHY = {'1', 'true', 'yes', 'on'}


@dataclass
class RuntimeSettings:
    """Environment-driven settings"""

    db_path: str = DEFAULT_DB_PATH
    log_level: str = "INFO"
    parallel_layers: bool = False


def load_settings() -> RuntimeSettings:
    """Read SIGNAL_* variables from the environment"""
    return RuntimeSettings(
        db_path=os.getenv('SIGNAL_DB_PATH', DEFAULT_DB_PATH),
        log_level=os.getenv('SIGNAL_LOG_LEVEL', 'INFO').upper(),
        parallel_layers=os.getenv('SIGNAL_PARALLEL_LAYERS', 'false').strip().lower() in _TRUTHY,
    )


def configure_logging(level: str = "INFO") -> None:
    """Reset loguru sinks to a single stderr sink at the given level"""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )
