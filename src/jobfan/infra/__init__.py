"""
Infrastructure module - environment defaults, logging, and the job log.
"""

from .env import load_env
from .logging_config import setup_logging

__all__ = [
    "load_env",
    "setup_logging",
]
