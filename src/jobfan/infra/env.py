"""
Environment-backed defaults.

Environment Variables:
- JOBFAN_JOBS: Default capacity spec (default: 100%)
- JOBFAN_LOG_LEVEL: Logging level (default: WARNING)
- JOBFAN_LOG_DIR: If set, also log to a daily file in this directory
- JOBFAN_SSH: ssh executable (default: ssh)
- JOBFAN_SCP: scp executable (default: scp)
- JOBFAN_REMOTE_BASE: Remote staging base directory (default: .jobfan)
- JOBFAN_RETRIES: Default retry count for transport failures (default: 0)
- JOBFAN_RETRY_DELAY: Base backoff delay in seconds (default: 0.5)

Values from a .env file are honoured once load_env() has been called.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv

from jobfan import config

logger = logging.getLogger(__name__)


def load_env(dotenv_path: Optional[str] = None) -> bool:
    """Load a .env file without overriding variables already set."""
    return load_dotenv(dotenv_path=dotenv_path, override=False)


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    elif val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"[Env] Invalid integer for {key}: {val}, using default: {default}")
    return default


def _get_env_float(key: str, default: float) -> float:
    """Get float value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return float(val)
        except ValueError:
            logger.warning(f"[Env] Invalid number for {key}: {val}, using default: {default}")
    return default


def get_default_jobs() -> str:
    return os.getenv("JOBFAN_JOBS", config.DEFAULT_JOBS)


def get_log_level() -> str:
    return os.getenv("JOBFAN_LOG_LEVEL", "WARNING").upper()


def get_log_dir() -> Optional[str]:
    return os.getenv("JOBFAN_LOG_DIR") or None


def get_ssh_command() -> str:
    return os.getenv("JOBFAN_SSH", config.DEFAULT_SSH_COMMAND)


def get_scp_command() -> str:
    return os.getenv("JOBFAN_SCP", config.DEFAULT_SCP_COMMAND)


def get_remote_base() -> str:
    return os.getenv("JOBFAN_REMOTE_BASE", config.DEFAULT_REMOTE_BASE)


def get_default_retries() -> int:
    return max(0, _get_env_int("JOBFAN_RETRIES", config.DEFAULT_MAX_RETRIES))


def get_retry_delay() -> float:
    return max(0.0, _get_env_float("JOBFAN_RETRY_DELAY", config.DEFAULT_RETRY_BASE_DELAY))


def get_terminate_on_cancel() -> bool:
    return _get_env_bool("JOBFAN_TERMINATE_ON_CANCEL", False)
