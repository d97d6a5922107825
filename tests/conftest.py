"""
Pytest configuration and shared fixtures.
"""

import io
import logging

import pytest

from jobfan.infra.logging_config import LOGGER_NAME
from jobfan.inputs.tokenizer import ArgumentGroup, Record

JOBFAN_ENV_VARS = (
    "JOBFAN_JOBS",
    "JOBFAN_LOG_LEVEL",
    "JOBFAN_LOG_DIR",
    "JOBFAN_SSH",
    "JOBFAN_SCP",
    "JOBFAN_REMOTE_BASE",
    "JOBFAN_RETRIES",
    "JOBFAN_RETRY_DELAY",
    "JOBFAN_TERMINATE_ON_CANCEL",
)


@pytest.fixture(autouse=True, scope="function")
def clean_jobfan_env(monkeypatch):
    """
    Run every test without JOBFAN_* variables from the outer environment.

    Tests that need one set it with monkeypatch.setenv.
    """
    for key in JOBFAN_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture(autouse=True, scope="function")
def reset_jobfan_logger():
    """
    Undo setup_logging() after each test.

    setup_logging() turns propagation off, which would hide records from
    caplog in later tests.
    """
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def out_streams():
    """A (stdout, stderr) pair of in-memory binary streams."""
    return io.BytesIO(), io.BytesIO()


@pytest.fixture
def make_group():
    """
    Factory fixture for ArgumentGroups.

    make_group("a,b", "c,d", separator=",", columns=("x", "y"))
    """

    def _create(*texts: str, columns=None, separator=None) -> ArgumentGroup:
        records = []
        for text in texts:
            fields = tuple(text.split(separator)) if separator else (text,)
            records.append(Record(text=text, fields=fields))
        return ArgumentGroup(records=tuple(records), header=tuple(columns) if columns else None)

    return _create
