"""
Tests for run configuration schemas.
"""

import pytest
from pydantic import ValidationError

from jobfan.schemas import RemoteOptions, RunConfig


class TestRunConfig:
    """Tests for RunConfig validation."""

    def test_defaults(self):
        config = RunConfig()

        assert config.command == ""
        assert config.jobs == "100%"
        assert config.group_size == 1
        assert config.delimiter == "\n"
        assert config.retries == 0
        assert config.remote.transfer_files == ["{}"]
        assert config.reads_stdin

    def test_environment_defaults(self, monkeypatch):
        monkeypatch.setenv("JOBFAN_JOBS", "+2")
        monkeypatch.setenv("JOBFAN_RETRIES", "3")
        monkeypatch.setenv("JOBFAN_REMOTE_BASE", "/scratch/jobs")

        config = RunConfig()

        assert config.jobs == "+2"
        assert config.retries == 3
        assert config.remote.remote_base == "/scratch/jobs"

    def test_single_input_source(self):
        with pytest.raises(ValidationError):
            RunConfig(arg_lists=[["a"]], numeric_range="1:3")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"group_size": -1},
            {"timeout": 0},
            {"retries": -1},
            {"delimiter": ""},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValidationError):
            RunConfig(**kwargs)

    @pytest.mark.parametrize(
        "kwargs,expected",
        [
            ({}, True),
            ({"arg_file": "-"}, True),
            ({"arg_file": "items.txt"}, False),
            ({"arg_lists": [["a", "b"]]}, False),
            ({"numeric_range": "1:10"}, False),
            ({"file_patterns": ["*.txt"]}, False),
        ],
    )
    def test_reads_stdin(self, kwargs, expected):
        assert RunConfig(**kwargs).reads_stdin is expected


class TestRemoteOptions:
    """Tests for RemoteOptions."""

    def test_empty_remote_base_rejected(self):
        with pytest.raises(ValidationError):
            RemoteOptions(remote_base="")
