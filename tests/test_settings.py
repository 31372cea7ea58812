"""Tests for configuration resolution."""

from __future__ import annotations

import pytest

from matrixci.settings import DEFAULT_OUTPUT_DIR, Settings


class TestFromEnv:
    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.output_dir == DEFAULT_OUTPUT_DIR
        assert settings.jobs == 1
        assert settings.timeout_seconds == 3600.0
        assert settings.executor == "local"

    def test_values_from_environment(self):
        settings = Settings.from_env(
            {
                "MATRIXCI_OUTPUT_DIR": "/var/ci",
                "MATRIXCI_JOBS": "4",
                "MATRIXCI_TIMEOUT_SECONDS": "90",
                "MATRIXCI_EXECUTOR": "docker",
                "MATRIXCI_DOCKER_IMAGE": "ruby:{runtime}",
                "MATRIXCI_MATRIX_FILE": ".travis.yml",
            }
        )
        assert settings.output_dir == "/var/ci"
        assert settings.jobs == 4
        assert settings.timeout_seconds == 90.0
        assert settings.executor == "docker"
        assert settings.docker_image == "ruby:{runtime}"
        assert settings.matrix_file == ".travis.yml"

    @pytest.mark.parametrize("raw", ["0", "-1"])
    def test_timeout_cannot_be_disabled(self, raw):
        """Every job gets a hard timeout."""
        with pytest.raises(ValueError):
            Settings.from_env({"MATRIXCI_TIMEOUT_SECONDS": raw})

    def test_garbage_is_rejected(self):
        with pytest.raises(ValueError):
            Settings.from_env({"MATRIXCI_JOBS": "many"})


class TestOverrides:
    def test_none_means_not_given(self):
        base = Settings(jobs=3)
        assert base.with_overrides(jobs=None, output_dir=None) == base

    def test_override(self):
        settings = Settings().with_overrides(jobs=8, timeout_seconds=30)
        assert settings.jobs == 8
        assert settings.timeout_seconds == 30

    @pytest.mark.parametrize("timeout", [0, -1])
    def test_timeout_override_must_be_positive(self, timeout):
        with pytest.raises(ValueError):
            Settings().with_overrides(timeout_seconds=timeout)

    def test_jobs_must_be_positive(self):
        with pytest.raises(ValueError):
            Settings().with_overrides(jobs=0)
