"""Tests for YAML configuration loading."""

import os

import pytest
from pydantic import ValidationError

from shiprates.config import AppConfig, load_config, resolve_env_vars


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    """No stray config files or SHIPRATES_* variables."""
    for key in list(os.environ):
        if key.startswith("SHIPRATES_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))


class TestDefaults:

    def test_defaults_without_file(self):
        config = load_config()

        assert config.cache.max_entries == 1000
        assert config.cache.default_ttl_seconds == 300
        assert config.batching.batch_size == 50
        assert config.batching.batch_timeout_seconds == 30
        assert config.auto_save.debounce_seconds == 1.5
        assert config.polling.interval_seconds == 2
        assert config.worker.map_yield_every == 100
        assert config.worker.validate_yield_every == 50
        assert config.pipeline.concurrency == 5

    def test_missing_explicit_path_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))


class TestYamlLoading:

    def test_loads_working_directory_file(self, tmp_path):
        (tmp_path / "shiprates.yaml").write_text(
            "batching:\n  batch_size: 25\ncache:\n  max_entries: 10\n"
        )
        config = load_config()
        assert config.batching.batch_size == 25
        assert config.cache.max_entries == 10

    def test_env_var_references_resolved(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RATES_DB", "sqlite:///rates.db")
        path = tmp_path / "custom.yaml"
        path.write_text("database:\n  url: ${RATES_DB}\n")

        config = load_config(str(path))
        assert config.database.url == "sqlite:///rates.db"

    def test_config_env_var_points_at_file(self, tmp_path, monkeypatch):
        path = tmp_path / "other.yaml"
        path.write_text("pipeline:\n  concurrency: 2\n")
        monkeypatch.setenv("SHIPRATES_CONFIG", str(path))

        assert load_config().pipeline.concurrency == 2

    def test_missing_reference_resolves_empty(self):
        assert resolve_env_vars("${SHIPRATES_TEST_UNSET_VAR}x") == "x"


class TestEnvOverrides:

    def test_section_override(self, monkeypatch):
        monkeypatch.setenv("SHIPRATES_BATCHING_BATCH_SIZE", "10")
        assert load_config().batching.batch_size == 10

    def test_multi_word_section(self, monkeypatch):
        monkeypatch.setenv("SHIPRATES_AUTO_SAVE_DEBOUNCE_SECONDS", "3")
        assert load_config().auto_save.debounce_seconds == 3

    def test_boolean_override(self, monkeypatch):
        monkeypatch.setenv("SHIPRATES_DATABASE_ECHO", "true")
        assert load_config().database.echo is True


class TestBounds:

    def test_poll_interval_between_two_and_five_seconds(self):
        with pytest.raises(ValidationError):
            AppConfig(polling={"interval_seconds": 1})
        with pytest.raises(ValidationError):
            AppConfig(polling={"interval_seconds": 6})
        assert AppConfig(polling={"interval_seconds": 5}).polling.interval_seconds == 5
