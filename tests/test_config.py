"""Tests for configuration loading."""

import pytest

from timekeep.config import Config, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep TIMEKEEP_ variables from the host out of the tests."""
    for key in (
        "API_BASE", "CACHE_PATH", "DEBOUNCE_MS",
        "SERVER_HOST", "SERVER_PORT", "SERVER_DB_PATH", "JWT_SECRET",
    ):
        monkeypatch.delenv(f"TIMEKEEP_{key}", raising=False)


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self):
        config = load_config()

        assert config.client.api_base == "http://localhost:4000"
        assert config.client.debounce_ms == 500
        assert config.client.debounce_seconds == 0.5
        assert config.server.port == 4000
        assert config.server.token_expire_days == 365

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")

        assert config == Config()

    def test_yaml_file(self, tmp_path):
        """Test values from the file override defaults per field."""
        path = tmp_path / "config.yaml"
        path.write_text(
            "client:\n"
            "  api_base: https://sync.example.com\n"
            "  debounce_ms: 250\n"
            "server:\n"
            "  port: 8080\n"
        )

        config = load_config(path)

        assert config.client.api_base == "https://sync.example.com"
        assert config.client.debounce_seconds == 0.25
        assert config.client.cache_path == "~/.timekeep/cache.db"
        assert config.server.port == 8080
        assert config.server.host == "0.0.0.0"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_config(path) == Config()

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("server:\n  port: 8080\n")
        monkeypatch.setenv("TIMEKEEP_SERVER_PORT", "9000")
        monkeypatch.setenv("TIMEKEEP_API_BASE", "http://other:4000")
        monkeypatch.setenv("TIMEKEEP_JWT_SECRET", "s3cret")

        config = load_config(path)

        assert config.server.port == 9000
        assert config.client.api_base == "http://other:4000"
        assert config.server.jwt_secret == "s3cret"
