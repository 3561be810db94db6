"""
Unit tests for the command-line entry point.
"""

import pytest

from feedserver.__main__ import build_parser, load_config, main


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("HTTP_HOST", "HTTP_PORT", "HTTP_WORKERS", "HTTP_STATIC_DIR",
                 "REDIS_URL", "CORS_ORIGINS", "HTTP_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    """Flags layered over the environment."""

    def test_defaults(self):
        config = load_config([])
        assert config.port == 8080
        assert config.redis_url == ""

    def test_flags(self):
        config = load_config([
            "--host", "0.0.0.0",
            "--port", "3000",
            "--static-dir", "dist",
            "--redis-url", "redis://cache:6379/0",
            "--cors-origin", "https://a.example",
            "--cors-origin", "https://b.example",
            "--log-level", "debug",
            "--workers", "2",
        ])

        assert config.host == "0.0.0.0"
        assert config.port == 3000
        assert config.static_dir == "dist"
        assert config.redis_url == "redis://cache:6379/0"
        assert config.allowed_origins == ["https://a.example", "https://b.example"]
        assert config.log_level == "DEBUG"
        assert config.max_workers == 2

    def test_flags_override_environment(self, monkeypatch):
        monkeypatch.setenv("HTTP_PORT", "9000")
        monkeypatch.setenv("HTTP_HOST", "0.0.0.0")

        config = load_config(["--port", "3000"])

        assert config.port == 3000
        assert config.host == "0.0.0.0"

    def test_invalid_value_exits(self):
        with pytest.raises(SystemExit):
            load_config(["--workers", "0"])

    def test_invalid_environment_exits(self, monkeypatch):
        monkeypatch.setenv("HTTP_PORT", "eighty")
        with pytest.raises(SystemExit):
            load_config([])

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--version"])
        assert "feedserver" in capsys.readouterr().out


def test_main_fails_without_static_dir(tmp_path):
    """A missing static root is a clean exit code, not a traceback."""
    assert main(["--static-dir", str(tmp_path / "missing"), "--port", "0"]) == 1
