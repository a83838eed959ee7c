"""Unit tests for configuration models."""

import os
import stat

import pytest
from pydantic import ValidationError

from reviewsync.models.config import Config, ServerConfig, SessionConfig


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    """Keep REVIEWSYNC_* variables from the developer's shell out of tests."""
    for name in ("REVIEWSYNC_BASE_URL", "REVIEWSYNC_ODATA_PATH", "REVIEWSYNC_VERIFY_TLS"):
        monkeypatch.delenv(name, raising=False)


class TestServerConfig:
    """Test server configuration model."""

    def test_defaults(self):
        """Test default service paths."""
        config = ServerConfig(base_url="https://approuter.example.com/")

        assert config.odata_path == "SuccessFactors_API/odata/v2"
        assert config.token_path == "user-api/currentUser"
        assert config.user_lookup_path == "api/projman/SFSF_User"
        assert config.verify_tls is True
        assert config.cookies == {}

    def test_invalid_url(self):
        """Test base_url must be a URL."""
        with pytest.raises(ValidationError):
            ServerConfig(base_url="not a url")

    def test_frozen(self):
        """Test server config is immutable."""
        config = ServerConfig(base_url="https://approuter.example.com/")

        with pytest.raises(ValidationError):
            config.verify_tls = False


class TestSessionConfig:
    """Test session timeout configuration."""

    def test_defaults(self):
        config = SessionConfig()

        assert config.connect_timeout == 10.0
        assert config.read_timeout == 60.0
        assert config.token_wait_timeout == 10.0

    def test_positive_timeouts(self):
        """Test timeouts must be positive."""
        with pytest.raises(ValidationError):
            SessionConfig(token_wait_timeout=0)


class TestConfig:
    """Test root configuration loading."""

    def test_config_load_valid_yaml(self, tmp_path):
        """Test loading a valid YAML config file."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("""
server:
  base_url: https://approuter.example.com/
  cookies:
    JSESSIONID: abc123

session:
  read_timeout: 90
""")
        os.chmod(config_file, stat.S_IRUSR | stat.S_IWUSR)

        config = Config.load(config_file)

        assert str(config.server.base_url) == "https://approuter.example.com/"
        assert config.server.cookies == {"JSESSIONID": "abc123"}
        assert config.session.read_timeout == 90.0
        assert config.session.connect_timeout == 10.0

    def test_config_load_file_not_found(self, tmp_path):
        """Test loading config fails when the file doesn't exist."""
        with pytest.raises(FileNotFoundError, match="Configuration file not found"):
            Config.load(tmp_path / "nonexistent.yaml")

    def test_config_load_wrong_permissions(self, tmp_path):
        """Test loading config fails when permissions are too open."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("server:\n  base_url: https://approuter.example.com/\n")
        os.chmod(config_file, stat.S_IRUSR | stat.S_IWUSR | stat.S_IRGRP | stat.S_IROTH)

        with pytest.raises(PermissionError, match="overly permissive permissions"):
            Config.load(config_file)

    def test_env_overrides(self, tmp_path, monkeypatch):
        """Test REVIEWSYNC_* variables override the file."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("server:\n  base_url: https://approuter.example.com/\n")
        os.chmod(config_file, stat.S_IRUSR | stat.S_IWUSR)
        monkeypatch.setenv("REVIEWSYNC_BASE_URL", "https://other.example.com/")
        monkeypatch.setenv("REVIEWSYNC_VERIFY_TLS", "false")

        config = Config.load(config_file)

        assert str(config.server.base_url) == "https://other.example.com/"
        assert config.server.verify_tls is False

    def test_env_only(self, tmp_path, monkeypatch):
        """Test a missing file is fine when the base URL comes from the environment."""
        monkeypatch.setenv("REVIEWSYNC_BASE_URL", "https://approuter.example.com/")

        config = Config.load(tmp_path / "missing.yaml")

        assert config.server.odata_path == "SuccessFactors_API/odata/v2"
