"""Tests for config module."""

from pathlib import Path

import pytest

from voice_shortcut.config import (
    MIB,
    ApiConfig,
    ChunkingConfig,
    Config,
    ConfigError,
    RetryConfig,
    load_config,
    validate_api_config,
    validate_chunking_config,
    validate_retry_config,
)


@pytest.fixture
def tmp_config_file(tmp_path):
    """Create a TOML config file for testing."""

    def _create(content: str, name: str = "config.toml") -> Path:
        path = tmp_path / name
        path.write_text(content)
        return path

    return _create


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """Run with an empty working directory and home so no real config is found."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def full_config_content():
    """Full configuration with all sections."""
    return """
[api]
transcription_model = "gemini-test"
prompt_model = "gemini-prompt"
tts_voice = "Puck"
request_timeout = 30.0
resource_timeout = 120.0

[retry]
max_attempts = 3
base_delay = 1.0
max_delay = 10.0

[chunking]
max_chunk_duration = 30.0
max_chunk_bytes_mib = 8
inline_size_threshold_mib = 4.5

[tts]
max_text_length = 2000

[history]
max_turns = 4
expiry_seconds = 60.0

[feedback]
success_duration = 1.0
error_duration = 5.0

[general]
verbose = true
"""


class TestConfigLoading:
    """Tests for configuration loading."""

    def test_defaults_without_file(self, isolated):
        """Test built-in defaults are used when no file exists."""
        cfg = load_config(env={})
        assert cfg.source is None
        assert cfg.retry.max_attempts == 4
        assert cfg.retry.base_delay == 1.5
        assert cfg.retry.max_delay == 30.0
        assert cfg.chunking.inline_size_threshold == 20 * MIB
        assert cfg.history.max_turns == 10
        assert cfg.api.api_key is None

    def test_full_config(self, tmp_config_file, full_config_content):
        """Test every section is loaded."""
        path = tmp_config_file(full_config_content)
        cfg = load_config(path, env={})

        assert cfg.source == path.resolve()
        assert cfg.api.transcription_model == "gemini-test"
        assert cfg.api.tts_voice == "Puck"
        assert cfg.retry.max_attempts == 3
        assert cfg.chunking.max_chunk_duration == 30.0
        assert cfg.chunking.max_chunk_bytes == 8 * MIB
        assert cfg.chunking.inline_size_threshold == int(4.5 * MIB)
        assert cfg.tts.max_text_length == 2000
        assert cfg.history.expiry_seconds == 60.0
        assert cfg.feedback.error_duration == 5.0
        assert cfg.general.verbose is True

    def test_missing_explicit_file(self, tmp_path):
        """Test an explicit path that does not exist is an error."""
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.toml", env={})

    def test_env_var_path(self, isolated, tmp_config_file):
        """Test VOICE_SHORTCUT_CONFIG points at the config file."""
        path = tmp_config_file("[history]\nmax_turns = 2\n", name="from_env.toml")
        cfg = load_config(env={"VOICE_SHORTCUT_CONFIG": str(path)})
        assert cfg.history.max_turns == 2

    def test_env_var_path_missing(self, isolated):
        """Test a missing file named by the env var is an error."""
        with pytest.raises(ConfigError, match="VOICE_SHORTCUT_CONFIG"):
            load_config(env={"VOICE_SHORTCUT_CONFIG": str(isolated / "missing.toml")})

    def test_current_directory_file(self, isolated):
        """Test ./voice_shortcut.toml is discovered."""
        (isolated / "voice_shortcut.toml").write_text("[tts]\nmax_text_length = 100\n")
        cfg = load_config(env={})
        assert cfg.tts.max_text_length == 100

    def test_api_key_from_env(self, isolated):
        """Test GEMINI_API_KEY wins over GOOGLE_API_KEY."""
        cfg = load_config(env={"GEMINI_API_KEY": "g1", "GOOGLE_API_KEY": "g2"})
        assert cfg.api.api_key == "g1"
        cfg = load_config(env={"GOOGLE_API_KEY": "g2", "GEMINI_BEARER_TOKEN": "tok"})
        assert cfg.api.api_key == "g2"
        assert cfg.api.bearer_token == "tok"

    def test_file_key_wins_over_env(self, tmp_config_file):
        """Test a key in the file is not overridden by the environment."""
        path = tmp_config_file('[api]\napi_key = "from-file"\n')
        cfg = load_config(path, env={"GEMINI_API_KEY": "from-env"})
        assert cfg.api.api_key == "from-file"

    def test_unknown_section(self, tmp_config_file):
        """Test unknown sections are rejected."""
        path = tmp_config_file("[model]\nname = 'base'\n")
        with pytest.raises(ConfigError, match="Unknown config section"):
            load_config(path, env={})

    def test_unknown_key(self, tmp_config_file):
        """Test unknown keys are reported as ConfigError."""
        path = tmp_config_file("[retry]\nattempts = 3\n")
        with pytest.raises(ConfigError, match="Invalid configuration values"):
            load_config(path, env={})

    def test_section_not_table(self, tmp_config_file):
        """Test a scalar where a section is expected is rejected."""
        path = tmp_config_file('general = "verbose"\n')
        with pytest.raises(ConfigError, match="must be a table"):
            load_config(path, env={})

    def test_invalid_toml(self, tmp_config_file):
        """Test unparseable TOML is a ConfigError."""
        path = tmp_config_file("[api\nbroken")
        with pytest.raises(ConfigError, match="Failed to parse"):
            load_config(path, env={})


class TestValidation:
    """Tests for value validation."""

    def test_default_config_valid(self):
        """Test default values pass validation."""
        Config().validate()

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"base_url": "ftp://example.com"},
            {"request_timeout": 0},
            {"request_timeout": 60.0, "resource_timeout": 10.0},
            {"prompt_model": ""},
        ],
    )
    def test_invalid_api(self, kwargs):
        """Test invalid API settings are rejected."""
        with pytest.raises(ConfigError):
            validate_api_config(ApiConfig(**kwargs))

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"base_delay": -1.0},
            {"rate_limit_buffer": -0.5},
            {"max_rate_limit_waits": -1},
        ],
    )
    def test_invalid_retry(self, kwargs):
        """Test invalid retry policies are rejected."""
        with pytest.raises(ConfigError):
            validate_retry_config(RetryConfig(**kwargs))

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_chunk_duration": 0},
            {"max_chunk_bytes": 0},
            {"inline_size_threshold": -1},
            {"min_audio_duration": -0.1},
        ],
    )
    def test_invalid_chunking(self, kwargs):
        """Test invalid chunk limits are rejected."""
        with pytest.raises(ConfigError):
            validate_chunking_config(ChunkingConfig(**kwargs))

    def test_invalid_history(self, tmp_config_file):
        """Test history limits are validated on load."""
        path = tmp_config_file("[history]\nmax_turns = 0\n")
        with pytest.raises(ConfigError, match="history.max_turns"):
            load_config(path, env={})
