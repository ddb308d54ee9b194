"""Configuration loader and validation."""

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

__all__ = [
    "ApiConfig",
    "RetryConfig",
    "ChunkingConfig",
    "TtsConfig",
    "HistoryConfig",
    "FeedbackConfig",
    "GeneralConfig",
    "Config",
    "ConfigError",
    "load_config",
]

MIB = 1024 * 1024
CONFIG_ENV_VAR = "VOICE_SHORTCUT_CONFIG"
CONFIG_FILENAME = "voice_shortcut.toml"


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


@dataclass
class ApiConfig:
    """Remote Gemini API settings."""

    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    upload_url: str = "https://generativelanguage.googleapis.com/upload/v1beta/files"
    transcription_model: str = "gemini-2.5-flash"
    prompt_model: str = "gemini-2.5-flash"
    tts_model: str = "gemini-2.5-flash-preview-tts"
    tts_voice: str = "Kore"
    api_key: str | None = None
    bearer_token: str | None = None
    request_timeout: float = 60.0
    resource_timeout: float = 300.0


@dataclass
class RetryConfig:
    """Request retry policy."""

    max_attempts: int = 4
    base_delay: float = 1.5
    max_delay: float = 30.0
    rate_limit_buffer: float = 2.0
    max_rate_limit_waits: int = 8


@dataclass
class ChunkingConfig:
    """Size and duration limits that decide how audio is sent."""

    inline_size_threshold: int = 20 * MIB
    max_chunk_duration: float = 45.0
    max_chunk_bytes: int = 20 * MIB
    min_audio_duration: float = 0.5
    temp_dir: str | None = None


@dataclass
class TtsConfig:
    """Speech synthesis limits."""

    max_text_length: int = 4000
    sample_rate: int = 24000
    min_text_length: int = 1


@dataclass
class HistoryConfig:
    """Prompt conversation history settings."""

    max_turns: int = 10
    expiry_seconds: float = 30.0


@dataclass
class FeedbackConfig:
    """How long outcome feedback stays visible."""

    success_duration: float = 2.0
    error_duration: float = 3.0


@dataclass
class GeneralConfig:
    """General application settings."""

    verbose: bool = False
    transcription_prompt: str = (
        "Transcribe this audio verbatim. Return only the transcribed text "
        "without any commentary."
    )
    prompt_system_instruction: str = (
        "You are a helpful writing assistant. Apply the spoken instruction and "
        "return only the resulting text."
    )


_SECTIONS = ("api", "retry", "chunking", "tts", "history", "feedback", "general")


@dataclass
class Config:
    """Main configuration container."""

    api: ApiConfig = field(default_factory=ApiConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    tts: TtsConfig = field(default_factory=TtsConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    feedback: FeedbackConfig = field(default_factory=FeedbackConfig)
    general: GeneralConfig = field(default_factory=GeneralConfig)
    source: Path | None = None

    @classmethod
    def from_toml(
        cls,
        path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> "Config":
        """Load configuration from TOML file with environment overrides.

        Args:
            path: Explicit config file path. If None, searches in order:
                  1. VOICE_SHORTCUT_CONFIG env var
                  2. ./voice_shortcut.toml
                  3. ~/.config/voice_shortcut.toml
                  Built-in defaults are used when none of them exists.
            env: Environment variables for overrides (defaults to os.environ)

        Returns:
            Loaded and validated Config instance

        Raises:
            ConfigError: If an explicit config file is missing or validation fails
        """
        if env is None:
            env = os.environ

        resolved_path = _resolve_config_path(path, env)
        raw_data = _load_toml_file(resolved_path) if resolved_path else {}

        try:
            coerced = _coerce_config_values(raw_data, env)
            cfg = cls(
                api=ApiConfig(**coerced["api"]),
                retry=RetryConfig(**coerced["retry"]),
                chunking=ChunkingConfig(**coerced["chunking"]),
                tts=TtsConfig(**coerced["tts"]),
                history=HistoryConfig(**coerced["history"]),
                feedback=FeedbackConfig(**coerced["feedback"]),
                general=GeneralConfig(**coerced["general"]),
                source=resolved_path,
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration values: {e}") from e

        cfg.validate()
        return cfg

    def validate(self) -> None:
        """Validate value ranges.

        Raises:
            ConfigError: If any value is out of range
        """
        validate_api_config(self.api)
        validate_retry_config(self.retry)
        validate_chunking_config(self.chunking)

        if self.tts.max_text_length <= 0:
            raise ConfigError(f"tts.max_text_length must be positive, got {self.tts.max_text_length}")
        if self.tts.sample_rate <= 0:
            raise ConfigError(f"tts.sample_rate must be positive, got {self.tts.sample_rate}")
        if self.history.max_turns <= 0:
            raise ConfigError(f"history.max_turns must be positive, got {self.history.max_turns}")
        if self.history.expiry_seconds <= 0:
            raise ConfigError(
                f"history.expiry_seconds must be positive, got {self.history.expiry_seconds}"
            )
        if self.feedback.success_duration < 0 or self.feedback.error_duration < 0:
            raise ConfigError("feedback durations must be non-negative")


def _resolve_config_path(
    cli_path: Path | None,
    env: Mapping[str, str],
) -> Path | None:
    """Resolve configuration file path following search order.

    Search order:
    1. CLI-provided path
    2. VOICE_SHORTCUT_CONFIG environment variable
    3. ./voice_shortcut.toml (current directory)
    4. ~/.config/voice_shortcut.toml (user config directory)

    Returns:
        Path of the first existing file, or None to use defaults

    Raises:
        ConfigError: If an explicitly requested file does not exist
    """
    if cli_path:
        cli_path = Path(cli_path)
        if cli_path.exists():
            logger.info("Using config file: %s", cli_path.resolve())
            return cli_path.resolve()
        raise ConfigError(f"Config file not found: {cli_path}")

    if env_path := env.get(CONFIG_ENV_VAR):
        candidate = Path(env_path)
        if not candidate.exists():
            raise ConfigError(f"Config file from {CONFIG_ENV_VAR} not found: {candidate}")
        logger.info("Using config file: %s", candidate.resolve())
        return candidate.resolve()

    for candidate in (Path(CONFIG_FILENAME), Path.home() / ".config" / CONFIG_FILENAME):
        if candidate.exists():
            logger.info("Using config file: %s", candidate.resolve())
            return candidate.resolve()

    logger.debug("No config file found, using defaults")
    return None


def _load_toml_file(path: Path) -> dict:
    """Load and parse TOML configuration file.

    Args:
        path: Path to TOML file

    Returns:
        Parsed TOML data as dictionary

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e


def _coerce_config_values(raw_data: dict, env: Mapping[str, str]) -> dict:
    """Normalize raw TOML data for dataclass instantiation.

    Args:
        raw_data: Raw parsed TOML dictionary
        env: Environment variables for overrides

    Returns:
        Coerced dictionary ready for dataclass instantiation
    """
    unknown = set(raw_data) - set(_SECTIONS)
    if unknown:
        raise ConfigError(f"Unknown config section(s): {', '.join(sorted(unknown))}")

    coerced = {}
    for section in _SECTIONS:
        value = raw_data.get(section, {})
        if not isinstance(value, dict):
            raise ConfigError(f"Section [{section}] must be a table")
        coerced[section] = dict(value)

    chunking = coerced["chunking"]
    # Sizes may be given in MiB for readability
    for key in ("inline_size_threshold", "max_chunk_bytes"):
        mib_key = f"{key}_mib"
        if mib_key in chunking:
            chunking[key] = int(float(chunking.pop(mib_key)) * MIB)

    api = coerced["api"]
    if not api.get("api_key"):
        api["api_key"] = env.get("GEMINI_API_KEY") or env.get("GOOGLE_API_KEY")
    if not api.get("bearer_token"):
        api["bearer_token"] = env.get("GEMINI_BEARER_TOKEN")

    return coerced


def validate_api_config(api_cfg: ApiConfig) -> None:
    """Validate API configuration.

    Args:
        api_cfg: ApiConfig instance

    Raises:
        ConfigError: If API configuration is invalid
    """
    if not api_cfg.base_url.startswith(("http://", "https://")):
        raise ConfigError(f"api.base_url must be an http(s) URL, got {api_cfg.base_url!r}")
    if api_cfg.request_timeout <= 0:
        raise ConfigError(f"api.request_timeout must be positive, got {api_cfg.request_timeout}")
    if api_cfg.resource_timeout < api_cfg.request_timeout:
        raise ConfigError(
            "api.resource_timeout must be at least api.request_timeout "
            f"({api_cfg.resource_timeout} < {api_cfg.request_timeout})"
        )
    for name in ("transcription_model", "prompt_model", "tts_model"):
        if not getattr(api_cfg, name):
            raise ConfigError(f"api.{name} must not be empty")


def validate_retry_config(retry_cfg: RetryConfig) -> None:
    """Validate retry policy.

    Args:
        retry_cfg: RetryConfig instance

    Raises:
        ConfigError: If retry policy is invalid
    """
    if retry_cfg.max_attempts < 1:
        raise ConfigError(f"retry.max_attempts must be at least 1, got {retry_cfg.max_attempts}")
    if retry_cfg.base_delay < 0 or retry_cfg.max_delay < 0:
        raise ConfigError("retry delays must be non-negative")
    if retry_cfg.rate_limit_buffer < 0:
        raise ConfigError(
            f"retry.rate_limit_buffer must be non-negative, got {retry_cfg.rate_limit_buffer}"
        )
    if retry_cfg.max_rate_limit_waits < 0:
        raise ConfigError(
            f"retry.max_rate_limit_waits must be non-negative, got {retry_cfg.max_rate_limit_waits}"
        )


def validate_chunking_config(chunking_cfg: ChunkingConfig) -> None:
    """Validate chunking limits.

    Args:
        chunking_cfg: ChunkingConfig instance

    Raises:
        ConfigError: If limits are invalid
    """
    if chunking_cfg.max_chunk_duration <= 0:
        raise ConfigError(
            f"chunking.max_chunk_duration must be positive, got {chunking_cfg.max_chunk_duration}"
        )
    if chunking_cfg.max_chunk_bytes <= 0:
        raise ConfigError(
            f"chunking.max_chunk_bytes must be positive, got {chunking_cfg.max_chunk_bytes}"
        )
    if chunking_cfg.inline_size_threshold <= 0:
        raise ConfigError(
            "chunking.inline_size_threshold must be positive, "
            f"got {chunking_cfg.inline_size_threshold}"
        )
    if chunking_cfg.min_audio_duration < 0:
        raise ConfigError(
            f"chunking.min_audio_duration must be non-negative, got {chunking_cfg.min_audio_duration}"
        )


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from TOML file.

    Convenience wrapper around Config.from_toml().

    Args:
        path: Explicit config file path (optional)
        env: Environment variables (defaults to os.environ)

    Returns:
        Loaded Config instance

    Raises:
        ConfigError: If config cannot be loaded or validated
    """
    return Config.from_toml(path, env=env)
