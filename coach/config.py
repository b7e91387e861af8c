"""Configuration loading (AppConfig, ConfigLoader)."""

import logging
import os
from typing import Any, Dict, Literal, Optional

import toml
from pydantic import AliasChoices, BaseModel, Field, PrivateAttr, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Standard logging for the config phase; structlog is configured from the loaded values.
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
config_logger = logging.getLogger(__name__)

# --- Pydantic Models for Config Structure ---

class PlannerConfig(BaseModel):
    model: str = Field("openai/gpt-4o-mini", description="Model identifier sent to the chat completions endpoint.")
    max_tool_rounds: int = Field(5, ge=1, le=20, description="Hard cap on model/tool rounds per turn.")
    round_timeout_seconds: float = Field(30.0, gt=0, description="Deadline for a single streamed model round.")
    turn_timeout_seconds: float = Field(60.0, gt=0, description="Deadline for the whole turn, fallback included.")
    temperature: Optional[float] = None

class ProviderConfig(BaseModel):
    api_key_env_var: Optional[str] = "OPENROUTER_API_KEY"
    base_url: Optional[str] = Field("https://openrouter.ai/api/v1", description="OpenAI-compatible endpoint. None uses api.openai.com.")
    default_headers: Dict[str, str] = Field(default_factory=dict)
    _api_key: Optional[str] = PrivateAttr(default=None) # Loaded from env var

class RedisConfig(BaseSettings):
    # Allow overriding via REDIS_URL env var
    url: str = Field("redis://localhost:6379/0", validation_alias=AliasChoices("url", "REDIS_URL"))

class JournalConfig(BaseModel):
    backend: Literal["memory", "redis"] = "memory"
    key_prefix: str = Field("coach:journal", description="Prefix for every Redis key written by the journal store.")
    redis: Optional[RedisConfig] = None

class StreamConfig(BaseModel):
    padding_bytes: int = Field(2048, ge=0, description="Size of the comment frame sent after 'start' to defeat proxy buffering.")

class RateLimitConfig(BaseModel):
    enabled: bool = True
    turns_per_window: int = Field(20, ge=1, description="Coach turns a user may start per window.")
    window_seconds: float = Field(60.0, gt=0, description="Length of the fixed rate-limit window.")
    key_prefix: str = Field("coach:ratelimit", description="Prefix for rate-limit counters when the journal backend is redis.")

class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_file='.env',
        env_nested_delimiter='__',
        populate_by_name=True, # TOML may use log_level as well as LOG_LEVEL
        extra='ignore' # Ignore extra fields from files/env
    )

    # Top-level settings
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_json: bool = Field(default=False, validation_alias="LOG_JSON") # Set to true for JSON logs
    host: str = "127.0.0.1"
    port: int = 8000
    reload: bool = False # Set True for Uvicorn auto-reload (dev only)

    planner: PlannerConfig = Field(default_factory=PlannerConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    journal: JournalConfig = Field(default_factory=JournalConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)

    @model_validator(mode='after')
    def check_redis_config(self):
        # Redis journal needs a connection section; fall back to defaults / REDIS_URL.
        if self.journal.backend == "redis" and self.journal.redis is None:
            config_logger.warning("Journal backend is 'redis' but Redis is not explicitly configured. Using default Redis config.")
            self.journal.redis = RedisConfig()
        return self

    def load_secrets(self) -> None:
        """Reads the provider API key from the environment variable named in config.

        A missing key is not an error: the turn service runs the deterministic fallback instead.
        """
        env_var = self.provider.api_key_env_var
        if env_var:
            self.provider._api_key = os.environ.get(env_var) or None

# --- Config Loader Class ---

class ConfigError(Exception):
    """Custom exception for configuration loading errors."""
    pass

class ConfigLoader:
    def __init__(self, config_path: str = "config.toml"):
        self.config_path = config_path
        self._config: Optional[AppConfig] = None
        self._raw_config: Optional[Dict[str, Any]] = None
        self.load_config()

    def load_config(self):
        """Loads configuration from the TOML file (if present), validates it and loads secrets."""
        config_logger.info(f"Loading configuration from: {self.config_path}")
        try:
            if os.path.exists(self.config_path):
                with open(self.config_path, 'r') as f:
                    self._raw_config = toml.load(f)
            else:
                config_logger.info(f"No config file at {self.config_path}; using environment and defaults.")
                self._raw_config = {}

            self._config = AppConfig(**self._raw_config)
            self._config.load_secrets()
            config_logger.info(
                f"Configuration loaded: journal_backend={self._config.journal.backend}, "
                f"model={self._config.planner.model}, provider_key_present={self._config.provider._api_key is not None}"
            )

        except toml.TomlDecodeError as e:
            config_logger.error(f"Error decoding TOML file {self.config_path}: {e}")
            raise ConfigError(f"Invalid TOML format: {e}") from e
        except ValidationError as e:
            config_logger.error(f"Configuration validation error: {e}")
            raise ConfigError(f"Invalid configuration structure: {e}") from e

    def get_config(self) -> AppConfig:
        """Returns the loaded and validated configuration object."""
        if self._config is None:
            config_logger.warning("Config accessed before successful loading. Attempting reload.")
            self.load_config()
            if self._config is None:
                raise ConfigError("Configuration could not be loaded.")
        return self._config
