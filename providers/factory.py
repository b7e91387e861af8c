"""Builds the configured model backend, if any."""

from typing import Optional

import structlog

from coach.config import AppConfig
from providers.base import ModelBackend
from providers.exceptions import ConfigurationError, ProviderError
from providers.openai import OpenAIBackend

log = structlog.get_logger(__name__)

class ProviderFactory:
    """
    Creates and caches the single model backend for the process.

    A missing API key is not an error: `get_backend` returns None and the turn service
    answers every turn with the deterministic fallback.
    """
    def __init__(self, config: AppConfig):
        """
        Initializes the factory with application configuration.

        Args:
            config: The loaded AppConfig object (secrets already resolved).
        """
        if config is None or config.provider is None:
            raise ConfigurationError("Provider configuration is missing or invalid.")
        self.config: AppConfig = config
        self._backend: Optional[ModelBackend] = None

    def get_backend(self) -> Optional[ModelBackend]:
        """
        Returns the cached backend, building it on first use.

        Raises:
            ProviderError: If a key is present but the client cannot be constructed.
        """
        if self._backend is not None:
            return self._backend

        provider = self.config.provider
        api_key = provider._api_key
        if not api_key:
            log.info(f"No API key in '{provider.api_key_env_var}'; model backend disabled, fallback mode only.")
            return None

        try:
            log.info(f"Instantiating model backend for model: {self.config.planner.model}")
            self._backend = OpenAIBackend(
                api_key=api_key,
                model=self.config.planner.model,
                base_url=provider.base_url,
                default_headers=provider.default_headers,
                temperature=self.config.planner.temperature,
            )
        except ProviderError:
            raise
        except Exception as e:
            log.exception(f"Failed to instantiate model backend: {e}")
            raise ProviderError(f"Failed to create model backend: {e}") from e
        return self._backend

    async def close_all(self) -> None:
        """Closes the cached backend, if one was built."""
        if self._backend is None:
            return
        try:
            await self._backend.close()
            log.info("Model backend closed.")
        except Exception as e:
            log.exception(f"Failed to close model backend: {e}")
        self._backend = None
