"""Exceptions raised by model backends."""

class ProviderError(Exception):
    """Base class for model backend errors."""

    def __init__(self, message: str, provider: str = "openai"):
        super().__init__(message)
        self.provider = provider

class AuthenticationError(ProviderError):
    """The backend rejected our credentials."""
    pass

class RateLimitError(ProviderError):
    """The backend asked us to slow down. Retried when opening a stream."""
    pass

class ConfigurationError(ProviderError):
    """The backend could not be constructed from configuration."""
    pass

class CallError(ProviderError):
    """The backend rejected the request itself (bad model id, bad parameters)."""
    pass

class StreamInterruptedError(ProviderError):
    """A stream that had started failed before the round completed."""
    pass
