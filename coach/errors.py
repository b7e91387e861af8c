class CoachError(Exception):
    """Base for all custom exceptions."""

class ConfigurationError(CoachError):
    """Indicates an error in the application's configuration."""
    pass

class ToolNotFoundError(CoachError):
    def __init__(self, tool_name: str):
        super().__init__(f"Tool '{tool_name}' is not registered.")
        self.tool_name = tool_name

class ToolExecutionError(CoachError):
    def __init__(self, tool_name: str, original_error: Exception):
        super().__init__(f"Error executing tool '{tool_name}'. Original error: {original_error!r}")
        self.tool_name = tool_name
        self.original_error = original_error

class TurnCancelledError(CoachError):
    def __init__(self, reason: str = "Turn aborted."):
        super().__init__(reason)
        self.reason = reason

class ActivityStoreError(CoachError):
    """Raised by the activity store when a mutation or lookup fails."""
    pass

class JournalError(CoachError):
    """Raised by a journal store when an action record cannot be written or read."""
    pass

class RateLimiterError(CoachError):
    """Raised when the rate limiter's backing store cannot be reached."""
    pass
