"""Error taxonomy shared by the pillars."""

from typing import Optional

import openai

# Lower-cased fragments that mark a transport failure as a usage-limit rejection.
QUOTA_MARKERS = ("429", "quota", "too many requests", "rate limit", "rate_limit")


class DealPilotError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(DealPilotError):
    """Raised when required settings, such as an API key, are missing."""


class ToolError(DealPilotError):
    """Base class for failures while resolving a tool call."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class UnknownTool(ToolError):
    def __init__(self, tool_name: str):
        super().__init__(tool_name, f"Tool '{tool_name}' not found.")


class InvalidArguments(ToolError):
    def __init__(self, tool_name: str, detail: str):
        super().__init__(tool_name, f"Invalid arguments for '{tool_name}': {detail}")
        self.detail = detail


class TransportError(DealPilotError):
    """A failure talking to a model backend."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        provider: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider


class QuotaExceeded(TransportError):
    """The backend rejected the request because of usage limits."""


def is_quota_error(error: BaseException) -> bool:
    """Check whether an exception signals a quota or rate-limit rejection.

    Structured signals (HTTP status, SDK exception type) are checked first;
    the message text is only a fallback for transports that do not expose them.
    """
    if isinstance(error, QuotaExceeded):
        return True
    if isinstance(error, openai.RateLimitError):
        return True
    if getattr(error, "status_code", None) == 429:
        return True
    error_str = str(error).lower()
    return any(marker in error_str for marker in QUOTA_MARKERS)


def classify_error(
    error: BaseException, provider: Optional[str] = None
) -> TransportError:
    """Translate an arbitrary backend exception into the transport taxonomy."""
    if isinstance(error, TransportError):
        return error
    status_code = getattr(error, "status_code", None)
    error_class = QuotaExceeded if is_quota_error(error) else TransportError
    return error_class(str(error), status_code=status_code, provider=provider)
