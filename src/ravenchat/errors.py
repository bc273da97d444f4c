"""Exception types and the user-facing error classifier."""

import math
import re
from typing import Any, Dict, Optional


class RavenChatError(Exception):
    """Base class for all RavenChat errors."""

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        self.details = details or {}


class ConfigurationError(RavenChatError):
    """Raised when settings are invalid or a provider cannot be configured."""


class TransportError(RavenChatError):
    """Raised when the provider cannot be reached at all."""

    def __init__(self, message: str, **kwargs):
        if not message.startswith("Network error"):
            message = f"Network error: {message}"
        super().__init__(message, **kwargs)


class ProviderHTTPError(RavenChatError):
    """Raised when the provider answers with a non-2xx status.

    The message is ``"<status>: <detail>"`` so that status codes can be found
    by substring inspection, matching how providers report their own errors.
    """

    def __init__(self, status_code: int, detail: Optional[str] = None, **kwargs):
        self.status_code = status_code
        self.detail = detail or f"HTTP {status_code}"
        super().__init__(f"{status_code}: {self.detail}", **kwargs)


class MalformedFragmentError(RavenChatError, ValueError):
    """A ``data:`` payload that is not complete JSON.

    Stream chunks can cut an event in half; such fragments are expected and
    discarded by the stream reader, never surfaced to the user.
    """


# --- Classification ---

INVALID_KEY_MESSAGE = "Invalid API key. Please check your API key in settings."
MODEL_RATE_LIMIT_MESSAGE = (
    "Model rate limit exceeded. This model has strict limits (6 queries/minute). "
    "Please wait a minute or switch to a different model in settings."
)
TPM_RATE_LIMIT_TEMPLATE = (
    "Rate limit hit! Please wait {seconds} seconds or:\n"
    "- Switch to a different model\n"
    "- Switch to another provider in settings\n"
    "- Reduce message length to use fewer tokens"
)
RATE_LIMIT_MESSAGE = (
    "Rate limit exceeded. Try switching providers in settings or wait a moment."
)
SERVER_ERROR_MESSAGE = "Server error. Try switching providers in settings."
NETWORK_ERROR_MESSAGE = "Network error. Please check your internet connection."
SMALL_CONTEXT_MESSAGE = (
    "Model context limit exceeded. This model has a very small context window. "
    "Try a much shorter message or switch to a different model with larger "
    "context in settings."
)
CONTEXT_LENGTH_MESSAGE = (
    "Context length error. This model has limited context. Try a shorter "
    "message or switch to a different model in settings."
)
GENERIC_ERROR_TEMPLATE = "Error: {error}"

DEFAULT_RETRY_SECONDS = 30

_RETRY_AFTER = re.compile(r"try again in ([\d.]+)s")
_CONTEXT_MARKERS = ("max_new_tokens", "context", "tokens", "Input validation error")
_SMALL_CONTEXT_MARKERS = ("532", "400")


def _retry_seconds(text: str) -> int:
    match = _RETRY_AFTER.search(text)
    if not match:
        return DEFAULT_RETRY_SECONDS
    try:
        return math.ceil(float(match.group(1)))
    except ValueError:
        return DEFAULT_RETRY_SECONDS


def classify_error(error: Any, model: str = "") -> str:
    """Turns a failed send into one actionable message for the user.

    Parameters
    ----------
    error : Any
        The exception (or plain message) that ended the attempt.
    model : str
        The model identifier that was active for the attempt.

    Returns
    -------
    str
        The message to display in place of the assistant's answer.
    """
    text = error.message if isinstance(error, RavenChatError) else str(error)

    if "401" in text or "Unauthorized" in text:
        return INVALID_KEY_MESSAGE
    if "429" in text:
        if "model-specific" in text or "maximum rate limit for this model" in text:
            return MODEL_RATE_LIMIT_MESSAGE
        if "tokens per minute" in text or "TPM" in text:
            return TPM_RATE_LIMIT_TEMPLATE.format(seconds=_retry_seconds(text))
        return RATE_LIMIT_MESSAGE
    if any(code in text for code in ("500", "502", "503")):
        return SERVER_ERROR_MESSAGE
    if "Network" in text:
        return NETWORK_ERROR_MESSAGE
    if any(marker in text for marker in _CONTEXT_MARKERS):
        if any(marker in text for marker in _SMALL_CONTEXT_MARKERS) or "free" in model:
            return SMALL_CONTEXT_MESSAGE
        return CONTEXT_LENGTH_MESSAGE
    return GENERIC_ERROR_TEMPLATE.format(error=text)
