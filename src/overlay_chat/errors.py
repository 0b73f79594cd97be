"""Error taxonomy for a chat turn.

Only the errors deriving from ``ChatError`` abort a turn; each carries a
short ``user_message`` that ends up in the assistant-role error bubble.
``ToolExecutionError`` never leaves the executor: it is turned into a
tool result so the model can react to it.
"""

from __future__ import annotations


class ChatError(RuntimeError):
    """Base class for failures that end the current turn."""

    user_message: str = "Unknown error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.user_message)


class ResponseTooLarge(ChatError):
    """A size ceiling on streamed content would be exceeded."""

    user_message = "Response too large"

    def __init__(self, what: str, limit: int, attempted: int) -> None:
        super().__init__(
            f"{what} would grow to {attempted} characters (limit {limit})",
        )
        self.what = what
        self.limit = limit
        self.attempted = attempted


class RequestTimeout(ChatError):
    """The request did not finish within the configured timeout."""

    def __init__(self, seconds: float) -> None:
        self.seconds = seconds
        self.user_message = f"Timeout: request exceeded {seconds:g} seconds"
        super().__init__(self.user_message)


class ConnectionFailed(ChatError):
    """The inference server could not be reached."""

    user_message = "Network error. Check the URL in /settings"


class UpstreamHttpError(ChatError):
    """The inference server answered with a non-2xx status."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        if status_code == 429:
            self.user_message = "Rate limit exceeded. Wait a moment"
        elif status_code >= 500:
            self.user_message = (
                f"Server error ({status_code}). Inference server unavailable"
            )
        else:
            self.user_message = detail or f"HTTP error {status_code}"
        super().__init__(f"HTTP {status_code}: {detail or self.user_message}")


class ToolRecursionLimitExceeded(ChatError):
    """The model kept requesting tools past the allowed continuation depth."""

    def __init__(self, depth: int, limit: int) -> None:
        self.depth = depth
        self.limit = limit
        self.user_message = (
            f"Tool recursion limit reached ({limit} continuations). Stopping."
        )
        super().__init__(self.user_message)


class ToolExecutionError(Exception):
    """A single tool failed; converted into a tool result, never raised past it."""

    def __init__(self, tool_name: str, cause: BaseException | str) -> None:
        self.tool_name = tool_name
        self.cause = cause
        if isinstance(cause, BaseException):
            detail = str(cause) or type(cause).__name__
        else:
            detail = cause
        super().__init__(detail)
