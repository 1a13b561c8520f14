"""
Error types shared by docbus components.
"""

# Failure codes carried in bus replies
NO_HANDLERS = -1
REQUEST_TIMEOUT = -2
BAD_REQUEST = 400
INTERNAL_ERROR = 500


class DocBusError(Exception):
    """Base class for docbus errors."""


class ConfigurationError(DocBusError):
    """Invalid or inconsistent configuration. Fatal at startup."""


class ReplyError(DocBusError):
    """
    A failed request/reply hop.

    Raised by handlers to fail a request, and raised by MessageBus.request()
    when the remote side replied with a failure.

    Attributes:
        code: Failure code sent back to the requester
        message: Human readable failure message
    """

    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code}, message={self.message!r})"


class GatewayError(ReplyError):
    """A document store operation failed."""

    def __init__(self, message: str, code: int = INTERNAL_ERROR):
        super().__init__(code, message)
