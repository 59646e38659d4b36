"""Error taxonomy for the relay."""

from typing import Optional


class RelayError(Exception):
    """Base error. Carries the HTTP status used when it can still be reported."""

    status_code = 500
    code = "internal"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotReady(RelayError):
    """The browser session has not finished starting."""

    status_code = 503
    code = "not_ready"

    def __init__(self, message: str = "The headless browser is not ready. Try again in a moment."):
        super().__init__(message)


class InvalidRequest(RelayError):
    status_code = 400
    code = "invalid_request"


class Unauthenticated(RelayError):
    """Session cookie missing or unreadable inside the page."""

    code = "unauthenticated"


class UpstreamError(RelayError):
    """The upstream streaming endpoint answered with a non-success status."""

    code = "upstream_error"

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class StreamError(RelayError):
    """Network, decoding or page failure while the injected task was running."""

    code = "stream_error"


class StartupFailure(RelayError):
    """Browser launch, navigation or readiness failed. Fatal to the process."""

    code = "startup_failure"
