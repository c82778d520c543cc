"""Exceptions raised by the MediaConnect client."""


class MediaConnectError(Exception):
    """Base class for all MediaConnect errors."""


class ServerUnreachableError(MediaConnectError):
    """Raised when an address cannot be reached or does not answer in time."""

    def __init__(self, message: str, address: str | None = None):
        self.address = address
        super().__init__(message)


class AuthenticationInvalidError(MediaConnectError):
    """Raised when a server rejects the stored access token."""


class CloudAuthError(MediaConnectError):
    """Raised when the cloud service rejects a sign-in or a cloud token."""


class MalformedResponseError(MediaConnectError):
    """Raised when a response body cannot be parsed."""


class HttpStatusError(MediaConnectError):
    """Raised for HTTP error statuses that have no more specific meaning."""

    def __init__(self, status: int, url: str):
        self.status = status
        self.url = url
        super().__init__(f"HTTP {status} from {url}")
