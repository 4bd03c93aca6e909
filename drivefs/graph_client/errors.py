from typing import Optional


class GraphAPIError(Exception):
    """Raised when a Graph API call fails or returns an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(GraphAPIError):
    """Raised when a path or item does not exist locally or remotely."""

    def __init__(self, message: str, status_code: Optional[int] = 404):
        super().__init__(message, status_code)


class AuthError(GraphAPIError):
    """Raised when no usable access token can be obtained."""
