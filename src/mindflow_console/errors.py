# src/mindflow_console/errors.py

from typing import Optional


class ConsoleError(Exception):
    """Base class for errors raised by the console."""


class SignInError(ConsoleError):
    """A sign-in attempt failed. The session controller surfaces every subclass the same way."""


class AuthenticationFailure(SignInError):
    def __init__(self, detail: str, status_code: Optional[int] = None):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class NetworkFailure(SignInError):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class ApiRequestError(ConsoleError):
    """A backend call made on behalf of a panel failed."""

    def __init__(self, detail: str, status_code: Optional[int] = None):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class MissingCredentialPrecondition(ConsoleError):
    """A panel fetch was attempted without a bearer token."""

    def __init__(self, detail: str = "Provide a bearer token to call the API."):
        self.detail = detail
        super().__init__(detail)
