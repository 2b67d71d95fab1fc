# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/auth_broker/errors.py

from typing import Optional


class AuthorizationError(Exception):
    """Base class for every failure of an authorization attempt."""


class UserDeclinedError(AuthorizationError):
    """The consent dialog or the continue gate was declined or dismissed."""


class CodeExchangeTimeoutError(AuthorizationError, TimeoutError):
    """No matching redirect arrived before the exchange timeout."""

    def __init__(self, message: str = "Request timed out"):
        super().__init__(message)


class AuthorizationCancelledError(AuthorizationError):
    """The wait was aborted through its cancellation signal or by disposal."""

    def __init__(self, message: str = "Operation cancelled by the user"):
        super().__init__(message)


class MissingCodeError(AuthorizationError):
    def __init__(self, message: str = "Missing code"):
        super().__init__(message)


class MissingNonceError(AuthorizationError):
    def __init__(self, message: str = "Missing nonce"):
        super().__init__(message)


class UnmatchedRedirectError(AuthorizationError):
    """A redirect reached a listener whose flow does not own its nonce."""


class ProtocolViolationError(AuthorizationError):
    """The backend answered with a payload that breaks the propagation contract."""


class PropagationUnsuccessfulError(AuthorizationError):
    """The backend explicitly reported that propagation failed."""


class MalformedRedirectRequestError(Exception):
    """An HTTP request on the loopback listener is unusable as a redirect."""


class InterceptorDisposedError(RuntimeError):
    pass


class ColabRequestError(Exception):
    """Non-successful response from the Colab REST API."""

    def __init__(
        self,
        message: str,
        status_code: int,
        url: str,
        response_body: Optional[str] = None,
    ):
        self.status_code = status_code
        self.url = url
        self.response_body = response_body
        super().__init__(message)
