# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/auth_broker/__init__.py

from .broker import AuthBroker, CaptureMode
from .capture import LoopbackHttpCapture, UriSchemeCapture
from .consent import AuthState, AuthorizationAttempt, ConsentOrchestrator
from .correlator import (
    EXCHANGE_TIMEOUT_SECONDS,
    CaptureEvent,
    CaptureEventStream,
    CodeCorrelator,
)
from .errors import (
    AuthorizationCancelledError,
    AuthorizationError,
    CodeExchangeTimeoutError,
    ColabRequestError,
    InterceptorDisposedError,
    MalformedRedirectRequestError,
    MissingCodeError,
    MissingNonceError,
    PropagationUnsuccessfulError,
    ProtocolViolationError,
    UnmatchedRedirectError,
    UserDeclinedError,
)
from .interceptor import ProtocolMessageInterceptor, ReplySessionMode
from .models import AuthType, CredentialsPropagationResult, ReplyFrame
from .propagation import CredentialPropagationClient
from .transport import AiohttpWebSocketTransport, MessageTransport, connect_kernel_channel

__all__ = [
    "AuthBroker",
    "CaptureMode",
    "LoopbackHttpCapture",
    "UriSchemeCapture",
    "AuthState",
    "AuthorizationAttempt",
    "ConsentOrchestrator",
    "EXCHANGE_TIMEOUT_SECONDS",
    "CaptureEvent",
    "CaptureEventStream",
    "CodeCorrelator",
    "AuthorizationCancelledError",
    "AuthorizationError",
    "CodeExchangeTimeoutError",
    "ColabRequestError",
    "InterceptorDisposedError",
    "MalformedRedirectRequestError",
    "MissingCodeError",
    "MissingNonceError",
    "PropagationUnsuccessfulError",
    "ProtocolViolationError",
    "UnmatchedRedirectError",
    "UserDeclinedError",
    "ProtocolMessageInterceptor",
    "ReplySessionMode",
    "AuthType",
    "CredentialsPropagationResult",
    "ReplyFrame",
    "CredentialPropagationClient",
    "AiohttpWebSocketTransport",
    "MessageTransport",
    "connect_kernel_channel",
]
