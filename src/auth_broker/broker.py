# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/auth_broker/broker.py

import logging
from enum import Enum
from typing import List, Optional

from .capture.loopback import LoopbackHttpCapture
from .capture.uri_scheme import DEFAULT_AUTHORITY, DEFAULT_SCHEME, UriSchemeCapture
from .consent import CaptureFactory, ConsentOrchestrator
from .correlator import CodeCorrelator
from .interceptor import ProtocolMessageInterceptor, ReplySessionMode
from .propagation import CredentialPropagationClient
from .transport import MessageTransport
from .ui import (
    BrowserLauncher,
    ConsentPrompter,
    ConsoleConsentPrompter,
    ConsoleNotifier,
    Notifier,
    SystemBrowserLauncher,
)

lib_logger = logging.getLogger("auth_broker")


class CaptureMode(str, Enum):
    NONE = "none"
    LOOPBACK = "loopback"
    URI = "uri"


class AuthBroker:
    """
    Wires the broker together for one Colab server.

    Owns one :class:`CodeCorrelator` for its lifetime. Every attached
    transport gets its own interceptor; ``aclose`` disposes all of them and
    rejects whatever waits are still pending.
    """

    def __init__(
        self,
        client: CredentialPropagationClient,
        endpoint: str,
        server_label: str = "Colab server",
        capture_mode: CaptureMode = CaptureMode.NONE,
        session_mode: ReplySessionMode = ReplySessionMode.CAPTURED,
        prompter: Optional[ConsentPrompter] = None,
        browser: Optional[BrowserLauncher] = None,
        notifier: Optional[Notifier] = None,
        uri_scheme: str = DEFAULT_SCHEME,
        uri_authority: str = DEFAULT_AUTHORITY,
        loopback_target: Optional[str] = None,
        correlator: Optional[CodeCorrelator] = None,
    ):
        self.capture_mode = CaptureMode(capture_mode)
        self.session_mode = ReplySessionMode(session_mode)
        self.loopback_target = loopback_target
        self.correlator = correlator or CodeCorrelator()
        self.notifier = notifier or ConsoleNotifier()
        self.uri_capture = UriSchemeCapture(
            self.correlator.events, scheme=uri_scheme, authority=uri_authority
        )
        self.orchestrator = ConsentOrchestrator(
            client=client,
            endpoint=endpoint,
            prompter=prompter or ConsoleConsentPrompter(),
            browser=browser or SystemBrowserLauncher(),
            server_label=server_label,
            correlator=self.correlator if self.capture_mode != CaptureMode.NONE else None,
            capture_factory=self._capture_factory(),
        )
        self._interceptors: List[ProtocolMessageInterceptor] = []

    def _capture_factory(self) -> Optional[CaptureFactory]:
        if self.capture_mode == CaptureMode.LOOPBACK:
            return lambda nonce, redirect_uri: LoopbackHttpCapture(
                self.correlator.events,
                target_uri=self.loopback_target or redirect_uri,
                expected_nonce=nonce,
            )
        if self.capture_mode == CaptureMode.URI:
            # One process-wide dispatcher serves every attempt.
            return lambda nonce, redirect_uri: self.uri_capture
        return None

    def handle_uri(self, uri: str) -> bool:
        """Entry point for redirects the host routes to the custom URI scheme."""
        return self.uri_capture.handle_uri(uri)

    def attach(self, transport: MessageTransport) -> ProtocolMessageInterceptor:
        interceptor = ProtocolMessageInterceptor(
            transport,
            self.orchestrator,
            notifier=self.notifier,
            session_mode=self.session_mode,
        )
        self._interceptors.append(interceptor)
        lib_logger.debug(
            f"Interceptor attached (capture={self.capture_mode.value}, "
            f"session={self.session_mode.value})"
        )
        return interceptor

    async def aclose(self) -> None:
        for interceptor in self._interceptors:
            await interceptor.dispose()
        self._interceptors.clear()
        self.correlator.close()
