# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/auth_broker/capture/uri_scheme.py

import logging
from urllib.parse import parse_qsl, urlsplit

from ..correlator import CaptureEventStream
from .base import event_from_query

lib_logger = logging.getLogger("auth_broker")

DEFAULT_SCHEME = "vscode"
DEFAULT_AUTHORITY = "googlecolab.colab"


class UriSchemeCapture:
    """
    Forwards redirects routed to a registered custom URI scheme.

    The host environment owns the scheme registration and calls
    :meth:`handle_uri` for every matching URI, e.g.
    ``vscode://googlecolab.colab?code=<code>&nonce=<nonce>&scope=<scope>``.
    No listener is owned here, so ``open``/``close`` do nothing.
    """

    def __init__(
        self,
        events: CaptureEventStream,
        scheme: str = DEFAULT_SCHEME,
        authority: str = DEFAULT_AUTHORITY,
    ):
        self._events = events
        self.scheme = scheme
        self.authority = authority

    @property
    def redirect_uri(self) -> str:
        return f"{self.scheme}://{self.authority}"

    async def open(self) -> None:
        return None

    async def close(self) -> None:
        return None

    def handle_uri(self, uri: str) -> bool:
        """Publish the redirect carried by ``uri``. Returns True if a wait resolved."""
        parts = urlsplit(uri)
        if parts.scheme != self.scheme:
            lib_logger.warning(f"Ignoring URI with unexpected scheme '{parts.scheme}'")
            return False
        query = dict(parse_qsl(parts.query, keep_blank_values=True))
        return self._events.publish(event_from_query(query))
