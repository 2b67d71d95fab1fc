# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/auth_broker/capture/__init__.py

from .base import RedirectCaptureHost, event_from_query, nonce_from_state
from .loopback import LoopbackHttpCapture, load_favicon
from .uri_scheme import UriSchemeCapture

__all__ = [
    "RedirectCaptureHost",
    "LoopbackHttpCapture",
    "UriSchemeCapture",
    "event_from_query",
    "nonce_from_state",
    "load_favicon",
]
