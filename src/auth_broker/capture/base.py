# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/auth_broker/capture/base.py

from typing import Mapping, Optional, Protocol
from urllib.parse import parse_qs

from ..correlator import CaptureEvent


class RedirectCaptureHost(Protocol):
    """Something able to receive an OAuth redirect out-of-band."""

    @property
    def redirect_uri(self) -> str:
        """Where the provider should send the browser back to."""
        ...

    async def open(self) -> None:
        ...

    async def close(self) -> None:
        ...


def nonce_from_state(state: Optional[str]) -> Optional[str]:
    """Extract ``nonce`` from a ``state`` value of the form ``nonce=<value>``."""
    return _state_field(state, "nonce")


def original_state(state: Optional[str]) -> Optional[str]:
    """The backend's own ``state`` carried next to the nonce, if any."""
    return _state_field(state, "state")


def _state_field(state: Optional[str], name: str) -> Optional[str]:
    if not state:
        return None
    values = parse_qs(state).get(name)
    return values[0] if values else None


def event_from_query(query: Mapping[str, str]) -> CaptureEvent:
    """
    Build a capture event from redirect query parameters.

    The nonce is read from ``nonce`` directly, falling back to the one
    embedded in ``state``.
    """
    state = query.get("state")
    return CaptureEvent(
        code=query.get("code") or None,
        nonce=query.get("nonce") or nonce_from_state(state),
        scope=query.get("scope") or None,
        state=state,
    )
