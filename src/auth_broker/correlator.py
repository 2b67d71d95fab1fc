# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/auth_broker/correlator.py
"""
Correlates OAuth redirects captured out-of-band with pending authorization waits.

Capture hosts publish every redirect they see as a :class:`CaptureEvent` on a
:class:`CaptureEventStream`. A :class:`CodeCorrelator` keeps a table of waits
keyed by scope, each holding one future per outstanding nonce, and subscribes
to the stream once per scope while that scope has anything pending.

Matching policy for a published event:

- The event is delivered to every pending scope whose tokens it covers, so a
  provider echoing the scopes reordered or with extra grants still matches.
  An event that names no scope is delivered to every scope with pending
  waits. An event naming no pending scope is dropped.
- A well-formed event resolves the wait owning its nonce. An unknown nonce
  is ignored and every wait stays pending.
- A malformed event (no code, or no nonce) rejects every wait pending on the
  scope it was delivered to, since it cannot be attributed to a single nonce.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

from .errors import (
    AuthorizationCancelledError,
    CodeExchangeTimeoutError,
    MissingCodeError,
    MissingNonceError,
)

lib_logger = logging.getLogger("auth_broker")

EXCHANGE_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True)
class CaptureEvent:
    """Query parameters of one captured redirect."""

    code: Optional[str] = None
    nonce: Optional[str] = None
    scope: Optional[str] = None
    state: Optional[str] = None


CaptureHandler = Callable[[CaptureEvent], bool]


class CaptureEventStream:
    """
    In-process fan-out of capture events.

    Handlers return True when they consumed the event (resolved a wait).
    """

    def __init__(self):
        self._handlers: List[CaptureHandler] = []

    def subscribe(self, handler: CaptureHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: CaptureEvent) -> bool:
        consumed = False
        # Handlers may unsubscribe themselves while running.
        for handler in list(self._handlers):
            if handler(event):
                consumed = True
        return consumed

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)


# =============================================================================
# Per-event outcomes
# =============================================================================


@dataclass(frozen=True)
class Resolve:
    nonce: str
    code: str


@dataclass(frozen=True)
class Reject:
    error: Exception


@dataclass(frozen=True)
class Ignore:
    reason: str


MatchOutcome = Union[Resolve, Reject, Ignore]


def scope_covers(granted: str, requested: str) -> bool:
    """True when the space separated ``granted`` scopes include all of ``requested``."""
    return set(requested.split()) <= set(granted.split())


def match_event(event: CaptureEvent, pending_nonces: List[str]) -> MatchOutcome:
    """Decide what a capture event means for the nonces pending on one scope."""
    if not event.code:
        return Reject(MissingCodeError())
    if not event.nonce:
        return Reject(MissingNonceError())
    if event.nonce not in pending_nonces:
        # Typically a redirect for an attempt that already settled, or one
        # started elsewhere; keep waiting for the right one.
        return Ignore(f"nonce {event.nonce!r} is not pending")
    return Resolve(nonce=event.nonce, code=event.code)


class CodeCorrelator:
    """
    Matches captured redirects to the waits that triggered them.

    Several waits may be pending for the same scope at once; they share one
    stream subscription but resolve independently by nonce.
    """

    def __init__(
        self,
        events: Optional[CaptureEventStream] = None,
        timeout: float = EXCHANGE_TIMEOUT_SECONDS,
    ):
        self.events = events or CaptureEventStream()
        self._timeout = timeout
        self._pending: Dict[str, Dict[str, asyncio.Future]] = {}
        self._subscriptions: Dict[str, Callable[[], None]] = {}
        self._closed = False

    def pending_nonces(self, scope: str) -> List[str]:
        return list(self._pending.get(scope, {}))

    def is_subscribed(self, scope: str) -> bool:
        return scope in self._subscriptions

    async def wait_for_code(
        self,
        scope: str,
        nonce: str,
        cancel: Optional[asyncio.Event] = None,
    ) -> str:
        """
        Wait for the authorization code addressed to ``nonce`` under ``scope``.

        Raises:
            CodeExchangeTimeoutError: nothing matched within the timeout.
            AuthorizationCancelledError: ``cancel`` fired or the correlator closed.
            MissingCodeError, MissingNonceError: a malformed redirect arrived.
        """
        if not scope or not isinstance(scope, str):
            raise ValueError("scope must be a non-empty string")
        if not nonce or not isinstance(nonce, str):
            raise ValueError("nonce must be a non-empty string")
        if self._closed:
            raise AuthorizationCancelledError("Code correlator is closed")

        waits = self._pending.setdefault(scope, {})
        if nonce in waits:
            raise ValueError(f"nonce {nonce!r} is already pending for scope {scope!r}")

        future = asyncio.get_running_loop().create_future()
        waits[nonce] = future
        if scope not in self._subscriptions:
            self._subscriptions[scope] = self.events.subscribe(
                lambda event: self._handle_event(scope, event)
            )
            lib_logger.debug(f"Subscribed to redirect captures for scope '{scope}'")

        cancel_watcher: Optional[asyncio.Task] = None
        if cancel is not None:
            cancel_watcher = asyncio.ensure_future(self._watch_cancel(cancel, future))

        try:
            return await asyncio.wait_for(future, timeout=self._timeout)
        except asyncio.TimeoutError:
            raise CodeExchangeTimeoutError()
        finally:
            if cancel_watcher is not None:
                cancel_watcher.cancel()
            self._discard(scope, nonce)

    async def _watch_cancel(self, cancel: asyncio.Event, future: asyncio.Future):
        await cancel.wait()
        if not future.done():
            future.set_exception(AuthorizationCancelledError())

    def _handle_event(self, scope: str, event: CaptureEvent) -> bool:
        if event.scope is not None and not scope_covers(event.scope, scope):
            return False

        waits = self._pending.get(scope, {})
        outcome = match_event(event, list(waits))

        if isinstance(outcome, Ignore):
            lib_logger.debug(f"Ignoring redirect for scope '{scope}': {outcome.reason}")
            return False

        if isinstance(outcome, Reject):
            lib_logger.warning(
                f"Rejecting {len(waits)} pending wait(s) for scope '{scope}': {outcome.error}"
            )
            for future in waits.values():
                if not future.done():
                    future.set_exception(outcome.error)
            return False

        future = waits.get(outcome.nonce)
        if future is None or future.done():
            return False
        future.set_result(outcome.code)
        lib_logger.debug(f"Resolved authorization code for scope '{scope}'")
        return True

    def handle_event(self, event: CaptureEvent) -> bool:
        """Publish ``event`` on this correlator's stream."""
        return self.events.publish(event)

    def _discard(self, scope: str, nonce: str) -> None:
        waits = self._pending.get(scope)
        if waits is None:
            return
        waits.pop(nonce, None)
        if waits:
            return
        del self._pending[scope]
        unsubscribe = self._subscriptions.pop(scope, None)
        if unsubscribe is not None:
            unsubscribe()
            lib_logger.debug(f"Released redirect capture subscription for scope '{scope}'")

    def close(self) -> None:
        """Reject every pending wait and drop all subscriptions."""
        self._closed = True
        for scope, waits in list(self._pending.items()):
            for future in waits.values():
                if not future.done():
                    future.set_exception(
                        AuthorizationCancelledError("Code correlator is closed")
                    )
        for unsubscribe in self._subscriptions.values():
            unsubscribe()
        self._subscriptions.clear()
