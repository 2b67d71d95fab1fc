# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/auth_broker/consent.py
"""
Consent orchestration for ephemeral credential propagation.

One :meth:`ConsentOrchestrator.authorize` call runs one attempt:

    DRY_RUN -> ALREADY_AUTHORIZED -> PROPAGATE
    DRY_RUN -> NEEDS_CONSENT -> SHOW_DIALOG -> OPEN_BROWSER [-> AWAIT_CODE] -> PROPAGATE

ending in SUCCEEDED or FAILED. The propagate call is issued only when every
earlier step succeeded.
"""

import asyncio
import json
import logging
import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .capture.base import RedirectCaptureHost
from .correlator import CodeCorrelator
from .errors import (
    AuthorizationCancelledError,
    PropagationUnsuccessfulError,
    ProtocolViolationError,
    UserDeclinedError,
)
from .models import AuthType
from .propagation import CredentialPropagationClient
from .ui import BrowserLauncher, ConsentPrompter

lib_logger = logging.getLogger("auth_broker")

CONTINUE_LABEL = "Continue"
CONTINUE_MESSAGE = (
    'Please complete the authorization in your browser. Only once done, click "Continue".'
)

# Creates a fresh capture host for the attempt owning the given nonce; the
# second argument is the redirect URI the consent URL originally named.
CaptureFactory = Callable[[str, Optional[str]], RedirectCaptureHost]


class AuthState(str, Enum):
    IDLE = "idle"
    DRY_RUN = "dry_run"
    ALREADY_AUTHORIZED = "already_authorized"
    NEEDS_CONSENT = "needs_consent"
    SHOW_DIALOG = "show_dialog"
    OPEN_BROWSER = "open_browser"
    AWAIT_CODE = "await_code"
    DECLINED = "declined"
    PROPAGATE = "propagate"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class ConsentCopy:
    message: str
    detail: str
    accept_label: str


def consent_copy(auth_type: AuthType, server_label: str) -> ConsentCopy:
    """Dialog wording for ``auth_type``; kept identical to the Colab clients."""
    if auth_type == AuthType.DFS_EPHEMERAL:
        return ConsentCopy(
            message=f'Permit "{server_label}" to access your Google Drive files?',
            detail=(
                "This Colab server is requesting access to your Google Drive files. "
                "Granting access to Google Drive will permit code executed in the "
                "Colab server to modify files in your Google Drive. Make sure to "
                "review notebook code prior to allowing this access."
            ),
            accept_label="Connect to Google Drive",
        )
    if auth_type == AuthType.AUTH_USER_EPHEMERAL:
        return ConsentCopy(
            message=f'Allow "{server_label}" to access your Google credentials?',
            detail=(
                "This will allow code executed in the Colab server to access your "
                "Google Drive and Google Cloud data. Review the code in this "
                "notebook prior to allowing access."
            ),
            accept_label="Allow",
        )
    raise ValueError(f"Unsupported auth type: {auth_type}")


def consent_scope(consent_uri: str, auth_type: AuthType) -> str:
    """Scope to correlate under: the consent URL's ``scope``, else the auth type."""
    query = dict(parse_qsl(urlsplit(consent_uri).query))
    return query.get("scope") or str(auth_type)


def original_redirect_uri(consent_uri: str) -> Optional[str]:
    """The ``redirect_uri`` the backend put in ``consent_uri``, if any."""
    query = dict(parse_qsl(urlsplit(consent_uri).query))
    return query.get("redirect_uri") or None


def with_redirect_params(consent_uri: str, nonce: str, redirect_uri: str) -> str:
    """
    Point ``consent_uri`` at ``redirect_uri`` and embed ``nonce`` in its state.

    A state the backend already set is kept next to the nonce as
    ``nonce=<nonce>&state=<original>``.
    """
    parts = urlsplit(consent_uri)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    state = [("nonce", nonce)]
    if query.get("state"):
        state.append(("state", query["state"]))
    query["redirect_uri"] = redirect_uri
    query["state"] = urlencode(state)
    return urlunsplit(parts._replace(query=urlencode(query)))


@dataclass
class AuthorizationAttempt:
    """State of one authorization attempt."""

    auth_type: AuthType
    nonce: str = field(default_factory=lambda: secrets.token_urlsafe(16))
    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    external_cancel: Optional[asyncio.Event] = None
    state: AuthState = AuthState.IDLE
    history: List[AuthState] = field(default_factory=list)
    error: Optional[Exception] = None

    def advance(self, state: AuthState) -> None:
        lib_logger.debug(f"[{self.auth_type}] {self.state.value} -> {state.value}")
        self.history.append(state)
        self.state = state

    @property
    def cancelled(self) -> bool:
        if self.external_cancel is not None and self.external_cancel.is_set():
            self.cancel.set()
        return self.cancel.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise AuthorizationCancelledError()


class ConsentOrchestrator:
    """
    Obtains user consent and propagates ephemeral credentials to one server.

    When both ``correlator`` and ``capture_factory`` are given, the browser
    flow is additionally confirmed by capturing the OAuth redirect; otherwise
    the "Continue" gate alone stands for completion of the browser flow.
    """

    def __init__(
        self,
        client: CredentialPropagationClient,
        endpoint: str,
        prompter: ConsentPrompter,
        browser: BrowserLauncher,
        server_label: str = "Colab server",
        correlator: Optional[CodeCorrelator] = None,
        capture_factory: Optional[CaptureFactory] = None,
    ):
        self.client = client
        self.endpoint = endpoint
        self.prompter = prompter
        self.browser = browser
        self.server_label = server_label
        self.correlator = correlator
        self.capture_factory = capture_factory

    @property
    def captures_redirects(self) -> bool:
        return self.correlator is not None and self.capture_factory is not None

    async def authorize(
        self, auth_type: AuthType, cancel: Optional[asyncio.Event] = None
    ) -> AuthorizationAttempt:
        """
        Run one authorization attempt for ``auth_type``.

        Returns the settled attempt on success; any failure is raised after
        the attempt has been marked FAILED.
        """
        attempt = AuthorizationAttempt(auth_type=AuthType(auth_type), external_cancel=cancel)
        cancel_link: Optional[asyncio.Future] = None
        if cancel is not None:
            cancel_link = asyncio.ensure_future(_forward_cancel(cancel, attempt.cancel))

        try:
            attempt.advance(AuthState.DRY_RUN)
            dry_run = await self.client.propagate_credentials(
                self.endpoint, attempt.auth_type, dry_run=True
            )

            if dry_run.success:
                attempt.advance(AuthState.ALREADY_AUTHORIZED)
            elif dry_run.unauthorized_redirect_uri:
                attempt.advance(AuthState.NEEDS_CONSENT)
                await self._obtain_consent(attempt, dry_run.unauthorized_redirect_uri)
            else:
                # Not authorized, yet no consent URL to fix that.
                payload = json.dumps(dry_run.model_dump(by_alias=True, exclude_none=True))
                raise ProtocolViolationError(
                    f"[{attempt.auth_type}] Credentials propagation dry run returned "
                    f"unexpected results: {payload}"
                )

            attempt.raise_if_cancelled()
            attempt.advance(AuthState.PROPAGATE)
            await self._propagate(attempt.auth_type)
            attempt.advance(AuthState.SUCCEEDED)
            lib_logger.info(f"[{attempt.auth_type}] Credentials propagated to '{self.server_label}'")
            return attempt

        except Exception as e:
            attempt.error = e
            attempt.advance(AuthState.FAILED)
            if isinstance(e, (UserDeclinedError, AuthorizationCancelledError)):
                lib_logger.info(str(e))
            else:
                lib_logger.error(f"[{attempt.auth_type}] Authorization failed: {e}")
            raise
        finally:
            if cancel_link is not None:
                cancel_link.cancel()

    async def _obtain_consent(self, attempt: AuthorizationAttempt, consent_uri: str) -> None:
        copy = consent_copy(attempt.auth_type, self.server_label)

        attempt.raise_if_cancelled()
        attempt.advance(AuthState.SHOW_DIALOG)
        if not await self.prompter.confirm(copy.message, copy.detail, copy.accept_label):
            self._decline(attempt)
        attempt.raise_if_cancelled()

        attempt.advance(AuthState.OPEN_BROWSER)
        if self.captures_redirects:
            await self._consent_with_capture(attempt, consent_uri)
            return

        await self.browser.open(consent_uri)
        attempt.raise_if_cancelled()
        if not await self._confirm_continue():
            self._decline(attempt)

    async def _consent_with_capture(
        self, attempt: AuthorizationAttempt, consent_uri: str
    ) -> None:
        capture = self.capture_factory(attempt.nonce, original_redirect_uri(consent_uri))
        await capture.open()
        wait: Optional[asyncio.Future] = None
        try:
            scope = consent_scope(consent_uri, attempt.auth_type)
            # Registered before the browser opens so an early redirect is not lost.
            wait = asyncio.ensure_future(
                self.correlator.wait_for_code(scope, attempt.nonce, attempt.cancel)
            )
            await asyncio.sleep(0)
            await self.browser.open(
                with_redirect_params(consent_uri, attempt.nonce, capture.redirect_uri)
            )

            if not await self._confirm_continue():
                attempt.cancel.set()
                self._decline(attempt)

            attempt.advance(AuthState.AWAIT_CODE)
            # Only completion matters; the backend mints its own credentials.
            await wait
        finally:
            if wait is not None:
                if not wait.done():
                    wait.cancel()
                await asyncio.gather(wait, return_exceptions=True)
            await capture.close()

    async def _confirm_continue(self) -> bool:
        return await self.prompter.confirm(CONTINUE_MESSAGE, None, CONTINUE_LABEL)

    def _decline(self, attempt: AuthorizationAttempt) -> None:
        attempt.advance(AuthState.DECLINED)
        raise UserDeclinedError(f"User cancelled {attempt.auth_type} authorization")

    async def _propagate(self, auth_type: AuthType) -> None:
        result = await self.client.propagate_credentials(
            self.endpoint, auth_type, dry_run=False
        )
        if not result.success:
            raise PropagationUnsuccessfulError(
                f"[{auth_type}] Credentials propagation unsuccessful"
            )


async def _forward_cancel(source: asyncio.Event, target: asyncio.Event) -> None:
    await source.wait()
    target.set()
