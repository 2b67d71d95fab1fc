# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/auth_broker/propagation.py

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel

from .errors import ColabRequestError
from .models import AuthType, CredentialsPropagationResult, XsrfTokenResponse

lib_logger = logging.getLogger("auth_broker")

DEFAULT_COLAB_DOMAIN = "https://colab.research.google.com"
TUN_ENDPOINT = "/tun/m"
XSSI_PREFIX = ")]}'\n"

ACCEPT_JSON_HEADER = ("Accept", "application/json")
COLAB_CLIENT_AGENT_HEADER = ("X-Colab-Client-Agent", "vscode")
COLAB_XSRF_TOKEN_HEADER = "X-Goog-Colab-Token"

ModelT = TypeVar("ModelT", bound=BaseModel)


def strip_xssi_prefix(body: str) -> str:
    if body.startswith(XSSI_PREFIX):
        return body[len(XSSI_PREFIX):]
    return body


class CredentialPropagationClient:
    """
    Client for Colab's credentials-propagation API.

    Each call is a two-step exchange: a ``GET`` that returns an XSRF token,
    then a ``POST`` to the same URL carrying that token, which answers with
    the propagation result.
    """

    def __init__(
        self,
        colab_domain: str = DEFAULT_COLAB_DOMAIN,
        access_token: Optional[Callable[[], Awaitable[str]]] = None,
        on_auth_error: Optional[Callable[[], Awaitable[None]]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.colab_domain = colab_domain.rstrip("/")
        self._access_token = access_token
        self._on_auth_error = on_auth_error
        self._http_client = http_client
        self._timeout = timeout

    def propagation_url(self, endpoint: str) -> str:
        return f"{self.colab_domain}{TUN_ENDPOINT}/credentials-propagation/{endpoint}"

    async def propagate_credentials(
        self, endpoint: str, auth_type: AuthType, dry_run: bool
    ) -> CredentialsPropagationResult:
        """
        Propagate credentials of ``auth_type`` to the server at ``endpoint``.

        With ``dry_run`` the backend only reports whether it is already
        authorized, returning an OAuth consent URL when it is not.
        """
        url = self.propagation_url(endpoint)
        params = {
            "authtype": str(auth_type),
            "version": "2",
            "dryrun": "true" if dry_run else "false",
            "propagate": "true",
            "record": "false",
            "authuser": "0",
        }

        token = await self._issue_request("GET", url, params, XsrfTokenResponse)
        result = await self._issue_request(
            "POST",
            url,
            params,
            CredentialsPropagationResult,
            headers={COLAB_XSRF_TOKEN_HEADER: token.token},
        )
        lib_logger.debug(
            f"[{auth_type}] Credentials propagation{' dry run' if dry_run else ''}: "
            f"{result.model_dump(by_alias=True, exclude_none=True)}"
        )
        return result

    async def _issue_request(
        self,
        method: str,
        url: str,
        params: Dict[str, str],
        model: Type[ModelT],
        headers: Optional[Dict[str, str]] = None,
    ) -> ModelT:
        request_headers = dict(headers or {})
        request_headers[ACCEPT_JSON_HEADER[0]] = ACCEPT_JSON_HEADER[1]
        request_headers[COLAB_CLIENT_AGENT_HEADER[0]] = COLAB_CLIENT_AGENT_HEADER[1]

        async with self._client() as client:
            # A 401 gets one more attempt after the auth hook had a chance
            # to refresh the access token.
            for attempt in range(2):
                if self._access_token is not None:
                    request_headers["Authorization"] = f"Bearer {await self._access_token()}"

                response = await client.request(
                    method, url, params=params, headers=request_headers
                )
                if response.is_success:
                    payload: Any = json.loads(strip_xssi_prefix(response.text))
                    return model.model_validate(payload)

                if response.status_code == 401 and self._on_auth_error and attempt == 0:
                    lib_logger.warning(f"{method} {url} unauthorized, refreshing credentials")
                    await self._on_auth_error()
                    continue

                raise ColabRequestError(
                    f"{method} {url} failed with HTTP {response.status_code}",
                    status_code=response.status_code,
                    url=str(response.request.url),
                    response_body=response.text,
                )

        raise ColabRequestError(
            f"{method} {url} failed after re-authentication",
            status_code=401,
            url=url,
        )

    def _client(self) -> "_ClientContext":
        return _ClientContext(self._http_client, self._timeout)


class _ClientContext:
    """Uses the injected client as-is, or a short-lived one otherwise."""

    def __init__(self, client: Optional[httpx.AsyncClient], timeout: float):
        self._shared = client
        self._timeout = timeout
        self._owned: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> httpx.AsyncClient:
        if self._shared is not None:
            return self._shared
        self._owned = httpx.AsyncClient(timeout=self._timeout)
        return self._owned

    async def __aexit__(self, *exc_info) -> None:
        if self._owned is not None:
            await self._owned.aclose()
