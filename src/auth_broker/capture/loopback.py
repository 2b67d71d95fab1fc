# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/auth_broker/capture/loopback.py

import asyncio
import logging
from importlib import resources
from pathlib import Path
from typing import Optional, Union
from urllib.parse import quote

from aiohttp import web

from ..correlator import CaptureEvent, CaptureEventStream
from ..errors import MalformedRedirectRequestError, UnmatchedRedirectError
from .base import event_from_query, original_state

lib_logger = logging.getLogger("auth_broker")

LOOPBACK_HOST = "127.0.0.1"
FAVICON_PATH = "/favicon.ico"


def load_favicon(path: Optional[Union[str, Path]] = None) -> bytes:
    """Bundled favicon bytes, or the contents of ``path`` when given."""
    if path is not None:
        return Path(path).read_bytes()
    return resources.files("auth_broker").joinpath("media/favicon.ico").read_bytes()


class LoopbackHttpCapture:
    """
    Single-use HTTP listener on 127.0.0.1 receiving one OAuth redirect.

    The provider's callback ``GET /?state=nonce%3D<nonce>&code=<code>&scope=<scope>``
    is published as a capture event and the browser is sent on to
    ``target_uri`` with the query string forwarded verbatim (or shown a short
    success page when no target is configured). Requests whose state carries
    no nonce are refused with a 400 and never published. The listener shuts itself down
    after the first redirect that resolves a wait.
    """

    SUCCESS_HTML = """<!doctype html>
<html lang=\"en\">
<head>
  <meta charset=\"utf-8\" />
  <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\" />
  <title>Authorization complete</title>
</head>
<body>
  <p>Authorization complete. You can close this tab and return to your editor.</p>
</body>
</html>"""

    def __init__(
        self,
        events: CaptureEventStream,
        target_uri: Optional[str] = None,
        expected_nonce: Optional[str] = None,
        favicon: Optional[bytes] = None,
        host: str = LOOPBACK_HOST,
    ):
        self._events = events
        self.target_uri = target_uri
        self.expected_nonce = expected_nonce
        self.host = host
        self.port: Optional[int] = None
        self._favicon = favicon if favicon is not None else load_favicon()

        self.app = web.Application()
        self.app.router.add_route("*", FAVICON_PATH, self._handle_favicon)
        self.app.router.add_route("*", "/{tail:.*}", self._handle_callback)

        self._runner: Optional[web.AppRunner] = None
        self._closed = False
        self._shutdown: Optional[asyncio.Future] = None

    @property
    def redirect_uri(self) -> str:
        if self.port is None:
            raise RuntimeError("Loopback listener has not been started")
        return f"http://{self.host}:{self.port}"

    @property
    def is_serving(self) -> bool:
        return self._runner is not None and not self._closed

    async def open(self) -> None:
        """Bind to an OS-assigned port on the loopback interface."""
        if self._closed:
            raise RuntimeError("Loopback listener is single-use and already closed")
        if self._runner is not None:
            return

        self._runner = web.AppRunner(self.app, access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, 0)
        await site.start()
        self.port = self._runner.addresses[0][1]
        lib_logger.debug(f"Loopback redirect listener started on {self.redirect_uri}")

    async def close(self) -> None:
        """Tear the listener down. Later calls wait for the first teardown."""
        await asyncio.shield(self._schedule_close())

    def _schedule_close(self) -> asyncio.Future:
        if self._shutdown is None:
            self._closed = True
            self._shutdown = asyncio.ensure_future(self._cleanup())
        return self._shutdown

    async def _cleanup(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            lib_logger.debug(f"Loopback redirect listener on port {self.port} stopped")

    async def _handle_favicon(self, request: web.Request) -> web.Response:
        if request.method != "GET":
            raise web.HTTPMethodNotAllowed(request.method, ["GET"])
        return web.Response(body=self._favicon, content_type="image/x-icon")

    async def _handle_callback(self, request: web.Request) -> web.StreamResponse:
        if request.method != "GET":
            raise web.HTTPMethodNotAllowed(request.method, ["GET"])

        try:
            event = self._parse_request(request)
        except MalformedRedirectRequestError as e:
            lib_logger.error(f"Malformed request on loopback redirect listener: {e}")
            return web.Response(status=400, text=str(e))

        if self.expected_nonce and event.nonce != self.expected_nonce:
            error = UnmatchedRedirectError(
                f"Redirect nonce does not belong to this flow (port {self.port})"
            )
            lib_logger.warning(str(error))
            return web.Response(status=400, text=str(error))

        resolved = self._events.publish(event)
        if resolved:
            self._schedule_close()

        if not event.code:
            return web.Response(status=400, text="Missing code")

        if self.target_uri:
            separator = "&" if "?" in self.target_uri else "?"
            query = forwarded_query(request.rel_url.raw_query_string, event.state)
            # Set literally; web.HTTPFound would renormalize the location.
            location = f"{self.target_uri}{separator}{query}"
            return web.Response(status=302, headers={"Location": location})

        return web.Response(
            status=200,
            text=self.SUCCESS_HTML,
            content_type="text/html",
        )

    @staticmethod
    def _parse_request(request: web.Request) -> CaptureEvent:
        if not request.raw_path:
            raise MalformedRedirectRequestError("Request is missing a url")
        if not request.headers.get("Host"):
            raise MalformedRedirectRequestError("Request is missing a host header")
        if "state" not in request.query:
            raise MalformedRedirectRequestError("Redirect is missing the state parameter")
        event = event_from_query(request.query)
        if not event.nonce:
            raise MalformedRedirectRequestError("Redirect state is missing the nonce")
        return event


def forwarded_query(raw_query: str, state: Optional[str]) -> str:
    """
    Query string to forward to the redirect target.

    Forwarded byte for byte, except that a ``state`` wrapping the backend's
    own state is swapped back for that original value.
    """
    backend_state = original_state(state)
    if backend_state is None:
        return raw_query
    parts = []
    for part in raw_query.split("&"):
        if part.split("=", 1)[0] == "state":
            part = f"state={quote(backend_state, safe='')}"
        parts.append(part)
    return "&".join(parts)
