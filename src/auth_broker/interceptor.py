# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/auth_broker/interceptor.py
"""
Kernel channel interceptor.

Sits between a connected :class:`MessageTransport` and the rest of the client.
Inbound ``colab_request``/``request_auth`` frames are taken off the stream and
answered with exactly one ``input_reply`` once the authorization attempt
settles; every other inbound frame is forwarded untouched, in arrival order.
Outbound frames are scanned for the Jupyter session id and for unsupported
``drive.mount()`` calls before being sent.
"""

import asyncio
import json
import logging
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol, Set

from pydantic import ValidationError

from .drive_mount import DRIVE_MOUNT_LINKS, DRIVE_MOUNT_WARNING, is_drive_mount_request
from .errors import InterceptorDisposedError
from .models import AuthRequestFrame, AuthType, KernelMessage, ReplyFrame
from .transport import Frame, FrameDispatcher, FrameHandler, MessageTransport
from .ui import Notifier

lib_logger = logging.getLogger("auth_broker")


class Authorizer(Protocol):
    def authorize(self, auth_type: AuthType) -> Awaitable[Any]:
        ...


class ReplySessionMode(str, Enum):
    """
    Which session id a reply frame carries.

    CAPTURED: the Jupyter session of the client, taken from the first
    outbound kernel message, so the kernel routes the reply to that client.
    GENERATED: a session id owned by this interceptor.
    """

    CAPTURED = "captured"
    GENERATED = "generated"


def parse_auth_request(data: Frame) -> Optional[AuthRequestFrame]:
    """The authorization request carried by ``data``, or None for anything else."""
    if not isinstance(data, str) or not data:
        return None
    try:
        message = json.loads(data)
    except ValueError:
        lib_logger.debug("Inbound frame is not JSON; forwarding unchanged")
        return None
    try:
        return AuthRequestFrame.model_validate(message)
    except ValidationError:
        return None


class ProtocolMessageInterceptor:
    def __init__(
        self,
        transport: MessageTransport,
        authorizer: Authorizer,
        notifier: Optional[Notifier] = None,
        session_mode: ReplySessionMode = ReplySessionMode.CAPTURED,
    ):
        self.transport = transport
        self.authorizer = authorizer
        self.notifier = notifier
        self.session_mode = ReplySessionMode(session_mode)

        self._dispatcher = FrameDispatcher()
        self._tasks: Set[asyncio.Task] = set()
        self._client_session_id: Optional[str] = None
        self._own_session_id = str(uuid.uuid4())
        self._warned_drive_mount = False
        self._disposed = False
        self._detach = transport.on_message(self._handle_inbound)

    @property
    def client_session_id(self) -> Optional[str]:
        return self._client_session_id

    @property
    def pending_authorizations(self) -> int:
        return len(self._tasks)

    def on_message(self, handler: FrameHandler) -> Callable[[], None]:
        """Receive inbound frames that were not consumed by the interceptor."""
        self._guard_disposed()
        return self._dispatcher.add(handler)

    async def send(self, data: Frame) -> None:
        self._guard_disposed()
        if isinstance(data, str):
            self._inspect_outbound(data)
        await self.transport.send(data)

    # =========================================================================
    # Inbound
    # =========================================================================

    def _handle_inbound(self, data: Frame) -> None:
        if self._disposed:
            return

        request = parse_auth_request(data)
        if request is None:
            self._dispatcher.dispatch(data)
            return

        lib_logger.debug(
            f"Authorization request received: {request.auth_type} "
            f"(colab_msg_id={request.correlation_id})"
        )
        task = asyncio.get_running_loop().create_task(self._authorize_and_reply(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _authorize_and_reply(self, request: AuthRequestFrame) -> None:
        error: Optional[str] = None
        try:
            await self.authorizer.authorize(request.auth_type)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            lib_logger.error(f"Failed handling {request.auth_type} authorization: {e}")
            error = str(e) or "unknown error"
        await self._send_reply(request.correlation_id, error)

    async def _send_reply(self, correlation_id: int, error: Optional[str]) -> None:
        if self._disposed:
            lib_logger.warning(
                f"Dropping reply for colab_msg_id={correlation_id}: interceptor disposed"
            )
            return
        reply = ReplyFrame.build(correlation_id, self._reply_session_id(), error)
        try:
            await self.transport.send(json.dumps(reply.to_wire()))
        except Exception as e:
            lib_logger.error(f"Failed sending reply for colab_msg_id={correlation_id}: {e}")
            return
        lib_logger.debug(f"Input reply sent for colab_msg_id={correlation_id}")

    def _reply_session_id(self) -> str:
        if self.session_mode == ReplySessionMode.GENERATED:
            return self._own_session_id
        if self._client_session_id is None:
            lib_logger.warning(
                "No client session id observed yet; replying with a generated session id"
            )
            return self._own_session_id
        return self._client_session_id

    # =========================================================================
    # Outbound
    # =========================================================================

    def _inspect_outbound(self, data: str) -> None:
        try:
            message = json.loads(data)
        except ValueError:
            lib_logger.warning("Failed to parse outbound kernel message as JSON")
            return

        if self._client_session_id is None:
            try:
                self._client_session_id = KernelMessage.model_validate(message).header.session
            except ValidationError:
                pass

        if not self._warned_drive_mount and is_drive_mount_request(message):
            self._warned_drive_mount = True
            if self.notifier is not None:
                task = asyncio.get_running_loop().create_task(
                    self.notifier.warn(DRIVE_MOUNT_WARNING, DRIVE_MOUNT_LINKS)
                )
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _guard_disposed(self) -> None:
        if self._disposed:
            raise InterceptorDisposedError(
                "ProtocolMessageInterceptor cannot be used after it has been disposed."
            )

    async def dispose(self) -> None:
        """Detach from the transport and cancel in-flight authorizations."""
        if self._disposed:
            return
        self._disposed = True
        self._detach()
        self._dispatcher.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def aclose(self) -> None:
        await self.dispose()
        await self.transport.close()
