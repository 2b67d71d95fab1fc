# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Pydantic models for the Colab REST API and the kernel channel frames.

Inbound frames are validated leniently (unknown keys are ignored) so that the
interceptor can tell authorization requests apart from ordinary kernel
traffic. Reply frames are built from these models and serialized with
``model_dump(exclude_none=True)``.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthType(str, Enum):
    """Ephemeral authorization kinds the backend may request."""

    DFS_EPHEMERAL = "dfs_ephemeral"
    AUTH_USER_EPHEMERAL = "auth_user_ephemeral"

    def __str__(self) -> str:
        return self.value


class CredentialsPropagationResult(BaseModel):
    """Result of a propagation call (dry run or real)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    success: bool
    unauthorized_redirect_uri: Optional[str] = Field(
        default=None, alias="unauthorizedRedirectUri"
    )


class XsrfTokenResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    token: str


# =============================================================================
# Kernel channel frames
# =============================================================================


class _RequestHeader(BaseModel):
    model_config = ConfigDict(extra="ignore")
    msg_type: Literal["colab_request"]


class _AuthRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    authType: AuthType


class _AuthRequestContent(BaseModel):
    model_config = ConfigDict(extra="ignore")
    request: _AuthRequest


class _AuthRequestMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")
    colab_request_type: Literal["request_auth"]
    colab_msg_id: int


class AuthRequestFrame(BaseModel):
    """Inbound ``colab_request`` frame asking the client for authorization."""

    model_config = ConfigDict(extra="ignore")

    header: _RequestHeader
    content: _AuthRequestContent
    metadata: _AuthRequestMetadata

    @property
    def auth_type(self) -> AuthType:
        return self.content.request.authType

    @property
    def correlation_id(self) -> int:
        return self.metadata.colab_msg_id


class _SessionHeader(BaseModel):
    model_config = ConfigDict(extra="ignore")
    session: str


class KernelMessage(BaseModel):
    """Minimal view of an outbound Jupyter message: only the session matters."""

    model_config = ConfigDict(extra="ignore")
    header: _SessionHeader


class ReplyHeader(BaseModel):
    msg_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    msg_type: Literal["input_reply"] = "input_reply"
    session: str
    date: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    # Fixed to match what the Colab web client sends.
    username: str = "username"
    version: str = "5.0"


class ReplyValue(BaseModel):
    type: Literal["colab_reply"] = "colab_reply"
    colab_msg_id: int
    error: Optional[str] = None


class ReplyContent(BaseModel):
    value: ReplyValue


class ReplyFrame(BaseModel):
    """Colab's ``input_reply`` answer to an authorization request."""

    header: ReplyHeader
    content: ReplyContent
    channel: Literal["stdin"] = "stdin"
    # Required by the protocol, but may be empty.
    metadata: Dict[str, Any] = Field(default_factory=dict)
    parent_header: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def build(
        cls, correlation_id: int, session: str, error: Optional[str] = None
    ) -> "ReplyFrame":
        return cls(
            header=ReplyHeader(session=session),
            content=ReplyContent(
                value=ReplyValue(colab_msg_id=correlation_id, error=error)
            ),
        )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
