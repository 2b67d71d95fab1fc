# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Broker configuration.

Values come from the process environment (populated from ``.env`` files by
the entry point) and can be overridden by command-line flags.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional, Type, TypeVar

from auth_broker.broker import CaptureMode
from auth_broker.capture.uri_scheme import DEFAULT_AUTHORITY, DEFAULT_SCHEME
from auth_broker.interceptor import ReplySessionMode
from auth_broker.propagation import DEFAULT_COLAB_DOMAIN

logger = logging.getLogger(__name__)

EnumT = TypeVar("EnumT", bound=Enum)


def _env_enum(env: Mapping[str, str], key: str, enum_type: Type[EnumT], default: EnumT) -> EnumT:
    raw = env.get(key)
    if not raw:
        return default
    try:
        return enum_type(raw.strip().lower())
    except ValueError:
        logger.warning(f"Invalid {key} value: {raw}, using default {default.value}")
        return default


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid {key} value: {raw}, using default {default}")
        return default


@dataclass(frozen=True)
class BrokerSettings:
    colab_domain: str = DEFAULT_COLAB_DOMAIN
    access_token: Optional[str] = None
    capture_mode: CaptureMode = CaptureMode.NONE
    uri_scheme: str = DEFAULT_SCHEME
    uri_authority: str = DEFAULT_AUTHORITY
    loopback_target: Optional[str] = None
    session_mode: ReplySessionMode = ReplySessionMode.CAPTURED
    server_label: str = "Colab server"
    http_timeout: float = 30.0
    log_dir: Path = field(default_factory=lambda: Path.cwd() / "logs")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "BrokerSettings":
        env = os.environ if env is None else env
        return cls(
            colab_domain=env.get("COLAB_DOMAIN") or DEFAULT_COLAB_DOMAIN,
            access_token=env.get("COLAB_ACCESS_TOKEN") or None,
            capture_mode=_env_enum(env, "BROKER_CAPTURE_MODE", CaptureMode, CaptureMode.NONE),
            uri_scheme=env.get("BROKER_URI_SCHEME") or DEFAULT_SCHEME,
            uri_authority=env.get("BROKER_URI_AUTHORITY") or DEFAULT_AUTHORITY,
            loopback_target=env.get("BROKER_LOOPBACK_TARGET") or None,
            session_mode=_env_enum(
                env, "BROKER_REPLY_SESSION_MODE", ReplySessionMode, ReplySessionMode.CAPTURED
            ),
            server_label=env.get("BROKER_SERVER_LABEL") or "Colab server",
            http_timeout=_env_float(env, "BROKER_HTTP_TIMEOUT", 30.0),
            log_dir=Path(env["BROKER_LOG_DIR"]) if env.get("BROKER_LOG_DIR") else Path.cwd() / "logs",
        )

    def with_overrides(self, **overrides) -> "BrokerSettings":
        """Copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
