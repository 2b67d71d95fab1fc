# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/auth_broker/utils/headless_detection.py

import logging
import os
import sys

lib_logger = logging.getLogger("auth_broker")

# Any of these being set means there is no usable local browser.
_HEADLESS_ENV_VARS = ("SSH_CONNECTION", "SSH_TTY", "CI", "BROKER_HEADLESS")


def is_headless_environment() -> bool:
    """Best-effort check for an environment without a local browser/display."""
    if os.getenv("BROKER_HEADLESS", "").lower() in ("false", "0", "no"):
        return False

    for var in _HEADLESS_ENV_VARS:
        if os.getenv(var):
            lib_logger.debug(f"Headless environment detected via {var}")
            return True

    if sys.platform.startswith("linux"):
        if not os.getenv("DISPLAY") and not os.getenv("WAYLAND_DISPLAY"):
            lib_logger.debug("Headless environment detected: no DISPLAY/WAYLAND_DISPLAY")
            return True

    return False
