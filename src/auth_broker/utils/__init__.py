# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/auth_broker/utils/__init__.py

from .headless_detection import is_headless_environment

__all__ = [
    "is_headless_environment",
]
