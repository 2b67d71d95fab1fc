# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/auth_broker/drive_mount.py

import re
from typing import Any

DRIVE_MOUNT_PATTERN = re.compile(r"drive\.mount\(.*\)")
DRIVE_MOUNT_ISSUE_LINK = "https://github.com/googlecolab/colab-vscode/issues/256"
DRIVE_MOUNT_WIKI_LINK = (
    "https://github.com/googlecolab/colab-vscode/wiki/"
    "Known-Issues-and-Workarounds#drivemount"
)
DRIVE_MOUNT_WARNING = (
    "drive.mount() is not supported by the Colab authorization broker at the moment, "
    "and we are actively working on supporting it. See the workaround and the issue "
    "below for progress."
)
DRIVE_MOUNT_LINKS = {
    "View Workaround": DRIVE_MOUNT_WIKI_LINK,
    "View Issue": DRIVE_MOUNT_ISSUE_LINK,
}


def is_drive_mount_request(message: Any) -> bool:
    """True for an ``execute_request`` whose code calls ``drive.mount(...)``."""
    if not isinstance(message, dict):
        return False
    header = message.get("header")
    content = message.get("content")
    if not isinstance(header, dict) or not isinstance(content, dict):
        return False
    code = content.get("code")
    return (
        header.get("msg_type") == "execute_request"
        and isinstance(code, str)
        and DRIVE_MOUNT_PATTERN.search(code) is not None
    )
