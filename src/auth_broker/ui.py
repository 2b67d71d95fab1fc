# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/auth_broker/ui.py
"""
User-facing collaborators of the broker: consent dialogs, browser hand-off
and advisory notifications.

The console implementations render with rich. Prompts block on stdin, so they
run in a worker thread to keep the event loop (and therefore the kernel
channel) responsive while the user decides.
"""

import asyncio
import logging
import webbrowser
from typing import Dict, Optional, Protocol

from rich.console import Console
from rich.markup import escape as rich_escape
from rich.panel import Panel
from rich.prompt import Confirm
from rich.text import Text

from .utils.headless_detection import is_headless_environment

lib_logger = logging.getLogger("auth_broker")


class ConsentPrompter(Protocol):
    async def confirm(
        self, message: str, detail: Optional[str], accept_label: str
    ) -> bool:
        """Show a modal prompt; True only if ``accept_label`` was chosen."""
        ...


class BrowserLauncher(Protocol):
    async def open(self, url: str) -> None:
        ...


class Notifier(Protocol):
    async def warn(self, message: str, links: Dict[str, str]) -> None:
        ...


class ConsoleConsentPrompter:
    """Modal consent prompt rendered in the terminal."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    async def confirm(
        self, message: str, detail: Optional[str], accept_label: str
    ) -> bool:
        body = Text(message, style="bold")
        if detail:
            body.append("\n\n")
            body.append(detail)
        self.console.print(Panel(body, title="Authorization request", style="bold blue"))
        return await asyncio.to_thread(
            Confirm.ask,
            f"{rich_escape(accept_label)}?",
            console=self.console,
            default=False,
        )


class SystemBrowserLauncher:
    """Opens URLs in the default browser, or prints them when headless."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    async def open(self, url: str) -> None:
        escaped_url = rich_escape(url)
        self.console.print(f"[bold]URL:[/bold] [link={url}]{escaped_url}[/link]\n")

        if is_headless_environment():
            self.console.print(
                "Running in headless environment. Open the URL above in a browser "
                "on another machine and complete the authorization."
            )
            return

        try:
            opened = await asyncio.to_thread(webbrowser.open, url)
        except webbrowser.Error as e:
            lib_logger.warning(f"Failed to open browser for authorization: {e}")
            return
        if opened:
            lib_logger.info("Browser opened for authorization flow")
        else:
            lib_logger.warning("No browser available; open the printed URL manually")


class ConsoleNotifier:
    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    async def warn(self, message: str, links: Dict[str, str]) -> None:
        body = Text(message)
        for label, url in links.items():
            body.append(f"\n{label}: ", style="bold")
            body.append(url, style=f"link {url}")
        self.console.print(Panel(body, title="Warning", style="bold yellow"))
