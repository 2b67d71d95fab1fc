# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Colab authorization broker - main entry point.

Connects to a Colab kernel channel, intercepts authorization requests coming
from the runtime and answers them after obtaining the user's consent locally.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import aiohttp
import colorlog
from dotenv import load_dotenv

from auth_broker import AuthBroker, CredentialPropagationClient, connect_kernel_channel
from auth_broker.broker import CaptureMode
from broker_app.settings import BrokerSettings

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Colab Authorization Broker")
    parser.add_argument(
        "--kernel-url", type=str, required=True, help="WebSocket URL of the kernel channel."
    )
    parser.add_argument(
        "--endpoint", type=str, required=True, help="Assigned Colab server endpoint."
    )
    parser.add_argument(
        "--proxy-token", type=str, default=None, help="Runtime proxy token for the channel."
    )
    parser.add_argument(
        "--capture-mode",
        type=str,
        choices=[mode.value for mode in CaptureMode],
        default=None,
        help="How OAuth redirects are captured (overrides BROKER_CAPTURE_MODE).",
    )
    parser.add_argument(
        "--server-label", type=str, default=None, help="Server name shown in consent dialogs."
    )
    parser.add_argument("--debug", action="store_true", help="Log debug output to the console.")
    return parser


def load_environment(root_dir: Path) -> None:
    load_dotenv(root_dir / ".env")
    for env_file in sorted(root_dir.glob("*.env")):
        if env_file.name != ".env":
            load_dotenv(env_file, override=False)


class BrokerDebugFilter(logging.Filter):
    def filter(self, record):
        return record.levelno == logging.DEBUG and record.name.startswith("auth_broker")


def configure_logging(log_dir: Path, debug: bool = False) -> None:
    log_dir.mkdir(parents=True, exist_ok=True)

    console_handler = colorlog.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    console_handler.setFormatter(
        colorlog.ColoredFormatter(
            "%(log_color)s%(message)s",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    )

    file_format = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    info_file_handler = logging.FileHandler(log_dir / "broker.log", encoding="utf-8")
    info_file_handler.setLevel(logging.INFO)
    info_file_handler.setFormatter(file_format)

    debug_file_handler = logging.FileHandler(log_dir / "broker_debug.log", encoding="utf-8")
    debug_file_handler.setLevel(logging.DEBUG)
    debug_file_handler.setFormatter(file_format)
    debug_file_handler.addFilter(BrokerDebugFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(info_file_handler)
    root_logger.addHandler(debug_file_handler)

    # Silence noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def build_broker(settings: BrokerSettings, endpoint: str) -> AuthBroker:
    access_token = None
    if settings.access_token:
        token = settings.access_token

        async def access_token() -> str:
            return token

    client = CredentialPropagationClient(
        colab_domain=settings.colab_domain,
        access_token=access_token,
        timeout=settings.http_timeout,
    )
    return AuthBroker(
        client,
        endpoint,
        server_label=settings.server_label,
        capture_mode=settings.capture_mode,
        session_mode=settings.session_mode,
        uri_scheme=settings.uri_scheme,
        uri_authority=settings.uri_authority,
        loopback_target=settings.loopback_target,
    )


async def run_broker(
    settings: BrokerSettings,
    kernel_url: str,
    endpoint: str,
    proxy_token: Optional[str] = None,
) -> None:
    """Serve authorization requests until the kernel channel closes."""
    broker = build_broker(settings, endpoint)
    async with aiohttp.ClientSession() as session:
        transport = await connect_kernel_channel(session, kernel_url, proxy_token)
        interceptor = broker.attach(transport)
        interceptor.on_message(
            lambda frame: logger.debug(f"Kernel frame received ({len(frame)} bytes)")
        )
        try:
            await transport.run()
        finally:
            await broker.aclose()
            await transport.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    root_dir = Path.cwd()
    load_environment(root_dir)

    settings = BrokerSettings.from_env().with_overrides(
        capture_mode=CaptureMode(args.capture_mode) if args.capture_mode else None,
        server_label=args.server_label,
    )
    configure_logging(settings.log_dir, debug=args.debug)
    logger.info(
        f"Starting authorization broker for '{args.endpoint}' "
        f"(capture: {settings.capture_mode.value}, session: {settings.session_mode.value})"
    )

    try:
        asyncio.run(run_broker(settings, args.kernel_url, args.endpoint, args.proxy_token))
    except KeyboardInterrupt:
        logger.info("Broker stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
