import logging
from pathlib import Path

import pytest

from auth_broker import AuthBroker, CaptureMode, ReplySessionMode
from auth_broker.propagation import DEFAULT_COLAB_DOMAIN
from broker_app.main import build_broker, build_parser, configure_logging, load_environment
from broker_app.settings import BrokerSettings


def test_settings_defaults():
    settings = BrokerSettings.from_env({})

    assert settings.colab_domain == DEFAULT_COLAB_DOMAIN
    assert settings.access_token is None
    assert settings.capture_mode == CaptureMode.NONE
    assert settings.session_mode == ReplySessionMode.CAPTURED
    assert settings.uri_scheme == "vscode"
    assert settings.http_timeout == 30.0


def test_settings_from_env(tmp_path: Path):
    settings = BrokerSettings.from_env(
        {
            "COLAB_DOMAIN": "https://colab.example.com",
            "COLAB_ACCESS_TOKEN": "tok",
            "BROKER_CAPTURE_MODE": "Loopback",
            "BROKER_REPLY_SESSION_MODE": "generated",
            "BROKER_SERVER_LABEL": "Colab T4",
            "BROKER_HTTP_TIMEOUT": "12.5",
            "BROKER_LOG_DIR": str(tmp_path),
            "BROKER_LOOPBACK_TARGET": "vscode://googlecolab.colab",
        }
    )

    assert settings.colab_domain == "https://colab.example.com"
    assert settings.access_token == "tok"
    assert settings.capture_mode == CaptureMode.LOOPBACK
    assert settings.session_mode == ReplySessionMode.GENERATED
    assert settings.server_label == "Colab T4"
    assert settings.http_timeout == 12.5
    assert settings.log_dir == tmp_path
    assert settings.loopback_target == "vscode://googlecolab.colab"


def test_invalid_settings_fall_back_to_defaults(caplog):
    with caplog.at_level(logging.WARNING):
        settings = BrokerSettings.from_env(
            {"BROKER_CAPTURE_MODE": "carrier-pigeon", "BROKER_HTTP_TIMEOUT": "soon"}
        )

    assert settings.capture_mode == CaptureMode.NONE
    assert settings.http_timeout == 30.0
    assert "BROKER_CAPTURE_MODE" in caplog.text


def test_overrides_skip_none():
    settings = BrokerSettings.from_env({"BROKER_SERVER_LABEL": "from env"})

    overridden = settings.with_overrides(server_label=None, capture_mode=CaptureMode.URI)

    assert overridden.server_label == "from env"
    assert overridden.capture_mode == CaptureMode.URI


def test_parser_requires_kernel_and_endpoint():
    args = build_parser().parse_args(
        ["--kernel-url", "ws://k", "--endpoint", "m-s-1", "--capture-mode", "uri"]
    )
    assert args.kernel_url == "ws://k"
    assert args.capture_mode == "uri"
    assert args.debug is False

    with pytest.raises(SystemExit):
        build_parser().parse_args(["--endpoint", "m-s-1"])


def test_load_environment_reads_env_files(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("BROKER_SERVER_LABEL", raising=False)
    monkeypatch.delenv("BROKER_URI_SCHEME", raising=False)
    (tmp_path / ".env").write_text("BROKER_SERVER_LABEL=dotenv label\n")
    (tmp_path / "extra.env").write_text("BROKER_URI_SCHEME=cursor\n")

    load_environment(tmp_path)

    settings = BrokerSettings.from_env()
    assert settings.server_label == "dotenv label"
    assert settings.uri_scheme == "cursor"
    monkeypatch.delenv("BROKER_SERVER_LABEL")
    monkeypatch.delenv("BROKER_URI_SCHEME")


@pytest.mark.asyncio
async def test_build_broker_uses_settings():
    settings = BrokerSettings.from_env(
        {"COLAB_ACCESS_TOKEN": "tok", "BROKER_CAPTURE_MODE": "uri", "BROKER_URI_SCHEME": "cursor"}
    )

    broker = build_broker(settings, "m-s-1")

    assert isinstance(broker, AuthBroker)
    assert broker.capture_mode == CaptureMode.URI
    assert broker.uri_capture.redirect_uri == "cursor://googlecolab.colab"
    assert broker.orchestrator.endpoint == "m-s-1"
    assert await broker.orchestrator.client._access_token() == "tok"


def test_configure_logging_writes_log_files(tmp_path: Path):
    root_logger = logging.getLogger()
    before = list(root_logger.handlers)
    try:
        configure_logging(tmp_path, debug=True)
        logging.getLogger("auth_broker").debug("debug line")
        logging.getLogger("auth_broker").info("info line")
        for handler in root_logger.handlers:
            handler.flush()

        assert "info line" in (tmp_path / "broker.log").read_text()
        debug_log = (tmp_path / "broker_debug.log").read_text()
        assert "debug line" in debug_log
        assert "info line" not in debug_log
    finally:
        for handler in list(root_logger.handlers):
            if handler not in before:
                root_logger.removeHandler(handler)
                handler.close()
