import asyncio
import json
from urllib.parse import parse_qs, urlsplit

import pytest

from auth_broker import AuthBroker, CaptureMode, ReplySessionMode
from auth_broker.capture import LoopbackHttpCapture
from auth_broker.errors import AuthorizationCancelledError, InterceptorDisposedError


def _auth_request(msg_id: int) -> str:
    return json.dumps(
        {
            "header": {"msg_type": "colab_request"},
            "content": {"request": {"authType": "dfs_ephemeral"}},
            "metadata": {"colab_request_type": "request_auth", "colab_msg_id": msg_id},
        }
    )


def _broker(colab_client, prompter, browser, notifier, **kwargs) -> AuthBroker:
    return AuthBroker(
        colab_client,
        "m-s-abc123",
        server_label="Colab GPU T4",
        prompter=prompter,
        browser=browser,
        notifier=notifier,
        **kwargs,
    )


async def _settle(interceptor):
    async def poll():
        while interceptor.pending_authorizations:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=5)


@pytest.mark.asyncio
async def test_kernel_request_consent_and_reply(
    colab_client, prompter, browser, notifier, transport, consent_result
):
    colab_client.dry_run_result = consent_result()
    prompter.answers = [True, True]
    broker = _broker(colab_client, prompter, browser, notifier)
    interceptor = broker.attach(transport)

    transport.emit(_auth_request(21))
    await _settle(interceptor)

    assert colab_client.propagate_calls == 1
    assert len(transport.sent) == 1
    value = json.loads(transport.sent[0])["content"]["value"]
    assert value == {"type": "colab_reply", "colab_msg_id": 21}

    await broker.aclose()


@pytest.mark.asyncio
async def test_declined_request_replies_with_error(
    colab_client, prompter, browser, notifier, transport, consent_result
):
    colab_client.dry_run_result = consent_result()
    broker = _broker(colab_client, prompter, browser, notifier)
    interceptor = broker.attach(transport)

    transport.emit(_auth_request(5))
    await _settle(interceptor)

    assert colab_client.propagate_calls == 0
    value = json.loads(transport.sent[0])["content"]["value"]
    assert value["error"] == "User cancelled dfs_ephemeral authorization"

    await broker.aclose()


@pytest.mark.asyncio
async def test_uri_mode_routes_redirects_through_broker(
    colab_client, prompter, browser, notifier, transport, consent_result
):
    colab_client.dry_run_result = consent_result(
        "https://accounts.example/auth?scope=drive&client_id=x"
    )
    prompter.answers = [True, True]
    broker = _broker(
        colab_client,
        prompter,
        browser,
        notifier,
        capture_mode=CaptureMode.URI,
        uri_scheme="cursor",
    )

    async def redirect(url):
        state = parse_qs(urlsplit(url).query)["state"][0]
        assert broker.handle_uri(f"cursor://googlecolab.colab?code=c&state={state}&scope=drive")

    browser.on_open = redirect
    interceptor = broker.attach(transport)

    transport.emit(_auth_request(9))
    await _settle(interceptor)

    assert colab_client.propagate_calls == 1
    assert "error" not in json.loads(transport.sent[0])["content"]["value"]
    await broker.aclose()


def test_capture_mode_wiring(colab_client, prompter, browser, notifier):
    plain = _broker(colab_client, prompter, browser, notifier)
    assert not plain.orchestrator.captures_redirects

    loopback = _broker(
        colab_client,
        prompter,
        browser,
        notifier,
        capture_mode="loopback",
        loopback_target="vscode://googlecolab.colab",
    )
    assert loopback.orchestrator.captures_redirects
    capture = loopback.orchestrator.capture_factory("n1", None)
    assert isinstance(capture, LoopbackHttpCapture)
    assert capture.target_uri == "vscode://googlecolab.colab"
    assert capture.expected_nonce == "n1"

    default_target = _broker(colab_client, prompter, browser, notifier, capture_mode="loopback")
    capture = default_target.orchestrator.capture_factory("n1", "https://colab.example/callback")
    assert capture.target_uri == "https://colab.example/callback"

    uri = _broker(colab_client, prompter, browser, notifier, capture_mode=CaptureMode.URI)
    assert uri.orchestrator.capture_factory("n1", None) is uri.uri_capture


@pytest.mark.asyncio
async def test_aclose_disposes_interceptors_and_rejects_waits(
    colab_client, prompter, browser, notifier, transport
):
    broker = _broker(
        colab_client,
        prompter,
        browser,
        notifier,
        session_mode=ReplySessionMode.GENERATED,
    )
    interceptor = broker.attach(transport)
    wait = asyncio.ensure_future(broker.correlator.wait_for_code("drive", "n1"))
    await asyncio.sleep(0)

    await broker.aclose()

    with pytest.raises(AuthorizationCancelledError):
        await wait
    with pytest.raises(InterceptorDisposedError):
        await interceptor.send("{}")
