import sys
from pathlib import Path
from typing import List, Union

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from auth_broker.models import CredentialsPropagationResult  # noqa: E402
from auth_broker.transport import FrameDispatcher  # noqa: E402


class FakePrompter:
    """Answers prompts from a queue; an exhausted queue means 'dismissed'."""

    def __init__(self):
        self.answers: List[bool] = []
        self.prompts: List[tuple] = []

    async def confirm(self, message, detail, accept_label):
        self.prompts.append((message, detail, accept_label))
        return self.answers.pop(0) if self.answers else False


class FakeBrowser:
    def __init__(self):
        self.opened: List[str] = []
        self.on_open = None

    async def open(self, url):
        self.opened.append(url)
        if self.on_open is not None:
            await self.on_open(url)


class FakeNotifier:
    def __init__(self):
        self.warnings: List[tuple] = []

    async def warn(self, message, links):
        self.warnings.append((message, links))


class FakeTransport:
    def __init__(self):
        self.sent: List[Union[str, bytes]] = []
        self.closed = False
        self._dispatcher = FrameDispatcher()

    def on_message(self, handler):
        return self._dispatcher.add(handler)

    async def send(self, data):
        self.sent.append(data)

    def emit(self, data):
        self._dispatcher.dispatch(data)

    async def close(self):
        self.closed = True


class FakePropagationClient:
    """
    Stands in for the Colab REST client.

    ``dry_run_result`` and ``result`` may be results or exceptions to raise.
    """

    def __init__(self):
        self.calls: List[tuple] = []
        self.dry_run_result: Union[CredentialsPropagationResult, Exception] = (
            CredentialsPropagationResult(success=True)
        )
        self.result: Union[CredentialsPropagationResult, Exception] = (
            CredentialsPropagationResult(success=True)
        )

    async def propagate_credentials(self, endpoint, auth_type, dry_run):
        self.calls.append((endpoint, auth_type, dry_run))
        outcome = self.dry_run_result if dry_run else self.result
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    @property
    def propagate_calls(self) -> int:
        return sum(1 for call in self.calls if call[2] is False)


def needs_consent(uri: str = "https://accounts.google.com/o/oauth2/auth?scope=drive&client_id=x"):
    return CredentialsPropagationResult(success=False, unauthorized_redirect_uri=uri)


@pytest.fixture
def prompter() -> FakePrompter:
    return FakePrompter()


@pytest.fixture
def browser() -> FakeBrowser:
    return FakeBrowser()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def colab_client() -> FakePropagationClient:
    return FakePropagationClient()


@pytest.fixture
def consent_result():
    return needs_consent
