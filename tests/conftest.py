import asyncio
import os

# Settings are read at import time
os.environ["ENVIRONMENT"] = "test"
os.environ["COMPLETION_PROVIDER"] = "openai"
os.environ["OPENAI_API_KEY"] = "sk-test-key"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["REQUIRE_AUTH"] = "false"
os.environ["JWT_SECRET"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["SANDBOX_INLINE_RUNTIMES"] = "false"
os.environ.pop("SENTRY_DSN", None)

import pytest

from models.generation import GenerationOutcome, GenerationResponse, TokenUsage
from services.completion_client import CompletionClient, CompletionResult
from services.sandbox_renderer import SandboxBackend, SharedBrowser


class FakeCompletionClient(CompletionClient):
    """Returns canned text, or raises the configured error"""

    provider = "fake"

    def __init__(self, text="export default function App() { return <div>Hi</div>; }", error=None):
        self.text = text
        self.error = error
        self.calls = []

    async def complete(self, messages, model_config=None):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return CompletionResult(
            text=self.text,
            usage=TokenUsage(prompt_tokens=10, completion_tokens=20, total_tokens=30),
            model="fake-model"
        )


class FakeGenerator:
    """Stands in for the orchestrator in session tests"""

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.requests = []

    async def generate(self, request):
        self.requests.append(request)
        if self.outcomes:
            return self.outcomes.pop(0)
        return GenerationOutcome(
            response=GenerationResponse(success=True, code="const exports = {};\nexports.default = () => null;")
        )


class FakeSandbox(SandboxBackend):
    """
    In-process backend. `script` is a list of payloads delivered to the
    signal callback right after load; an Exception instance is raised instead.
    """

    def __init__(self, script=None):
        self.script = list(script or [])
        self.documents = []
        self.callbacks = []
        self.closed = False

    async def load(self, document, on_signal):
        self.documents.append(document)
        self.callbacks.append(on_signal)
        step = self.script.pop(0) if self.script else None
        if isinstance(step, Exception):
            raise step
        if step is not None:
            on_signal(step)

    async def close(self):
        self.closed = True



class FakeBrowserContext:
    def __init__(self, browser):
        self.browser = browser
        self.closed = False
        self.documents = []

    async def expose_function(self, name, callback):
        self.callback = callback

    async def new_page(self):
        return self

    async def set_content(self, document, wait_until=None):
        await asyncio.sleep(0)
        self.documents.append(document)

    async def close(self):
        self.closed = True
        self.browser.open_contexts -= 1


class FakeBrowser:
    """Counts contexts; `new_context` yields so overlapping loads interleave"""

    def __init__(self):
        self.contexts = []
        self.open_contexts = 0
        self.max_open_contexts = 0
        self.closed = False

    async def new_context(self, viewport=None):
        await asyncio.sleep(0.01)
        context = FakeBrowserContext(self)
        self.contexts.append(context)
        self.open_contexts += 1
        self.max_open_contexts = max(self.max_open_contexts, self.open_contexts)
        return context


class FakeSharedBrowser(SharedBrowser):
    """SharedBrowser that hands out a FakeBrowser instead of launching Chromium"""

    def __init__(self):
        super().__init__()
        self.fake = FakeBrowser()

    async def get(self):
        return self.fake

    async def close(self):
        self.fake.closed = True

@pytest.fixture
def fake_client():
    return FakeCompletionClient()


@pytest.fixture
def fake_generator():
    return FakeGenerator()
