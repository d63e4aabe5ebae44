from conftest import FakeSandbox, FakeSharedBrowser
from models.generation import RenderState
from services.sandbox_document import build_sandbox_document, default_runtime_bundle
from services.sandbox_renderer import (
    PlaywrightSandbox,
    SandboxBackend,
    SandboxHost,
    shared_browser,
    with_signal_bridge,
)


def make_host(backend, timeout=0.05):
    return SandboxHost(backend, timeout=timeout, runtime=default_runtime_bundle())


def test_host_starts_idle():
    host = make_host(FakeSandbox())
    assert host.state == RenderState.IDLE
    assert host.error is None


async def test_ready_signal():
    backend = FakeSandbox(script=[{"type": "ready"}])
    host = make_host(backend)

    state = await host.render("export default function A() { return null; }")

    assert state == RenderState.READY
    assert host.error is None
    assert "exports.default = A;" in backend.documents[0]


async def test_error_signal():
    host = make_host(FakeSandbox(script=[{"type": "error", "message": "Foo is not defined"}]))

    state = await host.render("const App = () => <Foo />;")

    assert state == RenderState.ERRORED
    assert host.error == "Foo is not defined"


async def test_silence_counts_as_ready_after_timeout():
    host = make_host(FakeSandbox(), timeout=0.01)
    assert await host.render("const App = () => null;") == RenderState.READY


async def test_malformed_signal_is_ignored():
    host = make_host(FakeSandbox(script=[{"type": "loaded"}]), timeout=0.01)
    assert await host.render("const App = () => null;") == RenderState.READY


async def test_only_first_signal_counts():
    class DoubleSignal(SandboxBackend):
        async def load(self, document, on_signal):
            on_signal({"type": "error", "message": "boom"})
            on_signal({"type": "ready"})

    host = make_host(DoubleSignal())
    assert await host.render("const App = () => null;") == RenderState.ERRORED
    assert host.error == "boom"


async def test_signals_from_previous_render_are_ignored():
    class StaleSignal(SandboxBackend):
        def __init__(self):
            self.callbacks = []

        async def load(self, document, on_signal):
            self.callbacks.append(on_signal)
            if len(self.callbacks) == 2:
                self.callbacks[0]({"type": "error", "message": "old render"})
                on_signal({"type": "ready"})

    backend = StaleSignal()
    host = make_host(backend, timeout=0.01)

    await host.render("const A = () => null;")
    state = await host.render("const B = () => null;")

    assert state == RenderState.READY
    assert host.error is None


async def test_backend_failure_is_reported_as_error():
    host = make_host(FakeSandbox(script=[RuntimeError("browser crashed")]))

    state = await host.render("const App = () => null;")

    assert state == RenderState.ERRORED
    assert "browser crashed" in host.error


async def test_retry_rebuilds_with_same_code():
    backend = FakeSandbox(script=[{"type": "error", "message": "flaky"}, {"type": "ready"}])
    host = make_host(backend)

    await host.render("const App = () => null;")
    state = await host.retry()

    assert state == RenderState.READY
    assert len(backend.documents) == 2
    assert backend.documents[0] == backend.documents[1]


async def test_retry_without_code_is_a_no_op():
    backend = FakeSandbox()
    host = make_host(backend)

    assert await host.retry() == RenderState.IDLE
    assert backend.documents == []


async def test_close_releases_backend():
    backend = FakeSandbox()
    await make_host(backend).close()
    assert backend.closed


def test_playwright_sandboxes_share_one_browser():
    assert PlaywrightSandbox().browser is shared_browser
    assert PlaywrightSandbox().browser is PlaywrightSandbox().browser


async def test_each_load_replaces_the_previous_context():
    browser = FakeSharedBrowser()
    sandbox = PlaywrightSandbox(browser=browser)

    await sandbox.load("<p>one</p>", lambda payload: None)
    await sandbox.load("<p>two</p>", lambda payload: None)

    first, second = browser.fake.contexts
    assert first.closed and not second.closed
    assert len(second.documents) == 1
    assert second.documents[0].endswith("<p>two</p>")
    assert "window.__sandboxSignal(data)" in second.documents[0]


async def test_closing_a_sandbox_keeps_the_shared_browser():
    browser = FakeSharedBrowser()
    sandboxes = [PlaywrightSandbox(browser=browser), PlaywrightSandbox(browser=browser)]
    for sandbox in sandboxes:
        await sandbox.load("<p>hi</p>", lambda payload: None)

    await sandboxes[0].close()

    assert browser.fake.open_contexts == 1
    assert not browser.fake.closed


def test_signal_bridge_runs_before_document_scripts():
    document = build_sandbox_document("const App = () => null;", default_runtime_bundle())
    bridged = with_signal_bridge(document)

    assert bridged.index("window.__sandboxSignal(data)") < bridged.index("<script crossorigin")
    assert bridged.count("<head>") == 1
