"""
Runs sandbox documents in headless Chromium.

The runtimes are small in-page stand-ins so the tests need no network: Babel
passes source through (components here are written without JSX) and the
React DOM stand-in renders synchronously, honouring error boundaries.
"""
import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError

from models.generation import RenderState
from services.sandbox_document import RuntimeAsset, RuntimeBundle, build_sandbox_document
from services.sandbox_renderer import PlaywrightSandbox, SandboxHost, SharedBrowser

REACT_STUB = """
window.React = {
  Component: function Component(props) { this.props = props; },
  createElement: function (type, props) {
    var children = Array.prototype.slice.call(arguments, 2);
    var merged = Object.assign({}, props);
    if (children.length) merged.children = children.length === 1 ? children[0] : children;
    return { type: type, props: merged };
  }
};
"""

REACT_DOM_STUB = """
window.ReactDOM = (function () {
  function renderNode(element) {
    if (element === null || element === undefined || element === false) return '';
    if (typeof element !== 'object') return String(element);
    if (Array.isArray(element)) return element.map(renderNode).join('');
    var type = element.type;
    var props = element.props || {};
    if (typeof type === 'function' && type.prototype instanceof React.Component) {
      var instance = new type(props);
      try {
        return renderNode(instance.render());
      } catch (error) {
        if (!type.getDerivedStateFromError) throw error;
        instance.state = type.getDerivedStateFromError(error);
        if (instance.componentDidCatch) instance.componentDidCatch(error);
        return renderNode(instance.render());
      }
    }
    if (typeof type === 'function') return renderNode(type(props));
    return '<' + type + '>' + renderNode(props.children) + '</' + type + '>';
  }
  return {
    createRoot: function (node) {
      return { render: function (element) { node.innerHTML = renderNode(element); } };
    },
    flushSync: function (callback) { callback(); }
  };
})();
"""

STUB_RUNTIME = RuntimeBundle(assets=(
    RuntimeAsset("tailwind", "stub:tailwind", "window.tailwind = {};"),
    RuntimeAsset("react", "stub:react", REACT_STUB),
    RuntimeAsset("react-dom", "stub:react-dom", REACT_DOM_STUB),
    RuntimeAsset("babel", "stub:babel", "window.Babel = { transform: function (source) { return { code: source }; } };"),
    RuntimeAsset("lucide", "stub:lucide", "window.lucide = {};"),
))


class RecordingSandbox(PlaywrightSandbox):
    """Keeps every signal the page sends, not just the first"""

    def __init__(self, browser):
        super().__init__(browser=browser)
        self.signals = []

    async def load(self, document, on_signal):
        def record(payload):
            self.signals.append(payload)
            on_signal(payload)

        await super().load(document, record)


@pytest.fixture
async def browser():
    shared = SharedBrowser()
    try:
        await shared.get()
    except PlaywrightError as e:
        pytest.skip(f"Chromium is not available: {e}")
    yield shared
    await shared.close()


@pytest.fixture
async def sandbox(browser):
    backend = RecordingSandbox(browser)
    yield backend
    await backend.close()


async def render(sandbox, code):
    host = SandboxHost(sandbox, timeout=5.0, runtime=STUB_RUNTIME)
    state = await host.render(code)
    # Late duplicates would show up here
    await asyncio.sleep(0.2)
    return host, state


async def test_valid_component_posts_exactly_one_ready(sandbox):
    host, state = await render(
        sandbox,
        "export default function App() { return React.createElement('h1', null, 'Hello sandbox'); }"
    )

    assert state == RenderState.READY
    assert host.error is None
    assert sandbox.signals == [{"type": "ready"}]
    assert "Hello sandbox" in await sandbox._page.inner_text("#root")


async def test_hooks_from_prelude_are_in_scope(sandbox):
    _, state = await render(
        sandbox,
        "const App = () => React.createElement('p', null, String(useState) + String(useRef));"
    )

    assert state == RenderState.READY
    assert sandbox.signals == [{"type": "ready"}]


async def test_throwing_component_posts_exactly_one_error(sandbox):
    host, state = await render(
        sandbox,
        "const App = () => { throw new Error('Boom from render'); };"
    )

    assert state == RenderState.ERRORED
    assert host.error == "Boom from render"
    assert sandbox.signals == [{"type": "error", "message": "Boom from render"}]


async def test_syntax_error_posts_exactly_one_error(sandbox):
    host, state = await render(sandbox, "const App = () => {")

    assert state == RenderState.ERRORED
    assert len(sandbox.signals) == 1
    assert sandbox.signals[0]["type"] == "error"
    assert host.error


async def test_missing_component_is_reported(sandbox):
    host, state = await render(sandbox, "const answer = 42;")

    assert state == RenderState.ERRORED
    assert host.error.startswith("No component found")
    assert len(sandbox.signals) == 1


async def test_document_renders_directly(sandbox):
    signals = []
    document = build_sandbox_document(
        "const App = () => React.createElement('span', null, 'direct');",
        STUB_RUNTIME
    )

    await sandbox.load(document, signals.append)
    await asyncio.sleep(0.2)

    assert signals == [{"type": "ready"}]
