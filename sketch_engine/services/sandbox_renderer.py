"""
Sandbox Renderer

Hosts the isolated preview of generated code. The host owns a small state
machine (idle -> loading -> ready | errored) and a backend that actually
executes the document. Each render uses a fresh execution context, and only
the first signal of the current render counts.
"""
import asyncio
from typing import Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from config import settings
from logging_config import logger
from models.generation import RenderSignal, RenderState
from services.sandbox_document import RuntimeBundle, build_sandbox_document, load_runtime_bundle


SignalCallback = Callable[[Any], None]

# Forwards the document's postMessage to the exposed host binding. It is
# written into the document itself: set_content reopens the page, which
# drops window listeners installed beforehand.
SIGNAL_BRIDGE = """
window.addEventListener('message', function (event) {
  var data = event.data;
  if (data && (data.type === 'ready' || data.type === 'error') && window.__sandboxSignal) {
    window.__sandboxSignal(data);
  }
});
"""


def with_signal_bridge(document: str) -> str:
    """Insert the bridge ahead of every other script in the document"""
    bridge = f"<script>{SIGNAL_BRIDGE}</script>"
    if "<head>" in document:
        return document.replace("<head>", f"<head>\n  {bridge}", 1)
    return bridge + document


class SandboxBackend:
    """Executes a sandbox document and reports its signals"""

    async def load(self, document: str, on_signal: SignalCallback) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class SharedBrowser:
    """
    One headless Chromium process shared by every Playwright sandbox.

    Launched on first use; sandboxes only ever own browser contexts.
    """

    def __init__(self):
        self._playwright = None
        self._browser = None
        self._lock = asyncio.Lock()

    async def get(self):
        async with self._lock:
            if self._browser is None:
                from playwright.async_api import async_playwright

                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(headless=True)
                logger.info("Sandbox browser launched")
            return self._browser

    async def close(self) -> None:
        async with self._lock:
            if self._browser is not None:
                await self._browser.close()
                self._browser = None
                logger.info("Sandbox browser closed")
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None


# Global browser shared by all sandboxes
shared_browser = SharedBrowser()


class PlaywrightSandbox(SandboxBackend):
    """
    Headless Chromium backend.

    The browser is shared, but every load gets a brand-new browser context so
    no storage, globals or timers carry over between renders. Loads are
    serialized so only one context per sandbox is ever open.
    """

    def __init__(
        self,
        viewport_width: Optional[int] = None,
        viewport_height: Optional[int] = None,
        browser: Optional[SharedBrowser] = None
    ):
        self.viewport = {
            "width": viewport_width or settings.SANDBOX_VIEWPORT_WIDTH,
            "height": viewport_height or settings.SANDBOX_VIEWPORT_HEIGHT
        }
        self.browser = browser or shared_browser
        self._context = None
        self._page = None
        self._lock = asyncio.Lock()

    async def _close_context(self):
        if self._context is not None:
            context = self._context
            self._context = None
            self._page = None
            await context.close()

    async def load(self, document: str, on_signal: SignalCallback) -> None:
        async with self._lock:
            browser = await self.browser.get()
            await self._close_context()

            context = await browser.new_context(viewport=self.viewport)
            self._context = context
            await context.expose_function("__sandboxSignal", on_signal)

            self._page = await context.new_page()
            await self._page.set_content(with_signal_bridge(document), wait_until="domcontentloaded")

    async def screenshot(self) -> Optional[bytes]:
        """PNG of the current render, None when nothing is loaded"""
        if self._page is None:
            return None
        return await self._page.screenshot(type="png", full_page=True)

    async def close(self) -> None:
        async with self._lock:
            await self._close_context()


class SandboxHost:
    """Tracks the render state of the code currently shown in the sandbox"""

    def __init__(
        self,
        backend: SandboxBackend,
        timeout: Optional[float] = None,
        runtime: Optional[RuntimeBundle] = None
    ):
        self.backend = backend
        self.timeout = settings.SANDBOX_READY_TIMEOUT if timeout is None else timeout
        self.runtime = runtime
        self.state = RenderState.IDLE
        self.error: Optional[str] = None
        self.code: Optional[str] = None
        self._generation = 0
        self._waiter: Optional[asyncio.Future] = None

    def _signal_handler(self, generation: int) -> SignalCallback:
        def handle(payload: Any) -> None:
            waiter = self._waiter
            if generation != self._generation or waiter is None or waiter.done():
                logger.debug("Ignoring stale sandbox signal", render=generation)
                return
            try:
                signal = RenderSignal.model_validate(payload)
            except PydanticValidationError:
                logger.warning("Ignoring malformed sandbox signal", render=generation)
                return
            waiter.set_result(signal)

        return handle

    async def render(self, code: str) -> RenderState:
        """
        Render code in a fresh context and wait for its first signal.

        Returns:
            The resulting state. A missing signal within the timeout counts
            as ready.
        """
        self._generation += 1
        generation = self._generation
        self.code = code
        self.state = RenderState.LOADING
        self.error = None

        waiter = asyncio.get_running_loop().create_future()
        self._waiter = waiter

        if self.runtime is None:
            self.runtime = await load_runtime_bundle()
        document = build_sandbox_document(code, self.runtime)

        try:
            await self.backend.load(document, self._signal_handler(generation))
        except Exception as e:
            logger.error("Sandbox failed to load document", error=str(e), render=generation)
            if generation == self._generation:
                self.state = RenderState.ERRORED
                self.error = f"Preview failed to load: {e}"
            return self.state

        try:
            signal = await asyncio.wait_for(waiter, self.timeout)
        except asyncio.TimeoutError:
            signal = None

        if generation != self._generation:
            return self.state

        if signal is None:
            logger.info("No sandbox signal before timeout, assuming ready", timeout=self.timeout)
            self.state = RenderState.READY
        elif signal.type == "ready":
            self.state = RenderState.READY
        else:
            self.state = RenderState.ERRORED
            self.error = signal.message or "Unknown render error"
            logger.info("Sandbox reported render error", error=self.error)

        return self.state

    async def retry(self) -> RenderState:
        """Re-render the current code; no-op when nothing has been rendered"""
        if self.code is None:
            return self.state
        return await self.render(self.code)

    async def close(self) -> None:
        await self.backend.close()
