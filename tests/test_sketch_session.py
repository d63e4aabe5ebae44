import asyncio
import io

import pytest
from PIL import Image

from conftest import FakeGenerator, FakeSandbox, FakeSharedBrowser
from models.generation import GenerationOutcome, GenerationResponse, RenderState, ViewTab
from services.canvas_capture import BytesImageSource
from services.errors import SessionBusyError
from services.sandbox_document import default_runtime_bundle
from services.sandbox_renderer import PlaywrightSandbox, SandboxHost
from services.sketch_session import (
    CAPTURE_FAILED_ERROR,
    EMPTY_CANVAS_ERROR,
    ITERATION_DONE_MESSAGE,
    SessionManager,
    SketchSession,
)


def sketch_source():
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), (0, 0, 0)).save(buffer, format="PNG")
    return BytesImageSource(buffer.getvalue())


def success(code):
    return GenerationOutcome(response=GenerationResponse(success=True, code=code))


def failure(error, details=None, status_code=500):
    return GenerationOutcome(
        response=GenerationResponse(success=False, error=error, details=details),
        status_code=status_code
    )


@pytest.fixture
def sandbox():
    return SandboxHost(FakeSandbox(script=[{"type": "ready"}] * 5), timeout=0.05, runtime=default_runtime_bundle())


async def test_generate_captures_and_renders(sandbox):
    generator = FakeGenerator([success("const exports = {};\nexports.default = () => null;")])
    session = SketchSession(generator, sandbox=sandbox)
    session.select_tab(ViewTab.CODE)

    assert await session.generate(sketch_source()) is True

    [request] = generator.requests
    assert request.image.startswith("data:image/png;base64,")
    assert request.feedback is None
    assert session.current_code == "const exports = {};\nexports.default = () => null;"
    assert session.active_tab == ViewTab.PREVIEW
    assert session.render_state == RenderState.READY
    assert session.error is None
    assert not session.is_generating


async def test_generate_with_empty_canvas_is_refused():
    generator = FakeGenerator()
    session = SketchSession(generator)

    assert await session.generate(BytesImageSource(b"")) is False
    assert session.error == EMPTY_CANVAS_ERROR
    assert generator.requests == []


async def test_generate_with_unreadable_image():
    session = SketchSession(FakeGenerator())

    assert await session.generate(BytesImageSource(b"garbage")) is False
    assert session.error == CAPTURE_FAILED_ERROR


async def test_generate_failure_surfaces_single_message():
    generator = FakeGenerator([failure("Rate limit exceeded", "Too many requests. Please try again later.", 429)])
    session = SketchSession(generator)

    assert await session.generate(sketch_source()) is False
    assert session.error == "Too many requests. Please try again later."
    assert session.current_code is None
    assert len(generator.requests) == 1


async def test_iterate_without_code_is_silently_ignored():
    generator = FakeGenerator()
    session = SketchSession(generator)

    assert await session.iterate("make it blue") is False
    assert session.error is None
    assert generator.requests == []


async def test_iterate_with_blank_feedback_is_silently_ignored():
    generator = FakeGenerator()
    session = SketchSession(generator)
    session.current_code = "const A = 1;"

    assert await session.iterate("   ") is False
    assert generator.requests == []
    assert session.turns == []


async def test_iterate_replaces_code_and_records_turns(sandbox):
    generator = FakeGenerator([success("const B = 2;")])
    session = SketchSession(generator, sandbox=sandbox)
    session.current_code = "const A = 1;"
    session.select_tab(ViewTab.CHAT)

    assert await session.iterate("make the button blue") is True

    [request] = generator.requests
    assert request.feedback == "make the button blue"
    assert request.current_code == "const A = 1;"
    assert session.current_code == "const B = 2;"
    assert session.active_tab == ViewTab.PREVIEW
    assert [(t.role, t.content) for t in session.turns] == [
        ("user", "make the button blue"),
        ("assistant", ITERATION_DONE_MESSAGE),
    ]


async def test_iterate_failure_keeps_code():
    generator = FakeGenerator([failure("Provider API error")])
    session = SketchSession(generator)
    session.current_code = "const A = 1;"

    assert await session.iterate("add a footer") is False
    assert session.current_code == "const A = 1;"
    assert session.error == "Provider API error"
    assert [t.role for t in session.turns] == ["user"]


async def test_busy_session_rejects_new_requests():
    session = SketchSession(FakeGenerator())
    session.current_code = "const A = 1;"
    session.is_generating = True

    with pytest.raises(SessionBusyError):
        await session.generate(sketch_source())
    with pytest.raises(SessionBusyError):
        await session.iterate("again")


async def test_retry_preview_rerenders_without_regenerating(sandbox):
    generator = FakeGenerator()
    session = SketchSession(generator, sandbox=sandbox)
    session.current_code = "const App = () => null;"

    assert await session.retry_preview() == RenderState.READY
    assert generator.requests == []
    assert len(sandbox.backend.documents) == 1


def test_document_follows_current_code():
    session = SketchSession(FakeGenerator())
    assert session.document is None

    session.current_code = "const App = () => null;"
    assert "exports.default = App;" in session.document


def test_clear_resets_code_and_error():
    session = SketchSession(FakeGenerator())
    session.current_code = "const A = 1;"
    session.error = "old"
    session.select_tab(ViewTab.CODE)

    session.clear()

    assert session.current_code is None
    assert session.error is None
    assert session.active_tab == ViewTab.PREVIEW


async def test_session_manager_lifecycle():
    manager = SessionManager()
    backend = FakeSandbox()
    session = await manager.create(FakeGenerator(), sandbox=SandboxHost(backend))

    assert manager.get(session.session_id) is session
    assert await manager.remove(session.session_id) is True
    assert manager.get(session.session_id) is None
    assert backend.closed
    assert await manager.remove(session.session_id) is False


async def test_generate_with_oversized_image(monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 16)
    generator = FakeGenerator()
    session = SketchSession(generator)

    assert await session.generate(sketch_source()) is False
    assert session.error == CAPTURE_FAILED_ERROR
    assert generator.requests == []
    assert session.is_generating is False


async def test_overlapping_retries_keep_one_browser_context():
    browser = FakeSharedBrowser()
    host = SandboxHost(PlaywrightSandbox(browser=browser), timeout=0.05, runtime=default_runtime_bundle())
    session = SketchSession(FakeGenerator(), sandbox=host)
    session.current_code = "const App = () => null;"

    await asyncio.gather(session.retry_preview(), session.retry_preview())
    await session.close()

    assert len(browser.fake.contexts) == 2
    assert browser.fake.max_open_contexts == 1
    assert all(context.closed for context in browser.fake.contexts)
    assert not browser.fake.closed


async def test_session_manager_evicts_least_recently_used_when_full():
    manager = SessionManager(max_sessions=2, ttl=3600)
    backend = FakeSandbox()
    first = await manager.create(FakeGenerator(), sandbox=SandboxHost(backend))
    second = await manager.create(FakeGenerator())
    manager.get(first.session_id)
    first.last_active += 1

    third = await manager.create(FakeGenerator())

    assert set(manager.sessions) == {first.session_id, third.session_id}
    assert manager.get(second.session_id) is None


async def test_session_manager_keeps_busy_sessions():
    manager = SessionManager(max_sessions=1, ttl=3600)
    busy = await manager.create(FakeGenerator())
    busy.is_generating = True

    other = await manager.create(FakeGenerator())

    assert set(manager.sessions) == {busy.session_id, other.session_id}


async def test_session_manager_expires_idle_sessions():
    manager = SessionManager(max_sessions=10, ttl=60)
    backend = FakeSandbox()
    stale = await manager.create(FakeGenerator(), sandbox=SandboxHost(backend))
    stale.last_active -= 120

    fresh = await manager.create(FakeGenerator())

    assert list(manager.sessions) == [fresh.session_id]
    assert backend.closed
