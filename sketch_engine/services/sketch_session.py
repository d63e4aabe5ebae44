"""
Sketch Session - state behind the preview/chat surface.

Holds the current code, the active view, a single user-visible error and the
display-only chat turns. The generator is anything with
`async generate(GenerationRequest) -> GenerationOutcome`: the in-process
orchestrator or the HTTP API client.
"""
import time
import uuid
from typing import Any, Dict, List, Optional

from PIL import Image

from config import settings
from logging_config import logger
from models.generation import ConversationTurn, GenerationOutcome, GenerationRequest, RenderState, ViewTab
from services.canvas_capture import CaptureOptions, ImageSource, capture_image
from services.errors import SessionBusyError
from services.sandbox_document import build_sandbox_document
from services.sandbox_renderer import SandboxHost

EMPTY_CANVAS_ERROR = "Please draw something on the canvas first!"
CAPTURE_FAILED_ERROR = "Failed to capture canvas. Please try again."
GENERATE_FAILED_ERROR = "Failed to generate code"
ITERATE_FAILED_ERROR = "Failed to iterate on code"
ITERATION_DONE_MESSAGE = "Done! I've applied your changes. Check the Preview tab."


class SketchSession:
    """One user's sketch-to-code workspace"""

    def __init__(
        self,
        generator: Any,
        sandbox: Optional[SandboxHost] = None,
        capture_options: Optional[CaptureOptions] = None,
        session_id: Optional[str] = None
    ):
        self.session_id = session_id or uuid.uuid4().hex
        self.generator = generator
        self.sandbox = sandbox
        self.capture_options = capture_options or CaptureOptions()
        self.current_code: Optional[str] = None
        self.active_tab = ViewTab.PREVIEW
        self.error: Optional[str] = None
        self.turns: List[ConversationTurn] = []
        self.is_generating = False
        self.last_active = time.monotonic()

    def touch(self) -> None:
        self.last_active = time.monotonic()

    @property
    def render_state(self) -> RenderState:
        return self.sandbox.state if self.sandbox else RenderState.IDLE

    @property
    def render_error(self) -> Optional[str]:
        return self.sandbox.error if self.sandbox else None

    @property
    def document(self) -> Optional[str]:
        """Sandbox document for the current code, rebuilt on every access"""
        if not self.current_code:
            return None
        return build_sandbox_document(self.current_code)

    def _begin(self) -> None:
        if self.is_generating:
            raise SessionBusyError(
                "Generation in progress",
                "Wait for the current request to finish before starting another"
            )
        self.is_generating = True
        self.error = None

    @staticmethod
    def _failure_message(outcome: GenerationOutcome, default: str) -> str:
        response = outcome.response
        return response.details or response.error or default

    async def _show(self, code: str) -> None:
        self.current_code = code
        self.active_tab = ViewTab.PREVIEW
        if self.sandbox is not None:
            await self.sandbox.render(code)

    async def generate(self, source: ImageSource) -> bool:
        """
        Capture the drawing and generate code from it.

        Returns:
            True when new code is shown, False when `error` explains why not
        """
        self._begin()
        try:
            try:
                image = capture_image(source, self.capture_options)
            except (OSError, ValueError, Image.DecompressionBombError) as e:
                logger.warning("Canvas capture failed", session_id=self.session_id, error=str(e))
                self.error = CAPTURE_FAILED_ERROR
                return False

            if image is None:
                self.error = EMPTY_CANVAS_ERROR
                return False

            outcome = await self.generator.generate(GenerationRequest(image=image))
            if not outcome.success or not outcome.response.code:
                self.error = self._failure_message(outcome, GENERATE_FAILED_ERROR)
                logger.info("Session generation failed", session_id=self.session_id, error=self.error)
                return False

            await self._show(outcome.response.code)
            return True
        finally:
            self.is_generating = False

    async def iterate(self, feedback: str) -> bool:
        """
        Ask for a change to the current code.

        Silently does nothing when there is no code yet or the feedback is blank.
        """
        if not self.current_code or not feedback or not feedback.strip():
            return False

        self._begin()
        try:
            self.turns.append(ConversationTurn(role="user", content=feedback.strip()))

            outcome = await self.generator.generate(
                GenerationRequest(feedback=feedback, current_code=self.current_code)
            )
            if not outcome.success or not outcome.response.code:
                self.error = self._failure_message(outcome, ITERATE_FAILED_ERROR)
                logger.info("Session iteration failed", session_id=self.session_id, error=self.error)
                return False

            await self._show(outcome.response.code)
            self.turns.append(ConversationTurn(role="assistant", content=ITERATION_DONE_MESSAGE))
            return True
        finally:
            self.is_generating = False

    async def retry_preview(self) -> RenderState:
        """Re-render the current code without regenerating it"""
        if self.sandbox is None or not self.current_code:
            return self.render_state
        return await self.sandbox.render(self.current_code)

    def select_tab(self, tab: ViewTab) -> None:
        self.active_tab = tab

    def clear(self) -> None:
        self.current_code = None
        self.active_tab = ViewTab.PREVIEW
        self.error = None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "code": self.current_code,
            "activeTab": self.active_tab.value,
            "error": self.error,
            "isGenerating": self.is_generating,
            "renderState": self.render_state.value,
            "renderError": self.render_error,
            "turns": [turn.model_dump(mode="json") for turn in self.turns],
        }

    async def close(self) -> None:
        if self.sandbox is not None:
            await self.sandbox.close()


class SessionManager:
    """
    In-memory registry of sessions.

    Bounded by `max_sessions`; sessions idle for longer than `ttl` seconds
    are closed on the next create, and the least recently used idle session
    makes room when the registry is full.
    """

    def __init__(self, max_sessions: Optional[int] = None, ttl: Optional[float] = None):
        self.max_sessions = settings.MAX_SESSIONS if max_sessions is None else max_sessions
        self.ttl = settings.SESSION_TTL_SECONDS if ttl is None else ttl
        self.sessions: Dict[str, SketchSession] = {}

    async def _evict(self) -> None:
        now = time.monotonic()
        for session_id, session in list(self.sessions.items()):
            if not session.is_generating and now - session.last_active > self.ttl:
                logger.info("Expiring idle session", session_id=session_id)
                await self.remove(session_id)

        while len(self.sessions) >= self.max_sessions:
            idle = [session for session in self.sessions.values() if not session.is_generating]
            if not idle:
                break
            oldest = min(idle, key=lambda session: session.last_active)
            logger.info("Evicting least recently used session", session_id=oldest.session_id)
            await self.remove(oldest.session_id)

    async def create(self, generator: Any, sandbox: Optional[SandboxHost] = None) -> SketchSession:
        await self._evict()
        session = SketchSession(generator, sandbox=sandbox)
        self.sessions[session.session_id] = session
        logger.info("Created session", session_id=session.session_id, active_sessions=len(self.sessions))
        return session

    def get(self, session_id: str) -> Optional[SketchSession]:
        session = self.sessions.get(session_id)
        if session is not None:
            session.touch()
        return session

    async def remove(self, session_id: str) -> bool:
        session = self.sessions.pop(session_id, None)
        if session is None:
            return False
        await session.close()
        logger.info("Removed session", session_id=session_id)
        return True

    async def close_all(self) -> None:
        for session_id in list(self.sessions):
            await self.remove(session_id)


# Global session registry
session_manager = SessionManager()
