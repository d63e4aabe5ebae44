import base64
import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from conftest import FakeCompletionClient
from main import app
from routers.generate import get_orchestrator
from services.generation_orchestrator import GenerationOrchestrator
from services.sketch_session import session_manager


def sketch_base64():
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), (0, 0, 0)).save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("utf-8")


@pytest.fixture
def client():
    completion = FakeCompletionClient()
    app.dependency_overrides[get_orchestrator] = lambda: GenerationOrchestrator(completion)
    yield TestClient(app)
    app.dependency_overrides.clear()
    session_manager.sessions.clear()


@pytest.fixture
def session_id(client):
    return client.post("/session", json={}).json()["sessionId"]


def test_create_and_fetch_session(client, session_id):
    body = client.get(f"/session/{session_id}").json()

    assert body["sessionId"] == session_id
    assert body["code"] is None
    assert body["activeTab"] == "preview"
    assert body["renderState"] == "idle"


def test_unknown_session_is_404(client):
    assert client.get("/session/does-not-exist").status_code == 404


def test_generate_then_iterate(client, session_id):
    generated = client.post(f"/session/{session_id}/generate", json={"image": sketch_base64()})

    assert generated.status_code == 200
    assert generated.json()["success"] is True
    assert generated.json()["code"].endswith("exports.default = App;")

    iterated = client.post(f"/session/{session_id}/iterate", json={"feedback": "make it blue"}).json()

    assert iterated["success"] is True
    assert [turn["role"] for turn in iterated["turns"]] == ["user", "assistant"]


def test_generate_accepts_data_uri(client, session_id):
    response = client.post(
        f"/session/{session_id}/generate",
        json={"image": f"data:image/png;base64,{sketch_base64()}"}
    )
    assert response.json()["success"] is True


def test_generate_with_empty_image(client, session_id):
    body = client.post(f"/session/{session_id}/generate", json={}).json()

    assert body["success"] is False
    assert body["error"] == "Please draw something on the canvas first!"


def test_generate_with_invalid_base64(client, session_id):
    response = client.post(f"/session/{session_id}/generate", json={"image": "%%%not-base64%%%"})
    assert response.status_code == 400


def test_busy_session_is_409(client, session_id):
    session_manager.get(session_id).is_generating = True

    response = client.post(f"/session/{session_id}/generate", json={"image": sketch_base64()})
    assert response.status_code == 409


def test_preview_requires_code(client, session_id):
    assert client.get(f"/session/{session_id}/preview").status_code == 404

    client.post(f"/session/{session_id}/generate", json={"image": sketch_base64()})
    response = client.get(f"/session/{session_id}/preview")

    assert response.status_code == 200
    assert "exports.default = App;" in response.text


def test_retry_without_sandbox_keeps_idle(client, session_id):
    body = client.post(f"/session/{session_id}/retry").json()
    assert body["renderState"] == "idle"


def test_delete_session(client, session_id):
    assert client.delete(f"/session/{session_id}").json() == {"success": True}
    assert client.delete(f"/session/{session_id}").status_code == 404
