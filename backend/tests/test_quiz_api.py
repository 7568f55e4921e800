"""End-to-end tests for the quiz HTTP API with Gemini and Sheets stubbed out."""
import asyncio
import io
import wave
from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import make_question
from mock_exam.errors import ReportingFailure
from mock_exam.main import app
from mock_exam.models import ExamCategory, QuestionType
from mock_exam.routers import quiz

PCM = bytes([0x00, 0x40, 0x00, 0xC0])
USER = {"name": "Maria Schmidt", "nativeLanguage": "Spanish", "phone": "+49 151 2345678"}


def _exam():
    return [
        make_question(
            0,
            type=QuestionType.LISTENING,
            category=ExamCategory.LISTENING,
            listening_script="Ich komme aus Berlin.",
        ),
        make_question(1),
        make_question(2, category=ExamCategory.VOCABULARY, image_description="A red sofa"),
    ]


@pytest.fixture
def reporter():
    return AsyncMock()


@pytest.fixture(autouse=True)
def stub_services(monkeypatch, reporter):
    monkeypatch.setattr(quiz, "_generate_quiz", AsyncMock(side_effect=lambda: _exam()))
    monkeypatch.setattr(quiz, "_fetch_speech", AsyncMock(return_value=PCM))
    monkeypatch.setattr(quiz, "_fetch_image", AsyncMock(return_value="data:image/png;base64,AAAA"))
    monkeypatch.setattr(quiz, "SheetsReporter", lambda: reporter)
    quiz._sessions.clear()
    yield
    quiz._sessions.clear()


@pytest.fixture
async def client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _started(client):
    created = await client.post("/quiz/sessions")
    assert created.status_code == 201
    session_id = created.json()["sessionId"]
    started = await client.post(f"/quiz/sessions/{session_id}/start")
    assert started.status_code == 200
    return session_id, started.json()


class TestQuizFlow:

    async def test_new_session_is_idle(self, client):
        body = (await client.post("/quiz/sessions")).json()

        assert body["status"] == "idle"
        assert body["total"] == 0
        assert body["question"] is None

    async def test_full_exam(self, client, reporter):
        session_id, body = await _started(client)

        assert body["status"] == "active"
        assert body["total"] == 3
        assert body["question"]["hasAudio"] is True

        for answer in ["komme", "kommt", "komme"]:
            response = await client.post(f"/quiz/sessions/{session_id}/answer", json={"answer": answer})
            assert response.status_code == 200

        payload = response.json()
        assert payload["feedback"]["correct"] is True
        assert payload["session"]["status"] == "collecting_info"
        assert payload["session"]["result"]["scorePercentage"] == 67
        assert payload["session"]["result"]["tier"] == "pass"

        done = await client.post(f"/quiz/sessions/{session_id}/user-info", json=USER)

        assert done.status_code == 200
        assert done.json()["status"] == "completed"
        assert done.json()["userInfo"]["nativeLanguage"] == "Spanish"
        assert done.json()["warnings"] == []
        assert reporter.await_args.args[1:] == (2, 3)

    async def test_answer_is_not_exposed(self, client):
        _, body = await _started(client)

        question = body["question"]
        assert "correctAnswer" not in question
        assert "listeningScript" not in question
        assert "explanation" not in question

    async def test_check_does_not_advance(self, client):
        session_id, _ = await _started(client)

        feedback = (await client.post(f"/quiz/sessions/{session_id}/check", json={"answer": "kommst"})).json()
        state = (await client.get(f"/quiz/sessions/{session_id}")).json()

        assert feedback == {"correct": False, "correctAnswer": "komme", "explanation": "First person singular of kommen."}
        assert state["currentIndex"] == 0

    async def test_invalid_phone_is_rejected(self, client):
        session_id, _ = await _started(client)
        for _ in range(3):
            await client.post(f"/quiz/sessions/{session_id}/answer", json={"answer": "komme"})

        response = await client.post(f"/quiz/sessions/{session_id}/user-info", json={**USER, "phone": "123"})

        assert response.status_code == 422
        state = (await client.get(f"/quiz/sessions/{session_id}")).json()
        assert state["status"] == "collecting_info"

    async def test_reporting_warning_is_returned(self, client, reporter):
        reporter.side_effect = ReportingFailure("Google Sheets integration is not set up yet. Result was not saved.")
        session_id, _ = await _started(client)
        for _ in range(3):
            await client.post(f"/quiz/sessions/{session_id}/answer", json={"answer": "komme"})

        body = (await client.post(f"/quiz/sessions/{session_id}/user-info", json=USER)).json()

        assert body["status"] == "completed"
        assert body["result"]["tier"] == "excellent"
        assert body["warnings"] == ["Google Sheets integration is not set up yet. Result was not saved."]

    async def test_generation_failure(self, client, monkeypatch):
        monkeypatch.setattr(quiz, "_generate_quiz", AsyncMock(side_effect=RuntimeError("down")))
        session_id = (await client.post("/quiz/sessions")).json()["sessionId"]

        body = (await client.post(f"/quiz/sessions/{session_id}/start")).json()

        assert body["status"] == "error"
        assert body["error"] == "Failed to generate quiz. Please try again."

    async def test_reset(self, client):
        session_id, _ = await _started(client)

        body = (await client.post(f"/quiz/sessions/{session_id}/reset")).json()

        assert body["status"] == "idle"
        assert body["total"] == 0


class TestQuizErrors:

    async def test_unknown_session(self, client):
        assert (await client.get("/quiz/sessions/nope")).status_code == 404

    async def test_start_while_loading_keeps_session_data(self, client, monkeypatch):
        loading = asyncio.Event()
        release = asyncio.Event()

        async def slow_quiz():
            loading.set()
            await release.wait()
            return _exam()

        monkeypatch.setattr(quiz, "_generate_quiz", slow_quiz)
        session_id = (await client.post("/quiz/sessions")).json()["sessionId"]
        runtime = quiz._sessions[session_id]
        runtime.warnings.append("earlier warning")
        first = asyncio.create_task(client.post(f"/quiz/sessions/{session_id}/start"))
        await asyncio.wait_for(loading.wait(), timeout=2)

        second = await client.post(f"/quiz/sessions/{session_id}/start")

        assert second.status_code == 409
        assert runtime.warnings == ["earlier warning"]

        release.set()
        body = (await first).json()
        assert body["status"] == "active"
        assert body["warnings"] == []

    async def test_answer_before_start(self, client):
        session_id = (await client.post("/quiz/sessions")).json()["sessionId"]

        response = await client.post(f"/quiz/sessions/{session_id}/answer", json={"answer": "komme"})

        assert response.status_code == 409

    async def test_delete_session(self, client):
        session_id = (await client.post("/quiz/sessions")).json()["sessionId"]

        assert (await client.delete(f"/quiz/sessions/{session_id}")).status_code == 200
        assert (await client.get(f"/quiz/sessions/{session_id}")).status_code == 404


class TestQuizMedia:

    async def test_audio_for_current_question(self, client):
        session_id, body = await _started(client)

        response = await client.get(f"/quiz/sessions/{session_id}/questions/{body['question']['id']}/audio")

        assert response.status_code == 200
        assert response.headers["content-type"] == "audio/wav"
        with wave.open(io.BytesIO(response.content), "rb") as wav:
            assert wav.getframerate() == 24000
            assert wav.readframes(2) == PCM

    async def test_audio_for_previous_question_is_stale(self, client):
        session_id, body = await _started(client)
        first_id = body["question"]["id"]
        await client.post(f"/quiz/sessions/{session_id}/answer", json={"answer": "komme"})

        response = await client.get(f"/quiz/sessions/{session_id}/questions/{first_id}/audio")

        assert response.status_code == 409

    async def test_audio_for_question_without_script(self, client):
        session_id, _ = await _started(client)

        response = await client.get(f"/quiz/sessions/{session_id}/questions/q1/audio")

        assert response.status_code == 404

    async def test_broken_audio(self, client, monkeypatch):
        monkeypatch.setattr(quiz, "_fetch_speech", AsyncMock(return_value=b"\x00"))
        session_id, body = await _started(client)

        response = await client.get(f"/quiz/sessions/{session_id}/questions/{body['question']['id']}/audio")

        assert response.status_code == 502

    async def test_image_for_vocabulary_question(self, client):
        session_id, _ = await _started(client)
        for _ in range(2):
            await client.post(f"/quiz/sessions/{session_id}/answer", json={"answer": "komme"})

        body = (await client.get(f"/quiz/sessions/{session_id}/questions/q2/image")).json()

        assert body == {"imageUrl": "data:image/png;base64,AAAA"}

    async def test_image_failure_is_not_an_error(self, client, monkeypatch):
        monkeypatch.setattr(quiz, "_fetch_image", AsyncMock(side_effect=RuntimeError("blocked")))
        session_id, _ = await _started(client)
        for _ in range(2):
            await client.post(f"/quiz/sessions/{session_id}/answer", json={"answer": "komme"})

        body = (await client.get(f"/quiz/sessions/{session_id}/questions/q2/image")).json()

        assert body == {"imageUrl": None}


class TestInfo:

    async def test_info_reports_configuration(self, client, monkeypatch):
        from mock_exam import main

        monkeypatch.setattr(main.settings, "gemini_api_key", "key")
        monkeypatch.setattr(main.settings, "sheets_webhook_url", None)

        body = (await client.get("/info")).json()

        assert body == {"status": "ok", "gemini_configured": True, "sheets_configured": False}
