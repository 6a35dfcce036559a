"""Shared test fixtures: temporary database, fake model client, Flask client."""

import sys
from pathlib import Path

import pytest

# Ensure todo_server (a top-level module) is importable without installing
sys.path.insert(0, str(Path(__file__).parent.parent))

from todolist.config import Settings
from todolist.docstore import DocumentStore
from todolist.errors import LLMError
from todolist.todos import TodoService


class FakeLLM:
    """
    Stands in for ClaudeClient.

    `replies` maps a substring of the system prompt to the canned answer;
    `transcriptions` maps a model name to an image transcription. Anything
    unmatched raises LLMError, like an unreachable service.
    """

    def __init__(self, replies=None, transcriptions=None, configured=True, fail_status=503):
        self.replies = replies or {}
        self.transcriptions = transcriptions or {}
        self.configured = configured
        self.fail_status = fail_status
        self.calls = []

    def complete(self, prompt, system="", max_tokens=None, model=None):
        self.calls.append(("complete", prompt))
        for marker, reply in self.replies.items():
            if marker in system:
                return reply
        raise LLMError("service unavailable", status=self.fail_status)

    def transcribe_image(self, image, media_type, instruction, model, max_tokens=1000):
        self.calls.append(("transcribe", model))
        if model in self.transcriptions:
            return self.transcriptions[model]
        raise LLMError("service unavailable", status=self.fail_status)

    def close(self):
        pass


MODEL_REPLIES = {
    "categoriz": "Health",
    "task priority": "Low",
    "sentiment": "positive",
    "estimating": "45",
}


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "todolist.db")


@pytest.fixture
def store(db_path):
    return DocumentStore(db_path)


@pytest.fixture
def service(store):
    return TodoService(store)


@pytest.fixture
def settings(tmp_path, db_path):
    static = tmp_path / "static"
    static.mkdir()
    (static / "index.html").write_text("<html><body>todo shell</body></html>")
    return Settings(
        db_path=db_path,
        session_file=str(tmp_path / "session.json"),
        static_dir=str(static),
        api_key="",
        ocr_enabled=False,
        admin_emails=["admin@example.com"],
        vision_model="vision-primary",
        vision_alt_model="vision-alt",
    )


@pytest.fixture
def make_app(settings):
    """Build an app around a given fake model client (rules only by default)."""
    from todo_server import create_app

    def _make(llm=None, ocr=None):
        return create_app(settings, llm=llm or FakeLLM(configured=False), ocr=ocr)
    return _make


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()


def sign_up(client, email="ann@example.com", password="s3cret", name="Ann"):
    """Create an account and return request headers carrying its session."""
    resp = client.post("/api/auth/signup", json={"email": email, "password": password, "name": name})
    assert resp.status_code == 201, resp.get_json()
    return {"X-Session-Token": resp.get_json()["token"]}
