import asyncio
import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="docledger-tests-")

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}")
os.environ.setdefault("STORAGE_ROOT", os.path.join(_TMP_DIR, "storage"))
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-signed-storage-urls-0123456789")
os.environ.setdefault("PIPELINE_RUN_ON_UPLOAD", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("PIPELINE_RETRY_BASE_SECONDS", "30")
os.environ.setdefault("PIPELINE_MAX_ATTEMPTS", "3")

from fastapi.testclient import TestClient  # noqa: E402
import pytest  # noqa: E402

from docledger.core.database import Base, SessionLocal, engine, init_db  # noqa: E402
from docledger.main import app  # noqa: E402
from docledger.services.inference_service import InferenceClient, get_inference_client  # noqa: E402

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


class FakeInference(InferenceClient):
    """
    Scripted model. Replies are picked by a substring of the system prompt;
    every call is recorded.
    """

    def __init__(self, replies=None):
        super().__init__(api_key="test-key")
        self.replies = dict(replies or {})
        self.calls = []

    def complete(self, system_prompt, user_text, image_url=None, max_tokens=2000, model=None, temperature=0.1):
        try:
            asyncio.get_running_loop()
            on_event_loop = True
        except RuntimeError:
            on_event_loop = False
        self.calls.append({
            "system_prompt": system_prompt,
            "user_text": user_text,
            "image_url": image_url,
            "on_event_loop": on_event_loop,
        })
        for marker, reply in self.replies.items():
            if marker in system_prompt:
                if isinstance(reply, Exception):
                    raise reply
                return reply
        return ""

    def calls_matching(self, marker):
        return [c for c in self.calls if marker in c["system_prompt"]]


def _reset_db() -> None:
    Base.metadata.drop_all(bind=engine)
    init_db()


@pytest.fixture(autouse=True)
def reset_db():
    _reset_db()
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def fake_inference() -> FakeInference:
    fake = FakeInference()
    app.dependency_overrides[get_inference_client] = lambda: fake
    return fake


@pytest.fixture()
def pdf_text(monkeypatch):
    """Stub the PDF text layer; returns a setter for the text"""
    state = {"text": "ACME Utilities\nInvoice total: 1,200.00"}
    monkeypatch.setattr(
        "docledger.services.stage_service.extract_pdf_text",
        lambda data: state["text"]
    )

    def set_text(text):
        state["text"] = text

    return set_text


@pytest.fixture()
def client(fake_inference) -> TestClient:
    return TestClient(app, headers={"X-User-Id": USER_ID})


@pytest.fixture()
def anonymous_client() -> TestClient:
    return TestClient(app)
