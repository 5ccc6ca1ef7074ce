"""
Shared test fixtures for the Handgrade pipeline.
Builds real image and PDF bytes in memory and stubs both model providers.
Zero network calls.
"""
import json

import pytest

from handgrade.models import RawDocument
from tests.factories import (
    SAMPLE_REPLY,
    FakeGeminiClient,
    FakePost,
    make_image_bytes,
    make_pdf_bytes,
)


@pytest.fixture
def sample_reply():
    return json.loads(json.dumps(SAMPLE_REPLY))


@pytest.fixture
def small_png():
    data = make_image_bytes(120, 80)
    return RawDocument(data=data, mime_type="image/png", filename="answer.png")


@pytest.fixture
def large_png():
    data = make_image_bytes(2000, 1200, noise=True)
    return RawDocument(data=data, mime_type="image/png", filename="photo.png")


@pytest.fixture
def six_page_pdf():
    return RawDocument(data=make_pdf_bytes(6), mime_type="application/pdf", filename="exam.pdf")


@pytest.fixture
def fake_gemini(monkeypatch):
    """Replace the google-genai client; returns the class so tests can read .calls."""
    import handgrade.services.backend_dispatcher as bd

    FakeGeminiClient.calls = []
    FakeGeminiClient.reply_text = json.dumps(SAMPLE_REPLY)
    FakeGeminiClient.error = None
    monkeypatch.setattr(bd.genai, "Client", FakeGeminiClient)
    monkeypatch.setattr(bd.config, "gemini_api_key", "test-gemini-key")
    return FakeGeminiClient


@pytest.fixture
def fake_post(monkeypatch):
    """Replace requests.post for the chat completions backend."""
    import handgrade.services.backend_dispatcher as bd

    recorder = FakePost()
    monkeypatch.setattr(bd.requests, "post", recorder)
    return recorder


@pytest.fixture
def no_network(monkeypatch):
    """Fail the test if anything tries to reach a provider."""
    import handgrade.services.backend_dispatcher as bd

    def refuse(*args, **kwargs):
        raise AssertionError("network call attempted")

    monkeypatch.setattr(bd.requests, "post", refuse)
    monkeypatch.setattr(bd.genai, "Client", refuse)
