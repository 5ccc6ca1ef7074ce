"""
Test: HTTP API — multipart upload, backend listing, error status codes.
"""
import io
import json

import pytest

from handgrade.app import create_app
from tests.factories import FakeHTTPResponse, make_image_bytes


@pytest.fixture
def client():
    app = create_app({"TESTING": True})
    return app.test_client()


def _file(data, name, mime):
    return (io.BytesIO(data), name, mime)


class TestBackendsRoute:
    def test_lists_backends(self, client):
        resp = client.get("/api/backends")
        assert resp.status_code == 200
        body = resp.get_json()
        assert {b["id"] for b in body["backends"]} == {"gemini", "openai_compat"}
        assert body["default"]

    def test_health(self, client):
        assert client.get("/api/health").get_json() == {"status": "ok"}


class TestGradeRoute:
    def test_text_mode_success(self, client, fake_gemini, sample_reply):
        resp = client.post("/api/grade", data={
            "question": "Explain X",
            "backend": "gemini",
            "rubric_text": "1 point: defines X",
            "student_text": "X is ...",
        })
        assert resp.status_code == 200
        assert resp.get_json()["result"] == json.loads(json.dumps(sample_reply))

    def test_file_upload_with_chat_backend(self, client, fake_post):
        resp = client.post("/api/grade", data={
            "question": "Q",
            "backend": "openai_compat",
            "api_key": "sk-test",
            "rubric_text": "1 point: defines X",
            "student": [_file(make_image_bytes(60, 40), "page1.png", "image/png"),
                        _file(make_image_bytes(60, 40, fmt="JPEG"), "page2.jpg", "image/jpeg")],
        }, content_type="multipart/form-data")
        assert resp.status_code == 200
        content = fake_post.calls[0]["json"]["messages"][1]["content"]
        urls = [seg["image_url"]["url"] for seg in content if seg["type"] == "image_url"]
        assert urls[0].startswith("data:image/png;base64,")
        assert urls[1].startswith("data:image/jpeg;base64,")

    def test_api_key_header(self, client, fake_post):
        resp = client.post("/api/grade", data={
            "backend": "openai_compat", "rubric_text": "r", "student_text": "s",
        }, headers={"X-Api-Key": "sk-header"})
        assert resp.status_code == 200
        assert fake_post.calls[0]["headers"]["Authorization"] == "Bearer sk-header"

    def test_missing_credential_is_401(self, client, no_network):
        resp = client.post("/api/grade", data={
            "backend": "openai_compat", "rubric_text": "r", "student_text": "s",
        })
        assert resp.status_code == 401
        assert "API key" in resp.get_json()["error"]

    def test_missing_student_is_400(self, client, no_network):
        resp = client.post("/api/grade", data={"backend": "gemini", "rubric_text": "r"})
        assert resp.status_code == 400
        assert resp.get_json()["error"]

    def test_text_and_files_together_is_400(self, client, no_network):
        resp = client.post("/api/grade", data={
            "backend": "gemini",
            "rubric_text": "r",
            "student_text": "typed",
            "student": [_file(make_image_bytes(10, 10), "a.png", "image/png")],
        }, content_type="multipart/form-data")
        assert resp.status_code == 400

    def test_unsupported_file_is_400(self, client, no_network):
        resp = client.post("/api/grade", data={
            "backend": "gemini",
            "rubric_text": "r",
            "student": [_file(b"hello", "notes.txt", "text/plain")],
        }, content_type="multipart/form-data")
        assert resp.status_code == 400
        assert "notes.txt" in resp.get_json()["error"]

    def test_backend_error_is_502(self, client, fake_post):
        fake_post.response = FakeHTTPResponse(
            status_code=429, reason="Too Many Requests",
            body={"error": {"message": "Rate limit reached"}},
        )
        resp = client.post("/api/grade", data={
            "backend": "openai_compat", "api_key": "k", "rubric_text": "r", "student_text": "s",
        })
        assert resp.status_code == 502
        assert "Rate limit reached" in resp.get_json()["error"]

    def test_unexpected_exception_is_500(self, client, monkeypatch):
        import handgrade.routes.grading_routes as routes

        def explode(*args, **kwargs):
            raise RuntimeError("bug")

        monkeypatch.setattr(routes, "grade_submission", explode)
        resp = client.post("/api/grade", data={"rubric_text": "r", "student_text": "s"})
        assert resp.status_code == 500
        assert resp.get_json()["error"] == "An unexpected error occurred. Please try again."
