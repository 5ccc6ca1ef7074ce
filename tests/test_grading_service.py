"""
Test: End-to-end grading through normalize -> compose -> dispatch.
"""
import base64
import io
import json

import pytest
from PIL import Image

from handgrade.errors import (
    BackendError,
    InvalidRequest,
    MalformedReply,
    OversizedInput,
    UnsupportedFormat,
    UnsupportedPayload,
)
from handgrade.models import DispatchConfig, GradingResult, RawDocument
from handgrade.services.backend_dispatcher import PAYLOAD_TOO_LARGE_MESSAGE
from handgrade.services.grading_service import (
    UNEXPECTED_ERROR_MESSAGE,
    describe_error,
    grade_submission,
)
from tests.factories import make_pdf_bytes


class TestEndToEnd:
    def test_text_mode_with_gemini(self, fake_gemini, sample_reply):
        result = grade_submission(
            "Explain X", "1 point: defines X", "X is ...",
            DispatchConfig(backend_id="gemini"),
        )
        parts = fake_gemini.calls[0]["contents"].parts
        assert len(parts) == 1
        assert parts[0].text is not None
        assert result == GradingResult(
            student_name="N/A",
            recognized_text="X is ...",
            feedback="Correct definition.",
            total_score=1,
            max_score=1,
            score_breakdown=[{"description": "defines X", "pointsAwarded": 1, "maxPoints": 1}],
        )

    def test_six_page_pdf_sends_five_pages_in_order(self, fake_post, six_page_pdf):
        grade_submission(
            "Q", "rubric", [six_page_pdf],
            DispatchConfig(backend_id="openai_compat", credential="sk-test"),
        )
        content = fake_post.calls[0]["json"]["messages"][1]["content"]
        images = [seg for seg in content if seg["type"] == "image_url"]
        assert len(images) == 5

        widths = []
        for seg in images:
            url = seg["image_url"]["url"]
            assert url.startswith("data:image/jpeg;base64,")
            data = base64.b64decode(url.split(",", 1)[1])
            with Image.open(io.BytesIO(data)) as image:
                widths.append(image.size[0])
        assert widths == [300 + 30 * n for n in range(5)]

    def test_small_pdf_sent_natively_to_gemini(self, fake_gemini):
        pdf = RawDocument(data=make_pdf_bytes(2), mime_type="application/pdf", filename="key.pdf")
        grade_submission("Q", [pdf], "answer", DispatchConfig(backend_id="gemini"))
        parts = fake_gemini.calls[0]["contents"].parts
        assert parts[0].inline_data.mime_type == "application/pdf"

    def test_rubric_and_student_files_ordered(self, fake_post, small_png):
        rubric = RawDocument(data=make_pdf_bytes(1), mime_type="application/pdf", filename="key.pdf")
        grade_submission(
            "Q", [rubric], [small_png],
            DispatchConfig(backend_id="openai_compat", credential="sk-test"),
        )
        content = fake_post.calls[0]["json"]["messages"][1]["content"]
        urls = [seg["image_url"]["url"] for seg in content if seg["type"] == "image_url"]
        assert urls[0].startswith("data:image/jpeg;base64,")
        assert urls[1].startswith("data:image/png;base64,")


class TestFailures:
    def test_unsupported_file_rejected_before_any_conversion(self, no_network, small_png):
        bad = RawDocument(data=b"hello", mime_type="text/plain", filename="notes.txt")
        with pytest.raises(UnsupportedFormat):
            grade_submission("Q", "rubric", [small_png, bad], DispatchConfig(backend_id="gemini"))

    def test_missing_student_answer(self, no_network):
        with pytest.raises(InvalidRequest):
            grade_submission("Q", "rubric", [], DispatchConfig(backend_id="gemini"))

    def test_unknown_backend(self, no_network):
        with pytest.raises(InvalidRequest):
            grade_submission("Q", "rubric", "answer", DispatchConfig(backend_id="nope"))

    def test_raw_pdf_never_reaches_images_only_backend(self, monkeypatch, no_network):
        # Even if normalization were bypassed, the dispatcher refuses the PDF
        import handgrade.services.grading_service as gs
        from handgrade.models import ImagePart

        monkeypatch.setattr(
            gs, "normalize_many",
            lambda docs, backend: [ImagePart.from_bytes(b"%PDF", "application/pdf")],
        )
        pdf = RawDocument(data=b"%PDF", mime_type="application/pdf", filename="a.pdf")
        with pytest.raises(UnsupportedPayload):
            grade_submission("Q", "rubric", [pdf], DispatchConfig(backend_id="openai_compat", credential="k"))

    def test_malformed_reply(self, fake_gemini, sample_reply):
        del sample_reply["scoreBreakdown"]
        fake_gemini.reply_text = json.dumps(sample_reply)
        with pytest.raises(MalformedReply):
            grade_submission("Q", "r", "s", DispatchConfig(backend_id="gemini"))


class TestDescribeError:
    def test_grading_error_uses_user_message(self):
        error = OversizedInput("too big", user_message="'a.png' is 25.0 MB; the limit is 20 MB.")
        assert describe_error(error) == "'a.png' is 25.0 MB; the limit is 20 MB."

    def test_default_message(self):
        assert describe_error(MalformedReply()) == MalformedReply.default_message

    def test_backend_error_message(self):
        error = BackendError("boom", status_code=500, user_message="Model provider error: boom")
        assert describe_error(error) == "Model provider error: boom"

    def test_unknown_transport_error_with_size_symptom(self):
        assert describe_error(OSError("[Errno 32] Broken pipe")) == PAYLOAD_TOO_LARGE_MESSAGE

    def test_unknown_error(self):
        assert describe_error(KeyError("x")) == UNEXPECTED_ERROR_MESSAGE
