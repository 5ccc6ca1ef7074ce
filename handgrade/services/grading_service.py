"""
Grading Service
===============
Runs one grading action end to end:

    files/text -> normalize -> compose -> dispatch -> GradingResult

Every failure surfaces as a GradingError; describe_error() turns any exception
into the single message shown to the user.
"""
import logging
from typing import Sequence, Union

from ..errors import GradingError
from ..models import DispatchConfig, GradingResult, RawDocument
from .backend_dispatcher import PAYLOAD_TOO_LARGE_MESSAGE, dispatch, is_payload_too_large
from .document_normalizer import check_document, normalize_many, resolve_constraints
from .request_composer import compose_request

logger = logging.getLogger(__name__)

GradingInput = Union[str, Sequence[RawDocument], None]

UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred. Please try again."


def _prepare(value: GradingInput, backend_id: str):
    """Text passes through; documents become image parts."""
    if value is None or isinstance(value, str):
        return value
    docs = list(value)
    for doc in docs:
        check_document(doc)
    return normalize_many(docs, backend_id)


def grade_submission(question_text: str, rubric: GradingInput, student: GradingInput,
                     dispatch_config: DispatchConfig) -> GradingResult:
    """
    Grade one student answer against a rubric.

    rubric and student are each either typed text or a list of uploaded
    documents (images, PDFs, HEIC photos).
    """
    backend_id = dispatch_config.backend_id
    resolve_constraints(backend_id)

    rubric_input = _prepare(rubric, backend_id)
    student_input = _prepare(student, backend_id)

    request = compose_request(question_text, rubric_input, student_input, backend_id)
    logger.info(
        f"Dispatching to {backend_id}: {len(request.rubric_images)} rubric image(s), "
        f"{len(request.student_images)} student image(s)"
    )
    return dispatch(request, dispatch_config)


def describe_error(error: Exception) -> str:
    """Single human-readable message for any pipeline failure."""
    if isinstance(error, GradingError):
        return error.user_message
    if is_payload_too_large(str(error)):
        return PAYLOAD_TOO_LARGE_MESSAGE
    return UNEXPECTED_ERROR_MESSAGE
