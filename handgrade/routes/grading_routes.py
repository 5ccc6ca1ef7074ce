"""
Grading API routes for Handgrade.
Accepts the uploaded rubric and student files (or typed text) and returns the
grading result or a single error message.
"""
import logging

from flask import Blueprint, request, jsonify

from ..config import config
from ..errors import (
    BackendError,
    ConversionFailure,
    EmptyReply,
    GradingError,
    InvalidRequest,
    MalformedReply,
    MissingCredential,
    OversizedInput,
    UnsupportedFormat,
    UnsupportedPayload,
)
from ..models import DispatchConfig, RawDocument
from ..services.backend_dispatcher import list_backends
from ..services.grading_service import describe_error, grade_submission

logger = logging.getLogger(__name__)

grading_bp = Blueprint('grading', __name__)

ERROR_STATUS = {
    InvalidRequest: 400,
    UnsupportedFormat: 400,
    MissingCredential: 401,
    OversizedInput: 413,
    ConversionFailure: 422,
    UnsupportedPayload: 422,
    BackendError: 502,
    EmptyReply: 502,
    MalformedReply: 502,
}


def _status_for(error: Exception) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 500


def _read_documents(field: str):
    """Uploaded files for a form field, in upload order."""
    documents = []
    for upload in request.files.getlist(field):
        if not upload or not upload.filename:
            continue
        documents.append(RawDocument(
            data=upload.read(),
            mime_type=upload.mimetype or '',
            filename=upload.filename,
        ))
    return documents


def _text_or_files(name: str):
    text = request.form.get(f'{name}_text', '').strip()
    files = _read_documents(name)
    if text and files:
        raise InvalidRequest(
            f"Both text and files given for {name}",
            user_message=f"Provide the {name} either as text or as files, not both.",
        )
    return text or files or None


@grading_bp.route('/api/health')
def health():
    return jsonify({"status": "ok"})


@grading_bp.route('/api/backends')
def get_backends():
    """List selectable model providers."""
    return jsonify({"backends": list_backends(), "default": config.default_backend})


@grading_bp.route('/api/grade', methods=['POST'])
def grade():
    """Grade one student answer against a rubric or answer key."""
    try:
        dispatch_config = DispatchConfig(
            backend_id=request.form.get('backend') or config.default_backend,
            credential=request.form.get('api_key') or request.headers.get('X-Api-Key') or None,
            model_id=request.form.get('model') or None,
        )
        result = grade_submission(
            request.form.get('question', ''),
            _text_or_files('rubric'),
            _text_or_files('student'),
            dispatch_config,
        )
    except GradingError as e:
        logger.warning(f"Grading failed: {type(e).__name__}: {e.message}")
        return jsonify({"error": describe_error(e)}), _status_for(e)
    except Exception as e:
        logger.exception("Unexpected grading failure")
        return jsonify({"error": describe_error(e)}), 500

    return jsonify({"result": result.to_dict()})
