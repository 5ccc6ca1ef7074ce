"""
Backend Dispatcher
==================
Sends a LogicalRequest to the selected model provider and decodes the reply
into a GradingResult.

Backends:
- gemini:        Google Gemini generate_content with a response schema
- openai_compat: any OpenAI-compatible /chat/completions endpoint (images only)

Each call is independent: no retry, no shared state between requests.
"""
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import requests
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import ValidationError

from ..config import GEMINI_MAX_OUTPUT_TOKENS, GEMINI_THINKING_BUDGET, config
from ..errors import (
    BackendError,
    EmptyReply,
    InvalidRequest,
    MalformedReply,
    MissingCredential,
    UnsupportedPayload,
)
from ..models import (
    BACKEND_CONSTRAINTS,
    GEMINI_BACKEND,
    OPENAI_COMPAT_BACKEND,
    BackendConstraints,
    DispatchConfig,
    GradingResult,
    LogicalRequest,
)

logger = logging.getLogger(__name__)

# Substrings seen when a request body is too big for the transport
PAYLOAD_TOO_LARGE_MARKERS = [
    "request entity too large",
    "payload too large",
    "request too large",
    "exceeds the maximum",
    "payload size exceeds",
    "connection reset",
    "connection aborted",
    "broken pipe",
    "failed to fetch",
]

# A status code quoted inside a message, not digits inside an id or a count
STATUS_413_PATTERN = re.compile(r"\b413\b")

# Opening fence with an optional language tag (```json, ```JSON, ```)
FENCE_OPEN_PATTERN = re.compile(r"^```[A-Za-z]*\s*")

PAYLOAD_TOO_LARGE_MESSAGE = (
    "The upload is too large for the model provider. Use fewer pages, "
    "smaller photos or a lower-resolution scan and try again."
)


def is_payload_too_large(message: str, status_code: Optional[int] = None) -> bool:
    if status_code == 413:
        return True
    lowered = (message or "").lower()
    if STATUS_413_PATTERN.search(lowered):
        return True
    return any(marker in lowered for marker in PAYLOAD_TOO_LARGE_MARKERS)


def backend_error(message: str, status_code: Optional[int] = None) -> BackendError:
    """Build a BackendError, rewriting payload-size symptoms into actionable guidance."""
    if is_payload_too_large(message, status_code):
        return BackendError(message, status_code=status_code, user_message=PAYLOAD_TOO_LARGE_MESSAGE)
    return BackendError(message, status_code=status_code, user_message=f"Model provider error: {message}")


# =============================================================================
# REPLY DECODING
# =============================================================================

def strip_code_fence(text: str) -> str:
    """Remove a leading ```/```json marker and a trailing ``` marker."""
    cleaned = FENCE_OPEN_PATTERN.sub("", text.strip(), count=1)
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def decode_reply(text: Optional[str]) -> GradingResult:
    """Parse raw model text into a GradingResult."""
    if text is None or not text.strip():
        raise EmptyReply()

    cleaned = strip_code_fence(text)
    if not cleaned:
        raise EmptyReply()

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning(f"Reply is not valid JSON: {e}")
        raise MalformedReply(f"Reply is not valid JSON: {e}") from e

    try:
        return GradingResult.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Reply does not match the result shape: {e.error_count()} error(s)")
        raise MalformedReply(f"Reply does not match the result shape: {e}") from e


# =============================================================================
# BACKEND A - GEMINI (schema-constrained generation)
# =============================================================================

SCORE_ITEM_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "description": types.Schema(
            type=types.Type.STRING,
            description="The scoring criterion from the rubric, with the evidence quoted from the student's answer.",
        ),
        "pointsAwarded": types.Schema(
            type=types.Type.NUMBER,
            description="The points awarded to the student for this specific item.",
        ),
        "maxPoints": types.Schema(
            type=types.Type.NUMBER,
            description="The maximum possible points for this specific item.",
        ),
    },
    required=["description", "pointsAwarded", "maxPoints"],
)

GRADING_RESULT_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "studentName": types.Schema(
            type=types.Type.STRING,
            description="The name of the student identified from the paper. Should be 'N/A' if not found.",
        ),
        "recognizedText": types.Schema(
            type=types.Type.STRING,
            description="The verbatim text transcribed from the student's answer.",
        ),
        "feedback": types.Schema(
            type=types.Type.STRING,
            description="Overall constructive feedback for the student, summarizing their performance.",
        ),
        "totalScore": types.Schema(
            type=types.Type.NUMBER,
            description="The sum of pointsAwarded over the breakdown.",
        ),
        "maxScore": types.Schema(
            type=types.Type.NUMBER,
            description="The sum of maxPoints over the breakdown.",
        ),
        "scoreBreakdown": types.Schema(
            type=types.Type.ARRAY,
            description="A detailed breakdown of the score for each question or scoring point.",
            items=SCORE_ITEM_SCHEMA,
        ),
    },
    required=["studentName", "recognizedText", "feedback", "totalScore", "maxScore", "scoreBreakdown"],
)


class ModelBackend(ABC):
    """One remote model provider: renders a LogicalRequest and returns the raw reply text."""

    backend_id: str = ""
    requires_user_credential: bool = False

    @property
    def constraints(self) -> BackendConstraints:
        return BACKEND_CONSTRAINTS[self.backend_id]

    @property
    @abstractmethod
    def default_model(self) -> str:
        pass

    @abstractmethod
    def build_payload(self, request: LogicalRequest, model_id: str = None) -> dict:
        """Render the request into this provider's wire format."""
        pass

    @abstractmethod
    def complete(self, request: LogicalRequest, dispatch_config: DispatchConfig) -> Optional[str]:
        """Perform the network call and return the model's text, if any."""
        pass


class GeminiBackend(ModelBackend):
    """Google Gemini via the google-genai SDK. Reads PDFs natively."""

    backend_id = GEMINI_BACKEND
    requires_user_credential = False

    @property
    def default_model(self) -> str:
        return config.gemini_model

    def build_payload(self, request: LogicalRequest, model_id: str = None) -> dict:
        parts = [
            types.Part.from_bytes(data=image.raw_bytes(), mime_type=image.mime_type)
            for image in request.attachments
        ]
        parts.append(types.Part.from_text(text=request.user_instruction))

        return {
            "model": model_id or self.default_model,
            "contents": types.Content(role="user", parts=parts),
            "config": types.GenerateContentConfig(
                system_instruction=request.system_instruction,
                response_mime_type="application/json",
                response_schema=GRADING_RESULT_SCHEMA,
                thinking_config=types.ThinkingConfig(thinking_budget=GEMINI_THINKING_BUDGET),
                max_output_tokens=GEMINI_MAX_OUTPUT_TOKENS,
            ),
        }

    def complete(self, request: LogicalRequest, dispatch_config: DispatchConfig) -> Optional[str]:
        api_key = dispatch_config.credential or config.gemini_api_key
        if not api_key:
            raise MissingCredential("GEMINI_API_KEY is not set and no API key was supplied")

        payload = self.build_payload(request, dispatch_config.model_id)
        logger.info(f"Calling Gemini model {payload['model']} with {len(request.attachments)} attachment(s)")

        try:
            client = genai.Client(api_key=api_key)
            response = client.models.generate_content(**payload)
        except genai_errors.APIError as e:
            logger.error(f"Gemini API error {e.code}: {e.message}")
            raise backend_error(e.message or str(e), status_code=e.code) from e
        except Exception as e:
            logger.error(f"Gemini call failed: {e}")
            raise backend_error(str(e)) from e

        return response.text


# =============================================================================
# BACKEND B - OPENAI-COMPATIBLE CHAT COMPLETIONS
# =============================================================================

class ChatCompletionsBackend(ModelBackend):
    """OpenAI-compatible chat completions over plain HTTP. Accepts images only.

    Endpoint, model and timeout come from the global config unless given here.
    """

    backend_id = OPENAI_COMPAT_BACKEND
    requires_user_credential = True

    def __init__(self, base_url: str = None, model: str = None, timeout: float = None):
        self._base_url = base_url
        self._model = model
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        return (self._base_url or config.chat_api_base_url).rstrip("/")

    @property
    def default_model(self) -> str:
        return self._model or config.chat_model

    @property
    def timeout(self) -> float:
        return self._timeout or config.http_timeout

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def build_payload(self, request: LogicalRequest, model_id: str = None) -> dict:
        for image in request.attachments:
            if image.is_pdf:
                raise UnsupportedPayload(
                    "Raw PDF attachment sent to an images-only backend",
                    user_message="This model provider only accepts images. The PDF could not be converted to images.",
                )
            if image.mime_type not in self.constraints.accepted_mime_types:
                raise UnsupportedPayload(
                    f"{image.mime_type} is not accepted by {self.backend_id}",
                    user_message=f"This model provider does not accept {image.mime_type} images. Convert the photo to JPEG or PNG.",
                )

        content = [{"type": "text", "text": request.user_instruction}]
        for image in request.attachments:
            content.append({
                "type": "image_url",
                "image_url": {"url": image.data_uri()}
            })

        return {
            "model": model_id or self.default_model,
            "messages": [
                {"role": "system", "content": request.system_instruction},
                {"role": "user", "content": content},
            ],
            "response_format": {"type": "json_object"},
        }

    def complete(self, request: LogicalRequest, dispatch_config: DispatchConfig) -> Optional[str]:
        if not dispatch_config.credential:
            raise MissingCredential("No API key supplied for the chat completions backend")

        payload = self.build_payload(request, dispatch_config.model_id)
        logger.info(f"Calling {self.endpoint} model {payload['model']} with {len(request.attachments)} image(s)")

        try:
            response = requests.post(
                self.endpoint,
                headers={
                    "Authorization": f"Bearer {dispatch_config.credential}",
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Chat completions request failed: {e}")
            raise backend_error(str(e)) from e

        if not response.ok:
            message = _http_error_message(response)
            logger.error(f"Chat completions returned {response.status_code}: {message}")
            raise backend_error(message, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedReply(f"Chat completions response is not JSON: {e}") from e
        return _message_text(data)


def _http_error_message(response) -> str:
    """Prefer the endpoint's own error message, else the HTTP status text."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if body.get("message"):
            return str(body["message"])

    return f"HTTP {response.status_code} {response.reason or ''}".strip()


def _message_text(data) -> Optional[str]:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise MalformedReply(f"Unexpected chat completions response: {e}") from e

    if isinstance(content, list):
        # Some compatible servers return content as segments
        return "".join(segment.get("text", "") for segment in content if isinstance(segment, dict))
    return content


# =============================================================================
# DISPATCH
# =============================================================================

BACKENDS: Dict[str, ModelBackend] = {
    GEMINI_BACKEND: GeminiBackend(),
    OPENAI_COMPAT_BACKEND: ChatCompletionsBackend(),
}


def get_backend(backend_id: str) -> ModelBackend:
    try:
        return BACKENDS[backend_id]
    except KeyError:
        raise InvalidRequest(f"Unknown backend: {backend_id!r}", user_message="Please choose a supported model provider.")


def list_backends() -> List[dict]:
    return [
        {
            "id": backend_id,
            "default_model": backend.default_model,
            "requires_api_key": backend.requires_user_credential,
            "supports_documents": backend.constraints.supports_documents,
        }
        for backend_id, backend in BACKENDS.items()
    ]


def dispatch(request: LogicalRequest, dispatch_config: DispatchConfig) -> GradingResult:
    """Send one request to its backend and decode the reply."""
    if request.backend_id != dispatch_config.backend_id:
        raise InvalidRequest(
            f"Request was composed for {request.backend_id!r} but dispatched to {dispatch_config.backend_id!r}"
        )

    backend = get_backend(dispatch_config.backend_id)
    text = backend.complete(request, dispatch_config)
    result = decode_reply(text)
    logger.info(
        f"Graded via {backend.backend_id}: {result.total_score}/{result.max_score} "
        f"({len(result.score_breakdown)} criteria)"
    )
    return result
