"""
Data types flowing through the grading pipeline.
"""
import base64
import mimetypes
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .config import GENERIC_MIME_TYPES, PDF_MIME_TYPE


class RawDocument(BaseModel):
    """A user-selected file as received. Lives for one normalization call."""
    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str = ""
    filename: str = ""

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_heic(self) -> bool:
        return self.filename.lower().endswith(".heic")

    @property
    def effective_mime_type(self) -> str:
        """Declared type, or a guess from the file name when the declared type is generic."""
        declared = (self.mime_type or "").split(";")[0].strip().lower()
        if declared not in GENERIC_MIME_TYPES:
            return declared
        guessed, _ = mimetypes.guess_type(self.filename or "")
        return guessed or declared


class ImagePart(BaseModel):
    """One base64 payload ready to be attached to a backend request."""
    model_config = ConfigDict(frozen=True)

    data: str
    mime_type: str

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str) -> "ImagePart":
        return cls(data=base64.b64encode(data).decode("utf-8"), mime_type=mime_type)

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == PDF_MIME_TYPE

    def raw_bytes(self) -> bytes:
        return base64.b64decode(self.data)

    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


class BackendConstraints(BaseModel):
    """What a backend accepts as inline attachments."""
    model_config = ConfigDict(frozen=True)

    supports_documents: bool
    max_inline_bytes: int
    accepted_mime_types: List[str] = Field(default_factory=list)


class DispatchConfig(BaseModel):
    """Backend selection for one request. Passed in explicitly, never read from globals."""
    model_config = ConfigDict(frozen=True)

    backend_id: str
    credential: Optional[str] = None
    model_id: Optional[str] = None


class LogicalRequest(BaseModel):
    """Backend-agnostic grading request produced by the composer."""
    model_config = ConfigDict(frozen=True)

    question_text: str
    rubric_text: Optional[str] = None
    rubric_images: List[ImagePart] = Field(default_factory=list)
    student_text: Optional[str] = None
    student_images: List[ImagePart] = Field(default_factory=list)
    backend_id: str
    system_instruction: str = ""
    user_instruction: str = ""

    @property
    def attachments(self) -> List[ImagePart]:
        return list(self.rubric_images) + list(self.student_images)


def _to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(word.capitalize() for word in rest)


class ScoreItem(BaseModel):
    # pointsAwarded may exceed maxPoints; backend values are kept as returned
    model_config = ConfigDict(frozen=True, alias_generator=_to_camel, populate_by_name=True)

    description: str
    points_awarded: float
    max_points: float


class GradingResult(BaseModel):
    """Typed grading record decoded from a backend reply."""
    model_config = ConfigDict(frozen=True, alias_generator=_to_camel, populate_by_name=True)

    student_name: str
    recognized_text: str
    feedback: str
    total_score: float
    max_score: float
    score_breakdown: List[ScoreItem]

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


GEMINI_BACKEND = "gemini"
OPENAI_COMPAT_BACKEND = "openai_compat"

BACKEND_CONSTRAINTS = {
    # Inline request bodies are capped at 20 MB; base64 adds a third
    GEMINI_BACKEND: BackendConstraints(
        supports_documents=True,
        max_inline_bytes=15 * 1024 * 1024,
        accepted_mime_types=['image/jpeg', 'image/png', 'image/webp', 'image/heic', 'image/heif', PDF_MIME_TYPE],
    ),
    OPENAI_COMPAT_BACKEND: BackendConstraints(
        supports_documents=False,
        max_inline_bytes=15 * 1024 * 1024,
        accepted_mime_types=['image/jpeg', 'image/png', 'image/webp', 'image/gif'],
    ),
}
