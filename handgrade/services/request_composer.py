"""
Request Composer
================
Assembles the backend-agnostic grading request: the fixed grader persona and
rules, the question, the rubric and the student answer (each either typed
text or normalized images), and the JSON shape the reply must follow.

No network or file I/O happens here.
"""
import json
from typing import Sequence, Union

from ..errors import InvalidRequest
from ..models import BACKEND_CONSTRAINTS, ImagePart, LogicalRequest

# =============================================================================
# PROMPT CONTENT - changing this text changes grading behavior
# =============================================================================

GRADER_PERSONA = """You are an expert teaching assistant and a strict, fair exam grader.
You evaluate a student's response, which may be handwritten, against the question and the provided rubric or answer key.
You grade only what the student actually wrote. You never reward what the student might have meant.
You always answer with a single JSON object and nothing else."""

GRADING_RULES = """**Grading Rules:**
1.  **Literal Keyword Matching:** When the rubric names a specific term, fact, value or keyword, award the point only if that term (or an unambiguous equivalent) appears in the student's answer. Do not infer missing keywords from surrounding context.
2.  **Task-Verb Sensitivity:** Respect the task verb of the question. "Define" requires a definition, "explain" requires a reason or mechanism, "compare" requires both similarities and differences, "list" requires the items only. An answer that does not perform the requested task does not earn the point, even if it contains related facts.
3.  **Contradiction Penalty:** If the student states a correct point and also states something that contradicts it, do not award the point for that criterion.
4.  **Binary Unless Specified:** Each rubric criterion is worth either its full points or zero. Award partial credit only when the rubric explicitly allows partial credit for that criterion.
5.  **Evidence Citation:** For every criterion in the breakdown, the description must quote or closely paraphrase the part of the student's answer used as evidence, or state "no evidence found" when nothing in the answer addresses it."""

TASK_STEPS = """**Instructions:**
1.  **Identify Student Name:** Look for a name written on the student's paper. If found, extract it. If no name is clearly identifiable, return "N/A".
2.  **Analyze the Rubric:** Identify all distinct questions, problems or scoring criteria in the rubric or answer key, and the maximum points for each criterion.
3.  **Transcribe the Student Answer:** Transcribe the student's answer verbatim into recognizedText. If the answer was provided as typed text, copy it.
4.  **Grade Point-by-Point:** For each scoring criterion, find the student's corresponding answer, compare it to the rubric and award points following the Grading Rules.
5.  **Calculate Scores:** totalScore is the sum of pointsAwarded. maxScore is the sum of maxPoints.
6.  **Provide Feedback & Breakdown:** Give overall constructive feedback and one breakdown entry per criterion."""

RESULT_JSON_SHAPE = {
    "studentName": "string",
    "recognizedText": "string",
    "feedback": "string",
    "totalScore": "number",
    "maxScore": "number",
    "scoreBreakdown": [
        {"description": "string", "pointsAwarded": "number", "maxPoints": "number"}
    ],
}

NO_QUESTION_TEXT = "(No question text was provided. Infer the question from the rubric.)"

TextOrImages = Union[str, Sequence[ImagePart], None]


def _split_input(name: str, value: TextOrImages):
    """Return (text, images) with exactly one of them populated."""
    if value is None:
        raise InvalidRequest(f"Missing {name}", user_message=f"Please provide the {name} as text or as a file.")
    if isinstance(value, str):
        if not value.strip():
            raise InvalidRequest(f"Empty {name} text", user_message=f"Please provide the {name} as text or as a file.")
        return value.strip(), []
    images = list(value)
    if not images:
        raise InvalidRequest(f"No {name} images", user_message=f"Please provide the {name} as text or as a file.")
    return None, images


def _image_range(start: int, count: int) -> str:
    if count == 1:
        return f"Attached image {start} contains"
    return f"Attached images {start}-{start + count - 1} contain"


def build_user_instruction(question_text: str, rubric_text, rubric_images, student_text, student_images) -> str:
    """Render the per-request instruction text that follows the attachments."""
    sections = [f"**Question:**\n{question_text or NO_QUESTION_TEXT}"]

    if rubric_text is not None:
        sections.append(f"**Rubric / Answer Key:**\n{rubric_text}")
    else:
        sections.append(
            f"**Rubric / Answer Key:**\n{_image_range(1, len(rubric_images))} "
            f"the rubric or answer key."
        )

    if student_text is not None:
        sections.append(f"**Student Answer:**\n{student_text}")
    else:
        first = len(rubric_images) + 1
        sections.append(
            f"**Student Answer:**\n{_image_range(first, len(student_images))} "
            f"the student's response, in page order."
        )

    sections.append(TASK_STEPS)
    sections.append(GRADING_RULES)
    sections.append(
        "**Output Format:**\nReturn only a JSON object with exactly this shape "
        "(all fields are required):\n" + json.dumps(RESULT_JSON_SHAPE, indent=2)
    )
    return "\n\n".join(sections)


def compose_request(question_text: str, rubric: TextOrImages, student: TextOrImages, backend_id: str) -> LogicalRequest:
    """Build the LogicalRequest for one grading action."""
    if backend_id not in BACKEND_CONSTRAINTS:
        raise InvalidRequest(f"Unknown backend: {backend_id!r}", user_message="Please choose a supported model provider.")

    rubric_text, rubric_images = _split_input("rubric", rubric)
    student_text, student_images = _split_input("student answer", student)
    question_text = (question_text or "").strip()

    return LogicalRequest(
        question_text=question_text,
        rubric_text=rubric_text,
        rubric_images=rubric_images,
        student_text=student_text,
        student_images=student_images,
        backend_id=backend_id,
        system_instruction=GRADER_PERSONA,
        user_instruction=build_user_instruction(
            question_text, rubric_text, rubric_images, student_text, student_images
        ),
    )
