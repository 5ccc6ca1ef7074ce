"""
Handgrade Services
==================

Pipeline stages for grading an uploaded paper.

Services:
- document_normalizer: uploaded file -> inline image payloads
- request_composer: question, rubric and answer -> backend-agnostic request
- backend_dispatcher: request -> model provider call -> GradingResult
- grading_service: the three stages end to end
"""

# Services are imported directly when needed
# Example: from handgrade.services.grading_service import grade_submission

__all__ = [
    'document_normalizer',
    'request_composer',
    'backend_dispatcher',
    'grading_service'
]
