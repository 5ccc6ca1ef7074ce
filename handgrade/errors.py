"""
Grading pipeline errors.

Every failure in the normalize -> compose -> dispatch pipeline is raised as a
GradingError subclass. None of them are retried and none are fatal to the
process; the caller shows `user_message` and may try again.
"""


class GradingError(Exception):
    """Base class for all grading pipeline failures."""

    default_message = "Grading failed. Please try again."

    def __init__(self, message: str = None, user_message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.user_message = user_message or self.default_message


class InvalidRequest(GradingError):
    """Required inputs are missing, or both text and images were given for one field."""
    default_message = "The grading request is incomplete."


class UnsupportedFormat(GradingError):
    """The input file is not an image, a PDF or a .heic photo."""
    default_message = "Unsupported file type. Upload an image, a PDF or a HEIC photo."


class OversizedInput(GradingError):
    """The input file exceeds the hard size ceiling."""
    default_message = "The file is too large to process."


class ConversionFailure(GradingError):
    """Decoding or rasterizing the input failed."""
    default_message = "The file could not be converted into images."


class MissingCredential(GradingError):
    """The selected backend needs an API key that was not supplied."""
    default_message = "An API key is required for the selected model provider."


class UnsupportedPayload(GradingError):
    """An attachment violates a backend-specific payload constraint."""
    default_message = "The selected model provider cannot accept this file."


class BackendError(GradingError):
    """The backend call failed at the transport or HTTP level."""
    default_message = "The model provider returned an error."

    def __init__(self, message: str = None, status_code: int = None, user_message: str = None):
        super().__init__(message, user_message)
        self.status_code = status_code


class EmptyReply(GradingError):
    """The backend answered with no text."""
    default_message = "The model returned an empty response."


class MalformedReply(GradingError):
    """The backend reply is not JSON or does not match the result shape."""
    default_message = "The model response could not be read as a grading result."
