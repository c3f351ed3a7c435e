"""
Error taxonomy for MediAnalyst.

Every failure the wizard can surface to a user derives from
MediAnalystError, which carries a human-readable message, a
machine-readable error code and the HTTP status the API maps it to.
"""

from typing import Optional


class MediAnalystError(Exception):
    """Base class for all recoverable application errors."""

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.message = message
        self.error_code = error_code or self.default_code
        super().__init__(self.message)


# =============================================================================
# Generation failures
# =============================================================================

class GenerationUnavailableError(MediAnalystError):
    """Raised when no generative-AI client is configured."""

    status_code = 503
    default_code = "GENERATION_UNAVAILABLE"


class ParseFailure(MediAnalystError):
    """Raised when a model reply cannot be decoded into the expected structure."""

    status_code = 502
    default_code = "PARSE_FAILURE"


class SearchFailure(MediAnalystError):
    """Raised when the product search step fails."""

    status_code = 502
    default_code = "SEARCH_FAILURE"


class AnalysisStepFailure(MediAnalystError):
    """Raised when the ingredient, pathology or pharmacology step fails."""

    status_code = 502
    default_code = "ANALYSIS_STEP_FAILURE"

    def __init__(self, step: str, message: str):
        self.step = step
        super().__init__(message)


class ChatSendFailure(MediAnalystError):
    """Raised when a chat message cannot be delivered."""

    status_code = 502
    default_code = "CHAT_SEND_FAILURE"


class ImageGenerationFailure(MediAnalystError):
    """Raised when the image model returns no edited image."""

    status_code = 502
    default_code = "IMAGE_GENERATION_FAILURE"


# =============================================================================
# Persistence
# =============================================================================

class HistoryLoadCorruption(MediAnalystError):
    """Raised internally when the stored history cannot be decoded."""

    default_code = "HISTORY_CORRUPT"


class RecordNotFoundError(MediAnalystError):
    """Raised when a history record or run does not exist."""

    status_code = 404
    default_code = "NOT_FOUND"


# =============================================================================
# Wizard flow
# =============================================================================

class InvalidRequestError(MediAnalystError):
    """Raised when user input is missing or malformed."""

    status_code = 400
    default_code = "INVALID_REQUEST"


class PipelineStateError(MediAnalystError):
    """Raised when an action is not allowed in the current wizard step."""

    status_code = 409
    default_code = "INVALID_STATE"


class PipelineBusyError(MediAnalystError):
    """Raised when an action is triggered while a previous one is pending."""

    status_code = 409
    default_code = "PIPELINE_BUSY"
