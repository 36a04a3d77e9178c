# errors.py
class PipelineError(Exception):
    """Base class for failures raised while producing a document PDF."""
    error_type = "unknown_error"
    retryable = True

    def __init__(self, message, details=None):
        super().__init__(message)
        self.details = details or {}


class ValidationError(PipelineError):
    """Raised when a request names an unknown document type or is malformed."""
    error_type = "validation_error"
    retryable = False


class NotFoundError(PipelineError):
    """Raised when the source document record does not exist."""
    error_type = "not_found"
    retryable = False

    def __init__(self, document_type, document_id):
        super().__init__(f"{document_type} {document_id} not found")
        self.document_type = document_type
        self.document_id = document_id


class RenderError(PipelineError):
    """Raised when PDF creation fails."""
    error_type = "render_error"


class StorageError(PipelineError):
    """Raised when saving the rendered PDF fails.

    ``transient`` separates network/5xx hiccups (retried on schedule) from
    permanent problems such as bad keys or missing permissions.
    """
    error_type = "storage_error"

    def __init__(self, message, transient=True, details=None):
        super().__init__(message, details)
        self.transient = transient

    @property
    def retryable(self):
        return self.transient


class GenerationTimeoutError(PipelineError):
    """Raised when a generation attempt exceeds its wall-clock bound."""
    error_type = "timeout"


class FailureNotFoundError(Exception):
    """Raised when an operator action names an unknown failure record."""
    def __init__(self, failure_id):
        super().__init__(f"Failure record {failure_id} not found")
        self.failure_id = failure_id


class BatchProcessingError(Exception):
    """Raised when the batch runner itself encounters a fatal issue."""
    pass
