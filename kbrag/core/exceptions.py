class KbRagError(Exception):
    """Base class for domain errors."""


class ExtractionError(KbRagError):
    """Raised when a stored file cannot be turned into plain text."""


class EnqueueError(KbRagError):
    """Raised when a registered document could not be handed to the broker."""

    def __init__(self, document_id: int, message: str):
        super().__init__(message)
        self.document_id = document_id
