"""Error taxonomy for the linking pipeline."""


class LinkingError(Exception):
    """Base class for clientlink errors."""


class ConfigurationError(LinkingError):
    """Credentials for the AI or escalation channel are missing."""


class ValidationError(LinkingError):
    """Model output failed shape or candidate-membership checks."""


class NetworkError(LinkingError):
    """An outbound call to the AI service or Telegram failed."""


class NotFoundError(LinkingError):
    """A document could not be loaded."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class PersistenceError(LinkingError):
    """A store read or write failed."""
