"""Exceptions raised by the QDA store."""


class QDAError(Exception):
    """Base class for all store errors."""


class ValidationError(QDAError, ValueError):
    """Raised when an operation is rejected before touching any state."""


class DuplicateCodeNameError(ValidationError):
    """Raised when a code name collides (case-insensitively) within a study."""

    def __init__(self, name: str):
        super().__init__(f"A code named '{name}' already exists in this study")
        self.name = name


class NotFoundError(QDAError, ValueError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} '{entity_id}' not found")
        self.kind = kind
        self.entity_id = entity_id


class ProjectImportError(QDAError):
    """Raised when a project export cannot be imported."""


class PersistenceError(QDAError):
    """Raised when the state file cannot be read or written."""


class DocumentParseError(QDAError):
    """Raised when a file cannot be turned into a document."""
