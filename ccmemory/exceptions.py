"""Custom exception classes for ccmemory."""

from typing import Optional


class CCMemoryError(Exception):
    """Base class for all errors raised by the memory store."""


class NotFoundError(CCMemoryError, LookupError):
    """Raised when an id does not resolve to a live row.

    Attributes:
        kind: Entity kind ("memory", "session", "relationship", "embedding model")
        identifier: The id that failed to resolve
    """

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind.capitalize()} '{identifier}' not found")
        self.kind = kind
        self.identifier = identifier


class InvalidRelationshipTypeError(CCMemoryError, ValueError):
    """Raised when a relationship type is outside the fixed set."""

    def __init__(self, value: str):
        super().__init__(f"Invalid relationship type '{value}'")
        self.value = value


class DimensionMismatchError(CCMemoryError, ValueError):
    """Raised when a vector's length disagrees with its model's dimensions.

    Attributes:
        model_id: Embedding model the vector was declared for
        expected: Declared dimensionality of the model
        actual: Length of the offending vector
    """

    def __init__(self, model_id: str, expected: int, actual: int):
        super().__init__(f"Vector for model '{model_id}' has {actual} dimensions, expected {expected}")
        self.model_id = model_id
        self.expected = expected
        self.actual = actual


class AtomicWriteFailedError(CCMemoryError, RuntimeError):
    """Raised when a compound write could not complete and was rolled back.

    Attributes:
        operation: Name of the compound operation (e.g. "supersede")
    """

    def __init__(self, operation: str, detail: Optional[str] = None):
        message = f"Atomic write '{operation}' failed and was rolled back"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.operation = operation
