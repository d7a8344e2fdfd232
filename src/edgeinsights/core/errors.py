"""Exception hierarchy shared by the core and its adapters.

Adapters translate library-specific failures (sqlite3, openai, transport
errors) into these types so the core only ever handles its own errors.
"""


class EdgeInsightsError(Exception):
    """Base class for all errors raised by edgeinsights."""


# --- Malformed input ---


class ValidationError(EdgeInsightsError):
    """An inbound reading was rejected before persistence."""


class MissingFieldError(ValidationError):
    """A required reading field is absent or empty.

    Attributes:
        field: Wire name of the missing field (e.g. "device_id").
    """

    def __init__(self, field: str) -> None:
        super().__init__(f"{field} is required")
        self.field = field


class InvalidFieldError(ValidationError):
    """A reading field is present but carries an unusable value."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field} is invalid: {reason}")
        self.field = field
        self.reason = reason


class InvalidReadingError(ValidationError):
    """A payload could not be decoded into a reading at all."""


# --- Collaborator failures ---


class CollaboratorError(EdgeInsightsError):
    """An external collaborator (store, embedder, completer) failed."""


class PersistenceError(CollaboratorError):
    """The persistence gateway could not store or query data."""


class EmbeddingError(CollaboratorError):
    """The embedding collaborator failed or returned no vector."""


class CompletionError(CollaboratorError):
    """The completion collaborator failed or returned no text."""


# --- Generated queries ---


class MalformedQueryError(EdgeInsightsError):
    """A generated structured query was rejected before it reached the caller."""


# --- Connections ---


class ConnectionClosedError(EdgeInsightsError):
    """An observer connection was closed or could not be read from."""
