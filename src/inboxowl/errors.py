"""Exception hierarchy for InboxOwl."""


class InboxOwlError(Exception):
    """Base class for all errors raised by InboxOwl."""


class ValidationError(InboxOwlError):
    """Rule or category input was rejected; nothing was stored."""


class ConditionParseError(ValidationError):
    """A condition payload could not be parsed."""


class UnknownFieldError(InboxOwlError):
    """A condition names a field the evaluator does not know."""

    def __init__(self, field: str) -> None:
        super().__init__(f"Unknown condition field: {field!r}")
        self.field = field


class NotFoundError(InboxOwlError):
    def __init__(self, resource: str = "Resource") -> None:
        super().__init__(f"{resource} not found")
        self.resource = resource


class AnalysisError(InboxOwlError):
    """Analysis could not be completed or stored."""


class GenerativeError(InboxOwlError):
    """The generative-text collaborator failed or returned nothing usable."""
