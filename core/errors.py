"""Exception hierarchy for the component library import pipeline.

Every batch operation ends in one of three outcomes: full success,
partial success with itemized failures, or a blocked precondition raised
as one of the exceptions below.
"""


class ComponentLibraryError(Exception):
    """Base exception for component library errors."""
    def __init__(self, message: str, details: str = ""):
        super().__init__(message)
        self.details = details


class ConfigError(ComponentLibraryError):
    """Configuration value missing or malformed."""
    pass


class ExtractionFailure(ComponentLibraryError):
    """Document could not be parsed into candidate components."""
    def __init__(self, message: str, source: str = "", details: str = ""):
        super().__init__(message, details)
        self.source = source


class MatchingFailure(ComponentLibraryError):
    """Semantic comparison of a candidate failed.

    Raised by semantic matchers; the component matcher recovers from it
    per candidate and never lets it abort a batch.
    """
    def __init__(self, message: str, component_index: int = -1, details: str = ""):
        super().__init__(message, details)
        self.component_index = component_index


class ValidationFailure(ComponentLibraryError):
    """Finalize blocked because match decisions are still pending."""
    def __init__(self, pending_count: int):
        super().__init__(
            f"{pending_count} match decision(s) still pending; "
            "choose accept_match or create_new for each before importing"
        )
        self.pending_count = pending_count


class PersistenceFailure(ComponentLibraryError):
    """A repository write for a single item failed."""
    def __init__(self, item_name: str, reason: str):
        super().__init__(f"Failed to persist '{item_name}': {reason}")
        self.item_name = item_name
        self.reason = reason


class InvalidStepError(ComponentLibraryError):
    """Operation not allowed in the current import step."""
    def __init__(self, message: str, step: str = ""):
        super().__init__(message)
        self.step = step


class UnknownCandidateError(ComponentLibraryError, KeyError):
    """Event refers to a candidate that was deleted or never existed."""
    def __init__(self, ref):
        ComponentLibraryError.__init__(self, f"Unknown or retired candidate: {ref}")
        self.ref = ref

    def __str__(self) -> str:
        return self.args[0]
