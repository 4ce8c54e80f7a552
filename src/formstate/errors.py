"""
Exception taxonomy for formstate.

Every error raised by the nested composition subsystem derives from
FormStateError so callers can catch the whole family at the form/validation
boundary. None of these are caught and converted to defaults inside the
library - they propagate synchronously to the immediate caller.
"""

from typing import Optional


class FormStateError(Exception):
    """Base class for all formstate errors."""


class StructuralError(FormStateError):
    """Illegal schema shape or a count-constraint violation.

    Raised at schema-declaration time for disallowed group-in-group nesting,
    and at edit time when adding/removing items would leave a repeating group
    outside its [min_items, max_items] range.
    """


class AddressResolutionError(FormStateError):
    """A node references a container that cannot provide a child prefix."""


class CollectionResolutionError(FormStateError):
    """Collection-name resolution was attempted on a template-marked field."""


class CleanupFailure(FormStateError):
    """A cleanup action raised while releasing a removed item's resources.

    The original exception is available as ``__cause__`` and ``original``.
    """

    def __init__(self, message: str, original: Optional[BaseException] = None):
        super().__init__(message)
        self.original = original


class PersistenceOrderError(FormStateError):
    """A deferred action was about to run before the record had an identifier."""
