"""Exception taxonomy for the wizard core."""

from __future__ import annotations


class ConceptCraftError(Exception):
    """Base class for all wizard errors."""


class GenerationFailed(ConceptCraftError):
    """The inference call failed or its output could not be parsed.

    Raised and recovered inside the generation gateway only; callers see a
    fallback result tagged with ``Source.FALLBACK`` instead.
    """


class ValidationFailed(ConceptCraftError):
    """Required input is missing; the requested action was not attempted."""


class QuotaExceeded(ValidationFailed):
    """The user's subscription tier has no AI generations left this month."""


class StorageUnavailable(ConceptCraftError):
    """The key/value store could not be read or written."""


class IllegalTransition(ConceptCraftError):
    """A step controller was asked for a move or action its phase does not allow.

    ``target`` is the phase being entered, or the name of the rejected action.
    """

    def __init__(self, step: str, current: str, target: str) -> None:
        super().__init__(f"{step}: '{target}' is not allowed from phase '{current}'.")
        self.step = step
        self.current = current
        self.target = target


class GenerationInProgress(ConceptCraftError):
    """A generation is already running for this step controller."""


class NotAuthenticated(ConceptCraftError):
    """The requested view or action needs a logged-in user."""
