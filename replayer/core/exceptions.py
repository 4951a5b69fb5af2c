from __future__ import annotations


class ReplayError(RuntimeError):
    """Base class for locate-and-verify failures."""


class InvalidStrategy(ReplayError):
    """Raised when a selector or expression cannot be evaluated by the DOM backend."""


class StaleElement(ReplayError):
    """Raised when a handle no longer refers to an attached element."""


class DomAccessError(ReplayError):
    """Raised when the DOM backend fails for reasons unrelated to the query."""


class ActionFailed(ReplayError):
    """Raised when performing a recorded action on a resolved element fails."""


class AdvisorError(ReplayError):
    """Raised when the locator advisory service cannot be reached."""


class AdvisorResponseError(AdvisorError):
    """Raised when the advisory service returns an unusable locator."""
