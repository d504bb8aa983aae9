"""Storage tier error taxonomy.

``BackendUnavailable`` means the tier cannot be reached at all and makes the
tier selector move on to the next tier.  ``BackendCorrupt`` means the tier
answered but what it returned could not be decoded; the call fails and the
tier stays active.  A missing prompt or an empty history is not an error.
"""


class BackendError(Exception):
    """Base class for storage tier failures."""

    def __init__(self, tier: str, message: str) -> None:
        super().__init__(f"[{tier}] {message}")
        self.tier = tier


class BackendUnavailable(BackendError):
    """The tier is unreachable (connection refused, missing file, auth, quota)."""


class BackendCorrupt(BackendError):
    """The tier returned a payload that could not be decoded."""
