"""
Read-model errors surfaced to callers. Everything else degrades to unset fields.
"""


class ReadModelError(Exception):
    """Base class for hard read-model failures."""


class NotFoundError(ReadModelError):
    """The primary record (or requested item) does not exist."""

    def __init__(self, kind: str, identifier: str = ""):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found")


class ResolutionError(ReadModelError):
    """The primary store could not be read."""
