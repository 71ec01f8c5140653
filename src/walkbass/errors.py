from __future__ import annotations


class WalkBassError(Exception):
    """Base class for walkbass errors."""


class InvalidArgumentError(WalkBassError, ValueError):
    """Caller-correctable misuse detected at an API boundary, before any state change."""


class ChordSymbolError(InvalidArgumentError):
    """A chord symbol text could not be parsed."""


class DatabaseCorruptionError(WalkBassError, RuntimeError):
    """An index of the fragment database is inconsistent. Indicates a bug, never a user error."""
