"""Exception hierarchy.

An incompatible pair of trees is an ordinary result (``False``), not an error.
These exceptions are reserved for inputs the comparison cannot work with.
"""

from __future__ import annotations


class SubcloneMergeError(Exception):
    """Base class for all package errors."""


class TreeStructureError(SubcloneMergeError):
    """Raised for missing roots, cyclic parent chains, or malformed trees."""


class ArchiveError(SubcloneMergeError):
    """Raised when a tree store cannot be read or written."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path
