"""
Exceptions raised by statshape.

Every error derives from StatShapeError and from the built-in exception a
caller would naturally catch for the same condition (OSError for unreadable
files, ValueError for bad input, and so on).
"""

from __future__ import annotations


class StatShapeError(Exception):
    """Base class for all statshape errors."""


class MeshReadError(StatShapeError, OSError):
    """A mesh file or mesh directory could not be read."""

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Could not read mesh from {path}: {reason}")


class CorrespondenceError(StatShapeError, ValueError):
    """A mesh is not in correspondence with the reference mesh."""


class DimensionalityError(StatShapeError, ValueError):
    """A coefficient vector does not match the rank of a model."""


class UnsupportedOperationError(StatShapeError, NotImplementedError):
    """The requested operation is not available for this object."""


class AlignmentError(StatShapeError, ValueError):
    """A rigid alignment could not be computed."""


class OutOfDomainError(StatShapeError, LookupError):
    """A discrete transformation was queried at a point it does not define."""
