"""
Triangle meshes and axis-aligned bounding boxes.

Meshes are immutable: the point and cell arrays are copied and marked
read-only when a mesh is created. Derived meshes (for example the mean shape
computed during GPA) are built with `TriangleMesh.with_points`, which keeps
the connectivity and replaces the point positions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray


def _frozen_array(values: ArrayLike, dtype, shape_hint: str) -> NDArray:
    array = np.array(values, dtype=dtype)
    if array.size == 0:
        array = array.reshape(0, 3)
    if array.ndim != 2 or array.shape[1] != 3:
        raise ValueError(f"Expected {shape_hint} array of shape (n, 3), got {array.shape}")
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class BoundingBox:
    """Axis-aligned box spanned by two opposite corners.

    Attributes:
        origin: Corner with the smallest coordinates, shape (3,)
        opposite: Corner with the largest coordinates, shape (3,)
    """

    origin: NDArray[np.floating]
    opposite: NDArray[np.floating]

    def __post_init__(self):
        origin = np.asarray(self.origin, dtype=float)
        opposite = np.asarray(self.opposite, dtype=float)
        if origin.shape != (3,) or opposite.shape != (3,):
            raise ValueError("Bounding box corners must have shape (3,)")
        object.__setattr__(self, "origin", origin)
        object.__setattr__(self, "opposite", opposite)

    @classmethod
    def of(cls, points: ArrayLike) -> BoundingBox:
        """Tight bounding box of a point set, shape (n, 3)."""
        points = np.atleast_2d(np.asarray(points, dtype=float))
        if points.shape[0] == 0:
            raise ValueError("Cannot compute the bounding box of an empty point set")
        return cls(points.min(axis=0), points.max(axis=0))

    @property
    def is_empty(self) -> bool:
        return bool(np.any(self.opposite < self.origin))

    def contains(self, points: ArrayLike):
        """Check whether a point, or each point of a point set, lies in the box."""
        points = np.asarray(points, dtype=float)
        inside = np.all((points >= self.origin) & (points <= self.opposite), axis=-1)
        if inside.ndim == 0:
            return bool(inside)
        return inside

    def intersection(self, other: BoundingBox) -> BoundingBox:
        # An empty intersection keeps origin > opposite on some axis.
        return BoundingBox(
            np.maximum(self.origin, other.origin),
            np.minimum(self.opposite, other.opposite),
        )

    def __eq__(self, other):
        if not isinstance(other, BoundingBox):
            return NotImplemented
        return np.array_equal(self.origin, other.origin) and np.array_equal(
            self.opposite, other.opposite
        )

    def __hash__(self):
        return hash((tuple(self.origin), tuple(self.opposite)))


@dataclass(frozen=True, eq=False)
class TriangleMesh:
    """A 3D surface mesh.

    Attributes:
        points: Vertex coordinates, shape (n_points, 3)
        cells: Triangle vertex indices, shape (n_cells, 3)
    """

    points: NDArray[np.floating]
    cells: NDArray[np.integer] = field(default_factory=lambda: np.empty((0, 3), dtype=int))

    def __post_init__(self):
        points = _frozen_array(self.points, float, "point")
        cells = _frozen_array(self.cells, int, "cell")
        if cells.size and (cells.min() < 0 or cells.max() >= points.shape[0]):
            raise ValueError("Cell indices refer to points outside the mesh")
        object.__setattr__(self, "points", points)
        object.__setattr__(self, "cells", cells)

    @property
    def number_of_points(self) -> int:
        return self.points.shape[0]

    @property
    def number_of_cells(self) -> int:
        return self.cells.shape[0]

    @property
    def bounding_box(self) -> BoundingBox:
        return BoundingBox.of(self.points)

    def with_points(self, points: ArrayLike) -> TriangleMesh:
        """Return a mesh with the same connectivity and new point positions.

        Raises:
            ValueError: If the number of points changes
        """
        points = np.asarray(points, dtype=float)
        if points.shape != self.points.shape:
            raise ValueError(
                f"Expected {self.points.shape} points, got {points.shape}"
            )
        return TriangleMesh(points, self.cells)

    def __eq__(self, other):
        if not isinstance(other, TriangleMesh):
            return NotImplemented
        return np.array_equal(self.points, other.points) and np.array_equal(
            self.cells, other.cells
        )

    def __hash__(self):
        return hash((self.points.tobytes(), self.cells.tobytes()))
