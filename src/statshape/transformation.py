"""
Point-to-point transformations and rigid alignment.

A transformation maps points to points and carries the bounding box on which
it is defined. All transformations accept a single point, shape (3,), or a
point set, shape (n, 3), and return an array of the same shape.

Rigid alignment uses Singular Value Decomposition (SVD) to find the rotation
and translation that map one point set onto another in the least-squares
sense (Kabsch algorithm), as in Dryden and Mardia (2016).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

import numpy as np
import scipy.linalg as sp
from scipy.spatial import cKDTree

from statshape.errors import (
    AlignmentError,
    CorrespondenceError,
    OutOfDomainError,
    UnsupportedOperationError,
)
from statshape.mesh import BoundingBox

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from statshape.mesh import TriangleMesh

ORIGIN = np.zeros(3)

UNBOUNDED = BoundingBox(np.full(3, -np.inf), np.full(3, np.inf))


def as_point_set(points: ArrayLike) -> tuple[NDArray[np.floating], bool]:
    """Return points as an (n, 3) array and whether the input was a single point."""
    points = np.asarray(points, dtype=float)
    single = points.ndim == 1
    points = np.atleast_2d(points)
    if points.shape[-1] != 3:
        raise ValueError(f"Expected 3D points, got shape {points.shape}")
    return points, single


class Transformation:
    """Base class for transformations of 3D points.

    Subclasses implement `_apply`, which receives an (n, 3) array.
    """

    domain: BoundingBox = UNBOUNDED

    def __call__(self, points: ArrayLike) -> NDArray[np.floating]:
        point_set, single = as_point_set(points)
        result = self._apply(point_set)
        return result[0] if single else result

    def _apply(self, points: NDArray[np.floating]) -> NDArray[np.floating]:
        raise NotImplementedError

    def compose(self, inner: Transformation) -> Transformation:
        """Return the transformation x -> self(inner(x)).

        The composite is defined where both domains overlap. An empty
        overlap gives a transformation with an empty domain.
        """
        return FunctionTransformation(
            self.domain.intersection(inner.domain), lambda x: self(inner(x))
        )

    def take_derivative(self, point: ArrayLike) -> NDArray[np.floating]:
        """Jacobian of the transformation with respect to the spatial position."""
        raise UnsupportedOperationError(
            f"{type(self).__name__} does not provide a spatial derivative"
        )


class FunctionTransformation(Transformation):
    """Transformation backed by a vectorised callable on (n, 3) arrays."""

    def __init__(
        self,
        domain: BoundingBox,
        f: Callable[[NDArray[np.floating]], NDArray[np.floating]],
    ):
        self.domain = domain
        self._f = f

    def _apply(self, points):
        return np.asarray(self._f(points), dtype=float).reshape(points.shape)


class PointMappingTransformation(Transformation):
    """Discrete transformation defined only at a fixed set of source points.

    Each source point is mapped to the target point with the same index.
    Querying a location that is not (within `tolerance`) one of the source
    points raises OutOfDomainError.
    """

    def __init__(
        self,
        source: ArrayLike,
        target: ArrayLike,
        domain: BoundingBox | None = None,
        tolerance: float = 1e-6,
    ):
        source, _ = as_point_set(source)
        target, _ = as_point_set(target)
        if source.shape != target.shape:
            raise ValueError(
                f"Source and target must have the same shape, got {source.shape} and {target.shape}"
            )
        self.source = source.copy()
        self.target = target.copy()
        self.source.setflags(write=False)
        self.target.setflags(write=False)
        self.domain = domain if domain is not None else BoundingBox.of(source)
        self.tolerance = tolerance
        self._tree = cKDTree(self.source)

    def _apply(self, points):
        distances, indices = self._tree.query(points, distance_upper_bound=self.tolerance)
        missing = ~np.isfinite(distances)
        if np.any(missing):
            first = points[np.argmax(missing)]
            raise OutOfDomainError(
                f"Point {first.tolist()} is not one of the {len(self.source)} mapped points"
            )
        return self.target[indices]


class RigidTransform(Transformation):
    """Rotation about a center followed by a translation.

    Maps x to rotation @ (x - center) + center + translation.
    """

    def __init__(
        self,
        rotation: ArrayLike,
        translation: ArrayLike,
        center: ArrayLike = ORIGIN,
    ):
        self.rotation = np.asarray(rotation, dtype=float)
        self.translation = np.asarray(translation, dtype=float)
        self.center = np.asarray(center, dtype=float)

    def _apply(self, points):
        return np.dot(points - self.center, self.rotation.T) + self.center + self.translation

    def take_derivative(self, point):
        return self.rotation.copy()


def rigid_align(
    source: ArrayLike,
    target: ArrayLike,
    rotation_center: ArrayLike = ORIGIN,
) -> RigidTransform:
    """Find the rigid transform that best maps source points onto target points.

    Args:
        source: Points to be moved, shape (n_points, 3)
        target: Corresponding target points, shape (n_points, 3)
        rotation_center: Center of the returned rotation

    Returns:
        RigidTransform minimising the sum of squared distances between the
        transformed source points and the target points

    Raises:
        AlignmentError: If the point sets do not correspond, contain fewer
            than three points or non-finite values, or are degenerate
            (coincident or collinear)
    """
    source = np.asarray(source, dtype=float)
    target = np.asarray(target, dtype=float)
    center = np.asarray(rotation_center, dtype=float)

    if source.ndim != 2 or source.shape[1] != 3 or source.shape != target.shape:
        raise AlignmentError(
            f"Cannot align point sets of shapes {source.shape} and {target.shape}"
        )
    if source.shape[0] < 3:
        raise AlignmentError("Rigid alignment needs at least 3 corresponding points")
    if not (np.all(np.isfinite(source)) and np.all(np.isfinite(target))):
        raise AlignmentError("Point sets contain non-finite coordinates")

    source_centroid = source.mean(axis=0)
    target_centroid = target.mean(axis=0)
    source_centered = source - source_centroid
    target_centered = target - target_centroid

    if (
        np.linalg.matrix_rank(source_centered) < 2
        or np.linalg.matrix_rank(target_centered) < 2
    ):
        raise AlignmentError("Point configuration is degenerate (coincident or collinear)")

    u, s, vt = sp.svd(np.dot(source_centered.T, target_centered))
    # Exclude reflections
    d = np.sign(np.linalg.det(np.dot(vt.T, u.T)))
    correction = np.diag([1.0, 1.0, d if d != 0 else 1.0])
    rotation = np.dot(vt.T, np.dot(correction, u.T))

    translation = target_centroid - center - np.dot(rotation, source_centroid - center)
    return RigidTransform(rotation, translation, center)


def mesh_to_transformation(
    reference: TriangleMesh,
    mesh: TriangleMesh,
) -> PointMappingTransformation:
    """Build the transformation taking each reference point to its mesh counterpart.

    Args:
        reference: Reference mesh
        mesh: Mesh in point correspondence with the reference

    Returns:
        Discrete transformation defined on the reference points

    Raises:
        CorrespondenceError: If the point counts or the triangulations differ
    """
    if mesh.number_of_points != reference.number_of_points:
        raise CorrespondenceError(
            f"Mesh has {mesh.number_of_points} points, "
            f"reference has {reference.number_of_points}"
        )
    if (
        reference.number_of_cells
        and mesh.number_of_cells
        and not np.array_equal(reference.cells, mesh.cells)
    ):
        raise CorrespondenceError("Mesh triangulation differs from the reference")
    return PointMappingTransformation(
        reference.points, mesh.points, domain=reference.bounding_box
    )
