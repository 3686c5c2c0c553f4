"""
Generalized Procrustes Analysis (GPA) of registered mesh datasets.

GPA estimates the mean shape of a DataCollection and rigidly aligns every
item to it. Each iteration:
1. Applies every item's transformation to the reference points
2. Computes the pointwise mean shape, keeping the reference triangulation
3. Stops if the mean is within the halt distance of the current reference
4. Otherwise aligns every sample rigidly to the mean and makes the mean
   the new reference

Based on Dryden and Mardia (2016) "Statistical Shape Analysis".
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator, Sequence

import numpy as np

from statshape.dataset import DataCollection, DataItem
from statshape.transformation import ORIGIN, PointMappingTransformation, rigid_align

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from statshape.mesh import BoundingBox, TriangleMesh

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 3
DEFAULT_HALT_DISTANCE = 1.0


@dataclass(frozen=True)
class GPAStep:
    """One iteration of Generalized Procrustes Analysis.

    Attributes:
        iteration: Iteration number, starting at 0
        collection: Collection the iteration started from
        mean: Candidate mean mesh computed from `collection`
        distance: Procrustes distance between `mean` and the current reference
        aligned: Collection with `mean` as reference and items aligned to it,
            or None if the iteration halted
    """

    iteration: int
    collection: DataCollection
    mean: TriangleMesh
    distance: float
    aligned: DataCollection | None

    @property
    def converged(self) -> bool:
        return self.aligned is None


def mean_shape(shapes: Sequence[ArrayLike]) -> NDArray[np.floating]:
    """Pointwise mean of corresponding point sets.

    Args:
        shapes: One (n_points, 3) point set per sample, or an array of
            shape (n_samples, n_points, 3)
    """
    return np.asarray(shapes, dtype=float).mean(axis=0)


def procrustes_distance(mesh1: TriangleMesh, mesh2: TriangleMesh) -> float:
    """Compute the Procrustes distance between two corresponding meshes.

    The points of `mesh1` are rigidly aligned to those of `mesh2`, and the
    mean Euclidean distance between corresponding points is returned.

    Raises:
        AlignmentError: If the meshes cannot be aligned
    """
    transform = rigid_align(mesh1.points, mesh2.points, ORIGIN)
    diff = transform(mesh1.points) - mesh2.points
    return float(np.linalg.norm(diff, axis=1).mean())


def procrustes_steps(
    collection: DataCollection,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    halt_distance: float = DEFAULT_HALT_DISTANCE,
    rotation_center: ArrayLike = ORIGIN,
    max_workers: int | None = None,
) -> Iterator[GPAStep]:
    """Run GPA iterations one at a time.

    Yields one GPAStep per iteration, at most `max_iterations` of them. The
    last step is converged if the halt distance was reached.

    Args:
        collection: Dataset to analyse
        max_iterations: Maximum number of iterations
        halt_distance: Stop when the candidate mean is closer than this to
            the current reference
        rotation_center: Center of the rigid alignments
        max_workers: Number of worker threads for per-sample computations

    Raises:
        ValueError: If the collection is empty
        AlignmentError: If any sample cannot be aligned to the mean
    """
    if max_iterations > 0 and collection.size == 0:
        raise ValueError("Cannot run GPA on an empty collection")

    center = np.asarray(rotation_center, dtype=float)
    current = collection

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        for iteration in range(max_iterations):
            reference_points = current.reference.points
            shapes = list(
                executor.map(
                    lambda item: item.transformation(reference_points), current.items
                )
            )

            mean_points = mean_shape(shapes)
            mean_mesh = current.reference.with_points(mean_points)
            distance = procrustes_distance(mean_mesh, current.reference)

            if distance < halt_distance:
                logger.info(
                    f"GPA iteration {iteration}: distance {distance:.6g} "
                    f"below {halt_distance}, halting"
                )
                yield GPAStep(iteration, current, mean_mesh, distance, None)
                return

            logger.info(f"GPA iteration {iteration}: distance {distance:.6g}")
            mean_domain = mean_mesh.bounding_box
            items = list(
                executor.map(
                    lambda item, points: _align_item(
                        item, points, mean_mesh.points, mean_domain, center
                    ),
                    current.items,
                    shapes,
                )
            )
            aligned = DataCollection(mean_mesh, tuple(items))
            yield GPAStep(iteration, current, mean_mesh, distance, aligned)
            current = aligned


def generalized_procrustes(
    collection: DataCollection,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    halt_distance: float = DEFAULT_HALT_DISTANCE,
    rotation_center: ArrayLike = ORIGIN,
    max_workers: int | None = None,
) -> DataCollection:
    """Perform Generalized Procrustes Analysis on a dataset.

    The algorithm repeatedly computes the mean of all shapes of the dataset
    and aligns every shape rigidly to it. The returned collection has the
    final mean as reference. If a candidate mean is within `halt_distance`
    of the current reference, the current collection is returned as is,
    keeping its reference rather than the candidate.

    Args:
        collection: Dataset to analyse
        max_iterations: Maximum number of iterations. 0 returns the input.
        halt_distance: Convergence threshold, in mesh units
        rotation_center: Center of the rigid alignments
        max_workers: Number of worker threads for per-sample computations

    Returns:
        New DataCollection whose items are rigidly aligned to its reference

    Raises:
        AlignmentError: If any sample cannot be aligned to the mean
    """
    result = collection
    for step in procrustes_steps(
        collection,
        max_iterations=max_iterations,
        halt_distance=halt_distance,
        rotation_center=rotation_center,
        max_workers=max_workers,
    ):
        result = step.collection if step.converged else step.aligned
    return result


def _align_item(
    item: DataItem,
    points: NDArray[np.floating],
    mean_points: NDArray[np.floating],
    mean_domain: BoundingBox,
    center: NDArray[np.floating],
) -> DataItem:
    """Align one sample to the mean and map mean points to the aligned points."""
    transform = rigid_align(points, mean_points, center)
    aligned_points = transform(points)
    return DataItem(
        "gpa -> " + item.info,
        PointMappingTransformation(mean_points, aligned_points, domain=mean_domain),
    )
