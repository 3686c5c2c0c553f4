"""
Registered datasets of 3D meshes.

A DataCollection holds a reference mesh and, for every sample, the
transformation that takes the reference onto that sample. Collections are
immutable: operations such as `map_items`, cross-validation fold creation or
Generalized Procrustes Analysis return new collections.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Sequence

import numpy as np

from statshape.errors import CorrespondenceError, MeshReadError
from statshape.io import list_mesh_files, read_mesh
from statshape.transformation import mesh_to_transformation

if TYPE_CHECKING:
    from pathlib import Path

    from statshape.mesh import TriangleMesh
    from statshape.transformation import Transformation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DataItem:
    """A registered item of a dataset.

    Attributes:
        info: Human-readable description of the processing the item went
            through. Operations such as GPA extend it.
        transformation: Transformation taking the reference mesh of the
            dataset onto this item
    """

    info: str
    transformation: Transformation


@dataclass(frozen=True)
class DataCollection:
    """A dataset of registered meshes.

    Attributes:
        reference: The mesh that was registered to every item
        items: One DataItem per sample, in dataset order
    """

    reference: TriangleMesh
    items: tuple[DataItem, ...]

    def __post_init__(self):
        object.__setattr__(self, "items", tuple(self.items))

    @property
    def size(self) -> int:
        return len(self.items)

    def map_items(self, f: Callable[[DataItem], DataItem]) -> DataCollection:
        """Return a new collection with f applied to every item."""
        return DataCollection(self.reference, tuple(f(item) for item in self.items))

    @classmethod
    def from_mesh_sequence(
        cls,
        reference: TriangleMesh,
        meshes: Sequence[TriangleMesh],
    ) -> tuple[DataCollection | None, list[Exception]]:
        """Build a collection from meshes in correspondence with a reference.

        Args:
            reference: Reference mesh
            meshes: Meshes with the same points, in the same order, as the
                reference

        Returns:
            The collection of all valid meshes (None if there is none) and
            the list of errors for the invalid ones
        """
        items = []
        errors: list[Exception] = []
        for index, mesh in enumerate(meshes):
            try:
                transformation = mesh_to_transformation(reference, mesh)
            except CorrespondenceError as e:
                error = CorrespondenceError(f"Mesh {index}: {e}")
                logger.warning(str(error))
                errors.append(error)
                continue
            items.append(DataItem("from mesh", transformation))

        if not items:
            return None, errors
        return cls(reference, tuple(items)), errors

    @classmethod
    def from_mesh_directory(
        cls,
        reference: TriangleMesh,
        directory: str | Path,
        reader: Callable[[Path], TriangleMesh] = read_mesh,
    ) -> tuple[DataCollection | None, list[Exception]]:
        """Build a collection from a directory of meshes.

        Only .vtk and .stl files are considered. Files that cannot be read
        and meshes that do not correspond to the reference are both
        reported.

        Args:
            reference: Reference mesh
            directory: Directory containing meshes in correspondence with
                the reference
            reader: Function reading one mesh file

        Returns:
            The collection of all valid meshes (None if there is none) and
            the read errors followed by the correspondence errors

        Raises:
            MeshReadError: If the directory cannot be listed
        """
        meshes = []
        io_errors: list[Exception] = []
        for filepath in list_mesh_files(directory):
            try:
                meshes.append(reader(filepath))
            except MeshReadError as e:
                logger.warning(str(e))
                io_errors.append(e)

        collection, mesh_errors = cls.from_mesh_sequence(reference, meshes)
        logger.info(
            f"Loaded {collection.size if collection else 0} meshes from {directory} "
            f"({len(io_errors) + len(mesh_errors)} failures)"
        )
        return collection, io_errors + mesh_errors

    def create_crossvalidation_folds(
        self,
        n_folds: int,
        rng: np.random.Generator | int | None = None,
    ) -> list[CrossvalidationFold]:
        """Split the items into training and testing collections.

        Items are shuffled and cut into consecutive groups of
        size // n_folds items. Fold k tests on group k and trains on all
        other groups. When n_folds does not divide the size, the leftover
        items form an extra group that is never tested but is part of
        every training set.

        Args:
            n_folds: Number of folds, between 1 and size
            rng: Random generator or seed used for shuffling

        Returns:
            One CrossvalidationFold per fold

        Raises:
            ValueError: If n_folds is out of range
        """
        if n_folds < 1 or n_folds > self.size:
            raise ValueError(
                f"Number of folds must be between 1 and {self.size}, got {n_folds}"
            )

        rng = np.random.default_rng(rng)
        shuffled = [self.items[i] for i in rng.permutation(self.size)]
        fold_size = self.size // n_folds
        groups = [shuffled[i : i + fold_size] for i in range(0, self.size, fold_size)]

        folds = []
        for k in range(n_folds):
            training = [item for j, group in enumerate(groups) if j != k for item in group]
            folds.append(
                CrossvalidationFold(
                    training_data=DataCollection(self.reference, tuple(training)),
                    testing_data=DataCollection(self.reference, tuple(groups[k])),
                )
            )
        return folds

    def create_leave_one_out_folds(
        self,
        rng: np.random.Generator | int | None = None,
    ) -> list[CrossvalidationFold]:
        return self.create_crossvalidation_folds(self.size, rng)


@dataclass(frozen=True)
class CrossvalidationFold:
    """A training/testing split of a DataCollection."""

    training_data: DataCollection
    testing_data: DataCollection
