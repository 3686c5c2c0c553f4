"""
statshape - statistical deformation models for registered 3D meshes.

Provides low-rank (Karhunen-Loeve) deformation models exposed as parametric
transformations, registered mesh datasets, Generalized Procrustes Analysis
(GPA) of those datasets, and cross-validation fold generation.

Example usage:
    >>> import statshape as ss
    >>>
    >>> # Load meshes in correspondence with a reference
    >>> reference = ss.read_mesh("reference.vtk")
    >>> collection, errors = ss.DataCollection.from_mesh_directory(reference, "registered/")
    >>>
    >>> # Align the dataset and estimate its mean shape
    >>> aligned = ss.generalized_procrustes(collection, max_iterations=3, halt_distance=1.0)
    >>>
    >>> # Split for cross-validation
    >>> folds = aligned.create_crossvalidation_folds(5, rng=42)
"""

import logging

from statshape.dataset import CrossvalidationFold, DataCollection, DataItem
from statshape.errors import (
    AlignmentError,
    CorrespondenceError,
    DimensionalityError,
    MeshReadError,
    OutOfDomainError,
    StatShapeError,
    UnsupportedOperationError,
)
from statshape.gpa import (
    GPAStep,
    generalized_procrustes,
    mean_shape,
    procrustes_distance,
    procrustes_steps,
)
from statshape.io import MESH_EXTENSIONS, list_mesh_files, read_mesh, write_mesh
from statshape.logging_config import setup_logging
from statshape.lowrank import (
    Eigenpair,
    KLTransformation,
    KLTransformationSpace,
    LowRankDeformationModel,
    VectorVectorizer,
    zero_mean,
)
from statshape.mesh import BoundingBox, TriangleMesh
from statshape.transformation import (
    FunctionTransformation,
    PointMappingTransformation,
    RigidTransform,
    Transformation,
    mesh_to_transformation,
    rigid_align,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Geometry
    "BoundingBox",
    "TriangleMesh",
    # Transformations
    "Transformation",
    "FunctionTransformation",
    "PointMappingTransformation",
    "RigidTransform",
    "rigid_align",
    "mesh_to_transformation",
    # Low-rank models
    "Eigenpair",
    "VectorVectorizer",
    "LowRankDeformationModel",
    "KLTransformation",
    "KLTransformationSpace",
    "zero_mean",
    # Datasets
    "DataItem",
    "DataCollection",
    "CrossvalidationFold",
    # GPA functions
    "GPAStep",
    "generalized_procrustes",
    "procrustes_steps",
    "mean_shape",
    "procrustes_distance",
    # I/O functions
    "MESH_EXTENSIONS",
    "read_mesh",
    "write_mesh",
    "list_mesh_files",
    # Logging
    "setup_logging",
    # Errors
    "StatShapeError",
    "MeshReadError",
    "CorrespondenceError",
    "DimensionalityError",
    "UnsupportedOperationError",
    "AlignmentError",
    "OutOfDomainError",
]
