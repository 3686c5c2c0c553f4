"""
I/O functions for reading and writing surface meshes.

Supports:
- Legacy VTK format (.vtk)
- Stereolithography format (.stl)

Files are read and written with PyVista. Non-surface datasets are reduced to
their surface and polygons are triangulated on read.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pyvista as pv

from statshape.errors import MeshReadError
from statshape.mesh import TriangleMesh

logger = logging.getLogger(__name__)

MESH_EXTENSIONS = (".vtk", ".stl")


def read_mesh(filepath: str | Path) -> TriangleMesh:
    """Read a triangle mesh from a file.

    Args:
        filepath: Path to a .vtk or .stl file

    Returns:
        The mesh, with polygons triangulated

    Raises:
        MeshReadError: If the file does not exist, cannot be parsed, or
            contains no points
    """
    filepath = Path(filepath)

    if not filepath.exists():
        raise MeshReadError(filepath, "file not found")
    if not filepath.is_file():
        raise MeshReadError(filepath, "not a file")

    try:
        dataset = pv.read(filepath)
    except (OSError, ValueError, RuntimeError) as e:
        raise MeshReadError(filepath, str(e)) from e

    if dataset is None or dataset.n_points == 0:
        raise MeshReadError(filepath, "mesh contains no points")

    if not isinstance(dataset, pv.PolyData):
        dataset = dataset.extract_surface()
    if dataset.n_cells and not dataset.is_all_triangles:
        dataset = dataset.triangulate()

    faces = np.asarray(dataset.faces)
    cells = faces.reshape(-1, 4)[:, 1:] if faces.size else np.empty((0, 3), dtype=int)

    logger.debug(f"Read mesh with {dataset.n_points} points from {filepath}")
    return TriangleMesh(np.asarray(dataset.points, dtype=float), cells)


def write_mesh(mesh: TriangleMesh, filepath: str | Path) -> None:
    """Write a triangle mesh to a .vtk or .stl file.

    Raises:
        ValueError: If the file format is not supported
    """
    filepath = Path(filepath)
    if filepath.suffix not in MESH_EXTENSIONS:
        raise ValueError(
            f"Unsupported file format: {filepath.suffix}. "
            f"Supported formats: {', '.join(MESH_EXTENSIONS)}"
        )

    if mesh.number_of_cells:
        faces = np.hstack(
            [np.full((mesh.number_of_cells, 1), 3, dtype=int), mesh.cells]
        ).ravel()
        polydata = pv.PolyData(np.array(mesh.points), faces)
    else:
        polydata = pv.PolyData(np.array(mesh.points))

    polydata.save(filepath)
    logger.debug(f"Wrote mesh with {mesh.number_of_points} points to {filepath}")


def list_mesh_files(directory: str | Path) -> list[Path]:
    """List the mesh files of a directory.

    Entries are kept when their absolute path ends with one of
    MESH_EXTENSIONS (case-sensitive). The result is sorted for
    reproducibility.

    Raises:
        MeshReadError: If the directory cannot be listed
    """
    directory = Path(directory)
    try:
        entries = list(directory.iterdir())
    except OSError as e:
        raise MeshReadError(directory, str(e)) from e

    return sorted(
        entry.absolute()
        for entry in entries
        if str(entry.absolute()).endswith(MESH_EXTENSIONS)
    )
