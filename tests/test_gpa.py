"""Tests for GPA module."""

import numpy as np
import pytest

from statshape import (
    AlignmentError,
    DataCollection,
    DataItem,
    FunctionTransformation,
    TriangleMesh,
    generalized_procrustes,
    mean_shape,
    procrustes_distance,
    procrustes_steps,
)

TETRAHEDRON_POINTS = np.array(
    [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]
)
TETRAHEDRON_CELLS = np.array([[0, 1, 2], [0, 1, 3], [0, 2, 3], [1, 2, 3]])
TRANSLATIONS = np.array([[1.0, 0.0, 0.0], [0.0, 3.0, -1.0], [-2.0, 1.5, 4.0]])


def rotation_z(theta):
    return np.array(
        [[np.cos(theta), -np.sin(theta), 0], [np.sin(theta), np.cos(theta), 0], [0, 0, 1]]
    )


def collection_from_shapes(reference, shapes):
    meshes = [reference.with_points(points) for points in shapes]
    collection, errors = DataCollection.from_mesh_sequence(reference, meshes)
    assert errors == []
    return collection


@pytest.fixture
def tetrahedron():
    return TriangleMesh(TETRAHEDRON_POINTS, TETRAHEDRON_CELLS)


@pytest.fixture
def translated_collection(tetrahedron):
    return collection_from_shapes(tetrahedron, [TETRAHEDRON_POINTS + t for t in TRANSLATIONS])


@pytest.fixture
def perturbed_collection():
    rng = np.random.default_rng(42)
    points = rng.uniform(-10.0, 10.0, size=(30, 3))
    reference = TriangleMesh(points)
    shapes = [points + rng.normal(scale=0.05, size=points.shape) for _ in range(6)]
    return collection_from_shapes(reference, shapes)


class TestMeanShape:
    def test_mean_shape_single_sample(self):
        shapes = TETRAHEDRON_POINTS[None]

        np.testing.assert_array_equal(mean_shape(shapes), TETRAHEDRON_POINTS)

    def test_mean_shape_multiple_samples(self):
        shapes = np.zeros((2, 3, 3))
        shapes[0] = [[0, 0, 0], [2, 0, 0], [0, 2, 0]]
        shapes[1] = [[0, 0, 0], [4, 0, 0], [0, 4, 0]]

        expected = np.array([[0, 0, 0], [3, 0, 0], [0, 3, 0]])
        np.testing.assert_array_equal(mean_shape(shapes), expected)

    def test_mean_shape_of_point_set_list(self):
        shapes = [TETRAHEDRON_POINTS, TETRAHEDRON_POINTS + [2.0, 0.0, -2.0]]

        np.testing.assert_array_almost_equal(
            mean_shape(shapes), TETRAHEDRON_POINTS + [1.0, 0.0, -1.0]
        )


class TestProcrustesDistance:
    def test_identical(self, tetrahedron):
        assert procrustes_distance(tetrahedron, tetrahedron) == pytest.approx(0.0, abs=1e-12)

    def test_rigid_motion_is_ignored(self, tetrahedron):
        moved = tetrahedron.with_points(
            np.dot(TETRAHEDRON_POINTS, rotation_z(1.1).T) + [4.0, -2.0, 7.0]
        )

        assert procrustes_distance(moved, tetrahedron) == pytest.approx(0.0, abs=1e-9)

    def test_shape_difference(self, tetrahedron):
        scaled = tetrahedron.with_points(TETRAHEDRON_POINTS * 2)

        assert procrustes_distance(scaled, tetrahedron) > 0.1


class TestGeneralizedProcrustes:
    def test_zero_iterations_returns_input(self, translated_collection):
        result = generalized_procrustes(translated_collection, max_iterations=0)

        assert result is translated_collection

    def test_translated_tetrahedra(self, translated_collection):
        result = generalized_procrustes(
            translated_collection, max_iterations=1, halt_distance=0.0
        )

        expected_mean = TETRAHEDRON_POINTS + TRANSLATIONS.mean(axis=0)
        np.testing.assert_array_almost_equal(result.reference.points, expected_mean)
        np.testing.assert_array_equal(result.reference.cells, TETRAHEDRON_CELLS)
        assert result.size == 3

        # Pure translations align exactly onto the mean
        for item in result.items:
            np.testing.assert_array_almost_equal(
                item.transformation(result.reference.points), expected_mean
            )
            assert item.info == "gpa -> from mesh"
            assert item.transformation.domain == result.reference.bounding_box

    def test_aligned_items_are_rigid_copies_of_samples(self, tetrahedron):
        rotations = [rotation_z(angle) for angle in (0.0, 0.3, -0.5)]
        shapes = [
            np.dot(TETRAHEDRON_POINTS * [1.0, 1.0 + 0.1 * i, 1.0], r.T) + i
            for i, r in enumerate(rotations)
        ]
        collection = collection_from_shapes(tetrahedron, shapes)

        result = generalized_procrustes(collection, max_iterations=1, halt_distance=0.0)

        for item, original in zip(result.items, shapes):
            aligned = item.transformation(result.reference.points)
            original_dists = np.linalg.norm(original[:, None] - original[None], axis=2)
            aligned_dists = np.linalg.norm(aligned[:, None] - aligned[None], axis=2)
            np.testing.assert_array_almost_equal(aligned_dists, original_dists)

    def test_halts_keeping_previous_reference(self, perturbed_collection):
        result = generalized_procrustes(perturbed_collection)

        assert result is perturbed_collection

    def test_halt_step_reports_candidate_mean(self, perturbed_collection):
        steps = list(procrustes_steps(perturbed_collection))

        assert len(steps) == 1
        assert steps[0].converged
        assert steps[0].distance < 1.0
        assert steps[0].collection is perturbed_collection
        assert steps[0].mean != perturbed_collection.reference

    def test_distances_do_not_increase(self, perturbed_collection):
        steps = list(
            procrustes_steps(perturbed_collection, max_iterations=3, halt_distance=0.0)
        )
        distances = [step.distance for step in steps]

        assert len(distances) == 3
        for previous, current in zip(distances, distances[1:]):
            assert current <= previous + 1e-9

    def test_each_step_starts_from_previous_alignment(self, perturbed_collection):
        steps = list(
            procrustes_steps(perturbed_collection, max_iterations=3, halt_distance=0.0)
        )

        for previous, current in zip(steps, steps[1:]):
            assert current.collection is previous.aligned
            assert current.collection.reference == previous.mean

    def test_info_is_extended_each_iteration(self, perturbed_collection):
        result = generalized_procrustes(
            perturbed_collection, max_iterations=2, halt_distance=0.0
        )

        assert all(item.info == "gpa -> gpa -> from mesh" for item in result.items)

    def test_item_order_is_preserved(self, tetrahedron):
        shapes = [TETRAHEDRON_POINTS * (1.0 + 0.2 * i) for i in range(5)]
        collection = collection_from_shapes(tetrahedron, shapes)
        collection = DataCollection(
            collection.reference,
            tuple(DataItem(f"sample {i}", item.transformation) for i, item in enumerate(collection.items)),
        )

        result = generalized_procrustes(
            collection, max_iterations=1, halt_distance=0.0, max_workers=4
        )

        assert [item.info for item in result.items] == [f"gpa -> sample {i}" for i in range(5)]
        for i, item in enumerate(result.items):
            aligned = item.transformation(result.reference.points)
            np.testing.assert_almost_equal(
                np.linalg.norm(aligned[1] - aligned[0]), 1.0 + 0.2 * i
            )

    def test_does_not_modify_input(self, translated_collection):
        reference_points = translated_collection.reference.points.copy()
        items = translated_collection.items

        generalized_procrustes(translated_collection, max_iterations=2, halt_distance=0.0)

        np.testing.assert_array_equal(translated_collection.reference.points, reference_points)
        assert translated_collection.items is items

    def test_alignment_failure_aborts(self, tetrahedron):
        def collapse(points):
            return np.zeros_like(points)

        items = (
            DataItem("ok", FunctionTransformation(tetrahedron.bounding_box, lambda x: x + 1.0)),
            DataItem("collapsed", FunctionTransformation(tetrahedron.bounding_box, collapse)),
        )
        collection = DataCollection(tetrahedron, items)

        with pytest.raises(AlignmentError):
            generalized_procrustes(collection, max_iterations=1, halt_distance=0.0)

    def test_empty_collection_raises(self, tetrahedron):
        with pytest.raises(ValueError):
            generalized_procrustes(DataCollection(tetrahedron, ()))
