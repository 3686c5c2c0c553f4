"""
Low-rank deformation models and their Karhunen-Loeve transformation space.

A low-rank deformation model is a truncated Karhunen-Loeve (KL) expansion of
a Gaussian process over deformation fields. For a coefficient vector c it
produces the deformation field

    u(x) = mean(x) + sum_i c[i] * sqrt(lambda_i) * phi_i(x)

where (lambda_i, phi_i) are the eigenpairs of the model. The KL
transformation space turns these fields into transformations x -> x + u(x)
that registration code can optimise over.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Sequence

import numpy as np

from statshape.errors import DimensionalityError, UnsupportedOperationError
from statshape.transformation import (
    PointMappingTransformation,
    Transformation,
    as_point_set,
)

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from statshape.mesh import BoundingBox

VectorField = Callable[["NDArray[np.floating]"], "NDArray[np.floating]"]


class VectorVectorizer:
    """Convert displacement vectors to flat component arrays and back."""

    def __init__(self, dim: int = 3):
        if dim < 1:
            raise ValueError(f"Dimensionality must be positive, got {dim}")
        self.dimensionality = dim

    def to_components(self, vector: ArrayLike) -> NDArray[np.floating]:
        components = np.asarray(vector, dtype=float).reshape(-1)
        if components.shape[0] != self.dimensionality:
            raise DimensionalityError(
                f"Expected a {self.dimensionality}D vector, got {components.shape[0]} components"
            )
        return components

    def from_components(self, components: ArrayLike) -> NDArray[np.floating]:
        return self.to_components(components).copy()


@dataclass(frozen=True)
class Eigenpair:
    """An eigenvalue and its basis function.

    Attributes:
        eigenvalue: Variance captured by the basis function, must be >= 0
        basis_function: Vector field, (n, 3) points -> (n, 3) vectors
    """

    eigenvalue: float
    basis_function: VectorField

    def __post_init__(self):
        if not self.eigenvalue >= 0:
            raise ValueError(f"Eigenvalues must be non-negative, got {self.eigenvalue}")


def _evaluate(field: VectorField, points: NDArray[np.floating]) -> NDArray[np.floating]:
    return np.asarray(field(points), dtype=float).reshape(points.shape)


def zero_mean(points: NDArray[np.floating]) -> NDArray[np.floating]:
    """Mean field of a model without a mean deformation."""
    return np.zeros_like(points, dtype=float)


class LowRankDeformationModel:
    """Truncated KL expansion of a Gaussian process over deformation fields.

    Args:
        domain: Region on which the basis functions are defined
        mean: Mean deformation field
        eigenpairs: Eigenpairs in the order they were computed, normally by
            descending eigenvalue. The order is kept as given.
    """

    def __init__(
        self,
        domain: BoundingBox,
        mean: VectorField,
        eigenpairs: Sequence[Eigenpair],
    ):
        self.domain = domain
        self.mean = mean
        self.eigenpairs = tuple(eigenpairs)

    @property
    def rank(self) -> int:
        return len(self.eigenpairs)

    @classmethod
    def from_discrete(
        cls,
        points: ArrayLike,
        mean: ArrayLike,
        eigenvalues: ArrayLike,
        eigenvectors: ArrayLike,
    ) -> LowRankDeformationModel:
        """Build a model whose fields are known only at a fixed point set.

        Args:
            points: Points at which the fields are defined, shape (n_points, 3)
            mean: Mean deformation at each point, shape (n_points, 3)
            eigenvalues: Eigenvalues, shape (rank,)
            eigenvectors: Basis vectors stacked point by point (x0, y0, z0,
                x1, ...), shape (n_points * 3, rank)

        Returns:
            Model whose fields raise OutOfDomainError away from `points`
        """
        points, _ = as_point_set(points)
        n_points = points.shape[0]
        mean = np.asarray(mean, dtype=float).reshape(n_points, 3)
        eigenvalues = np.asarray(eigenvalues, dtype=float).reshape(-1)
        eigenvectors = np.asarray(eigenvectors, dtype=float)

        if eigenvectors.shape != (n_points * 3, eigenvalues.shape[0]):
            raise DimensionalityError(
                f"Expected eigenvectors of shape {(n_points * 3, eigenvalues.shape[0])}, "
                f"got {eigenvectors.shape}"
            )

        # Fields are stored as point-to-vector lookups on the given points
        mean_field = PointMappingTransformation(points, mean)
        eigenpairs = [
            Eigenpair(
                float(eigenvalues[i]),
                PointMappingTransformation(points, eigenvectors[:, i].reshape(n_points, 3)),
            )
            for i in range(eigenvalues.shape[0])
        ]
        return cls(mean_field.domain, mean_field, eigenpairs)

    def _check_coefficients(self, coefficients: ArrayLike) -> NDArray[np.floating]:
        coefficients = np.asarray(coefficients, dtype=float).reshape(-1)
        if coefficients.shape[0] != self.rank:
            raise DimensionalityError(
                f"Expected {self.rank} coefficients, got {coefficients.shape[0]}"
            )
        return coefficients

    def instance(self, coefficients: ArrayLike) -> VectorField:
        """Return the deformation field selected by a coefficient vector.

        Raises:
            DimensionalityError: If len(coefficients) != rank
        """
        coefficients = self._check_coefficients(coefficients)
        weights = coefficients * np.sqrt([pair.eigenvalue for pair in self.eigenpairs])

        def field(points: ArrayLike) -> NDArray[np.floating]:
            point_set, single = as_point_set(points)
            result = _evaluate(self.mean, point_set)
            for weight, pair in zip(weights, self.eigenpairs):
                result = result + weight * _evaluate(pair.basis_function, point_set)
            return result[0] if single else result

        return field


class KLTransformation(Transformation):
    """Transformation x -> x + u(x) for one instance u of a low-rank model."""

    def __init__(self, model: LowRankDeformationModel, parameters: ArrayLike):
        self.instance = model.instance(parameters)
        self.parameters = np.asarray(parameters, dtype=float).reshape(-1)
        self.domain = model.domain

    def _apply(self, points):
        return points + self.instance(points)

    def take_derivative(self, point):
        # Basis functions are general kernel-derived fields without a closed-form gradient
        raise UnsupportedOperationError(
            "Spatial derivative of a KL transformation is not implemented"
        )


class KLTransformationSpace:
    """Parametric family of transformations spanned by a low-rank model.

    Args:
        model: Low-rank deformation model
        vectorizer: Converts basis vectors to Jacobian columns. Defaults to
            a 3D VectorVectorizer.
    """

    def __init__(
        self,
        model: LowRankDeformationModel,
        vectorizer: VectorVectorizer | None = None,
    ):
        self.model = model
        self.vectorizer = vectorizer if vectorizer is not None else VectorVectorizer(3)

    def parameters_dimensionality(self) -> int:
        return self.model.rank

    def identity_parameters(self) -> NDArray[np.floating]:
        return np.zeros(self.model.rank)

    def transform_for_parameters(self, parameters: ArrayLike) -> KLTransformation:
        return KLTransformation(self.model, parameters)

    def jacobian(self, parameters: ArrayLike) -> Callable[[ArrayLike], NDArray[np.floating]]:
        """Derivative of the transformation with respect to its parameters.

        The transformation is affine in its parameters, so the Jacobian does
        not depend on the parameter values; only their number is checked.

        Returns:
            Function mapping a point to a (dim, rank) matrix whose column i
            is sqrt(lambda_i) * phi_i(point), or a point set of shape (n, 3)
            to a stack of such matrices, shape (n, dim, rank)
        """
        self.model._check_coefficients(parameters)
        scales = np.sqrt([pair.eigenvalue for pair in self.model.eigenpairs])
        dim = self.vectorizer.dimensionality

        def jacobian_at(points: ArrayLike) -> NDArray[np.floating]:
            point_set, single = as_point_set(points)
            matrices = np.zeros((point_set.shape[0], dim, self.model.rank))
            for i, pair in enumerate(self.model.eigenpairs):
                phi = _evaluate(pair.basis_function, point_set)
                for j in range(point_set.shape[0]):
                    matrices[j, :, i] = self.vectorizer.to_components(phi[j]) * scales[i]
            return matrices[0] if single else matrices

        return jacobian_at
