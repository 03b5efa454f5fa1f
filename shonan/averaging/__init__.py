"""
Certifiable rotation averaging (Shonan averaging).

Available components:
    - MeasurementStore: validated measurements and key indexing
    - build_D, build_Q, build_L: sparse degree/measurement/Laplacian matrices
    - Lifted problem at SO(p): build_graph_at, initialize_randomly_at, cost_at
    - try_optimizing_at: Levenberg-Marquardt at a fixed level
    - Certificate: compute_lambda, compute_A, compute_min_eigenvalue,
      check_optimality, is_certified
    - Lifting: make_a_tangent_vector, riemannian_gradient,
      dimension_lifting, initialize_with_descent
    - ShonanAveraging: facade and Riemannian Staircase driver
"""

from shonan.averaging.certifier import (
    check_optimality,
    compute_A,
    compute_A_dense,
    compute_lambda,
    compute_lambda_dense,
    compute_min_eigenvalue,
    is_certified,
    min_eigenpair,
)
from shonan.averaging.errors import (
    EigensolverFailure,
    InputError,
    ShonanError,
    SolverDivergence,
)
from shonan.averaging.lifted_graph import (
    build_graph_at,
    cost_at,
    initialize_randomly_at,
    insert_values,
    stiefel_element_matrix,
)
from shonan.averaging.lifting import (
    dimension_lifting,
    initialize_with_descent,
    make_a_tangent_vector,
    riemannian_gradient,
)
from shonan.averaging.measurements import MeasurementStore
from shonan.averaging.optimizer import (
    anchor_prior_factor,
    karcher_mean_factor,
    try_optimizing_at,
)
from shonan.averaging.params import LevenbergMarquardtParams, ShonanAveragingParameters
from shonan.averaging.shonan import ShonanAveraging
from shonan.averaging.sparse_matrices import build_D, build_L, build_Q
from shonan.averaging.types import (
    LiftedValues,
    Measurement,
    Pose,
    ShonanResult,
    StaircaseLevel,
    StaircaseState,
)

__all__ = [
    # Types
    "Pose",
    "Measurement",
    "LiftedValues",
    "StaircaseLevel",
    "StaircaseState",
    "ShonanResult",
    # Errors
    "ShonanError",
    "InputError",
    "SolverDivergence",
    "EigensolverFailure",
    # Configuration
    "LevenbergMarquardtParams",
    "ShonanAveragingParameters",
    # Measurement store and matrices
    "MeasurementStore",
    "build_D",
    "build_Q",
    "build_L",
    # Lifted problem
    "build_graph_at",
    "insert_values",
    "initialize_randomly_at",
    "cost_at",
    "stiefel_element_matrix",
    "karcher_mean_factor",
    "anchor_prior_factor",
    "try_optimizing_at",
    # Certificate
    "compute_lambda",
    "compute_lambda_dense",
    "compute_A",
    "compute_A_dense",
    "is_certified",
    "min_eigenpair",
    "compute_min_eigenvalue",
    "check_optimality",
    # Lifting
    "make_a_tangent_vector",
    "riemannian_gradient",
    "dimension_lifting",
    "initialize_with_descent",
    # Staircase
    "ShonanAveraging",
]
