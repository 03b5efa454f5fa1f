"""
Certifiable rotation averaging with the Riemannian Staircase.

Subpackages:
    - geometry: SO(n) primitives and calibration types
    - estimators: factor graph with manifold Levenberg-Marquardt
    - averaging: Shonan averaging (measurement store, sparse matrices,
      lifted problem, certificate, lifting, staircase driver)
    - datasets: G2O files and synthetic problems
"""

__version__ = "0.1.0"

from shonan.averaging import (
    EigensolverFailure,
    InputError,
    LevenbergMarquardtParams,
    LiftedValues,
    Measurement,
    Pose,
    ShonanAveraging,
    ShonanAveragingParameters,
    ShonanError,
    ShonanResult,
    SolverDivergence,
    StaircaseLevel,
    StaircaseState,
)
from shonan.datasets import read_g2o, write_g2o

__all__ = [
    "__version__",
    "ShonanAveraging",
    "ShonanAveragingParameters",
    "LevenbergMarquardtParams",
    "Pose",
    "Measurement",
    "LiftedValues",
    "StaircaseLevel",
    "StaircaseState",
    "ShonanResult",
    "ShonanError",
    "InputError",
    "SolverDivergence",
    "EigensolverFailure",
    "read_g2o",
    "write_g2o",
]
