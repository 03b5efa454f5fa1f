"""
Nonlinear least-squares machinery used by rotation averaging.

Available estimators:
    - Factor Graph Optimization over manifold variables
      (Gauss-Newton, Levenberg-Marquardt)
    - Bounding (inequality) constraints usable as factors
"""

from shonan.estimators.constraints import BoundDirection, BoundingConstraint
from shonan.estimators.factor_graph import Factor, FactorGraph

__all__ = [
    # Factor Graph
    "Factor",
    "FactorGraph",
    # Constraints
    "BoundDirection",
    "BoundingConstraint",
]
