"""
Inequality (bounding) constraints for factor graphs.

A bounding constraint keeps a scalar function of one or more variables on
one side of a threshold:

    GREATER_THAN:  value(x) >= threshold
    LESS_THAN:     value(x) <= threshold

While the bound is satisfied the constraint contributes nothing. When it is
violated (or exactly met) it behaves as a stiff quadratic penalty with
weight mu on the signed violation, so it can be added to a FactorGraph as
an ordinary factor.

The same class covers unary, binary and higher-arity constraints: arity is
simply the number of keys.
"""

from enum import Enum
from typing import Any, Callable, Dict, Hashable, List, Sequence, Tuple

import numpy as np

from shonan.estimators.factor_graph import Factor


ValueFunction = Callable[[List[Any]], Tuple[float, List[np.ndarray]]]


class BoundDirection(Enum):
    """Side of the threshold on which the value must stay."""

    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


class BoundingConstraint:
    """
    Scalar inequality constraint over an arbitrary number of variables.

    Attributes:
        keys: Variable IDs the value depends on.
        value_func: Function x_vars -> (value, [∂value/∂δ_k for each key]),
            each Jacobian of shape (1, dim_k) or (dim_k,).
        threshold: Bound on the value.
        direction: BoundDirection.GREATER_THAN or BoundDirection.LESS_THAN.
        mu: Penalty weight used as factor information while active.

    Example:
        >>> c = BoundingConstraint(
        ...     ["x"], lambda xs: (xs[0][0], [np.array([[1.0, 0.0]])]),
        ...     threshold=0.0, direction=BoundDirection.GREATER_THAN)
        >>> c.active({"x": np.array([1.0, 0.0])})
        False
    """

    def __init__(
        self,
        keys: Sequence[Hashable],
        value_func: ValueFunction,
        threshold: float,
        direction: BoundDirection = BoundDirection.GREATER_THAN,
        mu: float = 1000.0,
    ):
        if len(keys) == 0:
            raise ValueError("BoundingConstraint needs at least one key")
        if not isinstance(direction, BoundDirection):
            raise TypeError(f"direction must be a BoundDirection, got {type(direction)}")
        if mu <= 0:
            raise ValueError(f"mu must be positive, got {mu}")
        self.keys = list(keys)
        self.value_func = value_func
        self.threshold = float(threshold)
        self.direction = direction
        self.mu = float(mu)

    @property
    def arity(self) -> int:
        return len(self.keys)

    @property
    def is_greater_than(self) -> bool:
        return self.direction is BoundDirection.GREATER_THAN

    def _values(self, variables: Dict[Hashable, Any]) -> List[Any]:
        return [variables[k] for k in self.keys]

    def _value(self, x_vars: List[Any]) -> Tuple[float, List[np.ndarray]]:
        value, jacobians = self.value_func(x_vars)
        if len(jacobians) != self.arity:
            raise ValueError(
                f"value_func returned {len(jacobians)} Jacobians for {self.arity} keys"
            )
        jacobians = [np.atleast_2d(np.asarray(J, dtype=float)) for J in jacobians]
        return float(value), jacobians

    def active(self, variables: Dict[Hashable, Any]) -> bool:
        """True when the bound is violated or exactly met."""
        value, _ = self._value(self._values(variables))
        if self.is_greater_than:
            return value <= self.threshold
        return value >= self.threshold

    def evaluate_error(self, x_vars: List[Any]) -> Tuple[np.ndarray, List[np.ndarray]]:
        """
        Signed error and its Jacobians.

        error = value - threshold for GREATER_THAN and threshold - value for
        LESS_THAN, so a negative error always means the bound is violated.

        Returns:
            Tuple of (error of shape (1,), list of Jacobians of shape (1, dim)).
        """
        value, jacobians = self._value(x_vars)
        if self.is_greater_than:
            return np.array([value - self.threshold]), jacobians
        return np.array([self.threshold - value]), [-J for J in jacobians]

    def as_factor(self) -> Factor:
        """
        Wrap the constraint as a penalty factor with information mu.

        The residual (and its Jacobians) is zero while the bound holds
        strictly, so the factor is inert until the constraint becomes active.
        """

        def residual(x_vars):
            error, _ = self.evaluate_error(x_vars)
            if error[0] > 0:
                return np.zeros(1)
            return error

        def jacobian(x_vars):
            error, jacobians = self.evaluate_error(x_vars)
            if error[0] > 0:
                return [np.zeros_like(J) for J in jacobians]
            return jacobians

        return Factor(self.keys, residual, jacobian, self.mu)
