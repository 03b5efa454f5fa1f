"""Exceptions raised by rotation averaging.

Reaching the top of the staircase without a certificate is not an error:
it is reported through StaircaseState.EXHAUSTED on the result.
"""

from typing import Optional


class ShonanError(Exception):
    """Base class for rotation averaging failures."""


class InputError(ShonanError, ValueError):
    """Invalid measurement set: unknown key, bad rotation, disconnected graph, ..."""


class SolverDivergence(ShonanError, RuntimeError):
    """The nonlinear solver did not reach its convergence criteria at level p.

    Attributes:
        p: Level (rotation dimension) that was being optimized.
        iterations: Iterations spent before giving up.
        error: Last objective value (may be non-finite).
    """

    def __init__(
        self,
        message: str,
        p: Optional[int] = None,
        iterations: Optional[int] = None,
        error: Optional[float] = None,
    ):
        super().__init__(message)
        self.p = p
        self.iterations = iterations
        self.error = error


class EigensolverFailure(ShonanError, RuntimeError):
    """The sparse eigensolver could not produce the minimum eigenpair."""
