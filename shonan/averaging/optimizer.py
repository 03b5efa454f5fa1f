"""Levenberg-Marquardt optimization of the lifted problem at a fixed level p."""

from typing import Optional

import numpy as np

from shonan.averaging.errors import SolverDivergence
from shonan.averaging.lifted_graph import (
    build_graph_at,
    initialize_randomly_at,
    insert_values,
)
from shonan.averaging.measurements import MeasurementStore
from shonan.averaging.params import LevenbergMarquardtParams, ShonanAveragingParameters
from shonan.averaging.types import LiftedValues
from shonan.estimators import Factor, FactorGraph
from shonan.geometry import so_dimension, so_generators


def karcher_mean_factor(keys, p: int, beta: float = 1.0) -> Factor:
    """
    Gauge factor on the Karcher mean of all rotations.

    The residual is identically zero and the Jacobian is β·I on every key,
    so the only effect is the term β²‖Σ_i ξ_i‖² in the normal equations,
    which removes the global rotation freedom from each step.
    """
    m = so_dimension(p)
    block = beta * np.eye(m)
    keys = list(keys)

    def residual(x_vars):
        return np.zeros(m)

    def jacobian(x_vars):
        return [block] * len(keys)

    return Factor(keys, residual, jacobian, 1.0)


def anchor_prior_factor(key, p: int, sigma: float = 1.0) -> Factor:
    """Chordal prior pulling one rotation towards the identity of SO(p)."""
    G = so_generators(p)
    identity = np.eye(p)

    def residual(x_vars):
        return (x_vars[0] - identity).ravel()

    def jacobian(x_vars):
        return [np.einsum("ab,kbc->kac", x_vars[0], G).reshape(len(G), -1).T]

    return Factor([key], residual, jacobian, 1.0 / sigma**2)


def add_gauge_prior(
    graph: FactorGraph,
    store: MeasurementStore,
    p: int,
    params: ShonanAveragingParameters,
) -> FactorGraph:
    """Add the Karcher-mean factor, or an anchor prior on the first key."""
    if params.karcher:
        graph.add_factor(karcher_mean_factor(store.keys, p, params.karcher_beta))
    else:
        graph.add_factor(anchor_prior_factor(store.keys[0], p, params.prior_sigma))
    return graph


def try_optimizing_at(
    store: MeasurementStore,
    p: int,
    params: Optional[ShonanAveragingParameters] = None,
    initial: Optional[LiftedValues] = None,
    rng: Optional[np.random.Generator] = None,
    lm: Optional[LevenbergMarquardtParams] = None,
) -> LiftedValues:
    """
    Locally optimize the lifted problem at SO(p).

    Args:
        store: Measurement store.
        p: Rotation dimension.
        params: Averaging parameters (defaults if None).
        initial: Starting values in SO(p), or None for a random start.
        rng: Random source for the random start.
        lm: Solver settings overriding params.lm.

    Returns:
        Locally optimal values in SO(p).

    Raises:
        ValueError: If initial does not live in SO(p).
        SolverDivergence: If LM ends with a non-finite error or without
            meeting any convergence criterion.
    """
    if params is None:
        params = ShonanAveragingParameters()
    if lm is None:
        lm = params.lm
    if initial is None:
        initial = initialize_randomly_at(store, p, rng)
    elif initial.p != p:
        raise ValueError(f"initial values live in SO({initial.p}), expected SO({p})")

    graph = build_graph_at(store, p, use_noise_model=True, noise_sigma=params.noise_sigma)
    if params.prior:
        add_gauge_prior(graph, store, p, params)
    insert_values(graph, initial)

    variables, error_history = graph.optimize(method="lm", **lm.optimize_kwargs())
    final_error = error_history[-1]

    if not np.isfinite(final_error) or not graph.converged:
        raise SolverDivergence(
            f"LM did not converge at p={p} after {graph.iterations} iterations "
            f"(error={final_error:.6e})",
            p=p,
            iterations=graph.iterations,
            error=final_error,
        )

    return LiftedValues(p, {key: variables[key] for key in store.keys})
