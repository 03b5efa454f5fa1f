"""
Factor Graph Optimization over manifold-valued variables.

A factor graph holds variables (vectors, rotations, calibrations, ...) and
factors (weighted residuals over subsets of the variables). Optimization
finds the variable values minimizing

    error(X) = Σ_k r_k(X)ᵀ Λ_k r_k(X)

Variables may live on a manifold: each one is registered with its tangent
dimension and a retraction x ← retract(x, δ). Jacobians are expressed with
respect to the tangent coordinates δ at the current linearization point,
and every update goes through the retraction. Plain vector variables use
addition as their retraction.

Implements:
    - Gauss-Newton: (JᵀΛJ) δ = -JᵀΛr
    - Levenberg-Marquardt: (JᵀΛJ + μI) δ = -JᵀΛr with the gain ratio
      ρ = (f(x) - f(x ⊕ δ)) / (L(0) - L(δ)) driving the damping μ
"""

from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple, Union

import numpy as np


Retraction = Callable[[Any, np.ndarray], Any]


def _vector_retract(x: np.ndarray, delta: np.ndarray) -> np.ndarray:
    return x + delta


class Factor:
    """
    Factor in a factor graph representing a constraint or measurement.

    A factor encodes a probabilistic constraint on a subset of variables.
    For Gaussian factors, this is equivalent to minimizing a squared residual.

    Attributes:
        variable_ids: List of variable IDs that this factor connects
        residual_func: Function computing residual r(x_subset)
        jacobian_func: Function computing Jacobian ∂r/∂δ for each variable,
            δ being the tangent coordinates of that variable
        information: Information matrix (inverse covariance) for this factor,
            or a scalar weight κ standing for κ·I
    """

    def __init__(
        self,
        variable_ids: List[Hashable],
        residual_func: Callable[[List[Any]], np.ndarray],
        jacobian_func: Callable[[List[Any]], List[np.ndarray]],
        information: Union[np.ndarray, float],
    ):
        """
        Initialize Factor.

        Args:
            variable_ids: List of variable IDs connected by this factor.
            residual_func: Function computing residual r(x_vars) where x_vars
                is a list of variable values.
            jacobian_func: Function computing Jacobian [∂r/∂δ₁, ∂r/∂δ₂, ...].
            information: Information matrix Λ (inverse of covariance matrix),
                or a positive scalar κ meaning Λ = κ·I.
        """
        self.variable_ids = list(variable_ids)
        self.residual_func = residual_func
        self.jacobian_func = jacobian_func
        if np.isscalar(information):
            if information < 0:
                raise ValueError(f"Scalar information must be >= 0, got {information}")
            self.information = float(information)
        else:
            self.information = np.asarray(information, dtype=float)

    def _weight(self, r: np.ndarray) -> np.ndarray:
        """Return Λ r."""
        if isinstance(self.information, float):
            return self.information * r
        return self.information @ r

    def compute_error(self, variables: Dict[Hashable, Any]) -> float:
        """
        Compute squared error for this factor.

        Implements: error = rᵀ Λ r where r is the residual.

        Args:
            variables: Dictionary mapping variable ID to value.

        Returns:
            Squared error (scalar).
        """
        x_vars = [variables[vid] for vid in self.variable_ids]
        r = np.asarray(self.residual_func(x_vars), dtype=float).ravel()
        return float(r @ self._weight(r))

    def linearize(
        self, variables: Dict[Hashable, Any]
    ) -> Tuple[np.ndarray, List[np.ndarray]]:
        """
        Linearize the factor around current variable values.

        Args:
            variables: Dictionary mapping variable ID to value.

        Returns:
            Tuple of (residual, jacobians) where jacobians is a list
            of Jacobian matrices for each connected variable.
        """
        x_vars = [variables[vid] for vid in self.variable_ids]
        r = np.asarray(self.residual_func(x_vars), dtype=float).ravel()
        J = self.jacobian_func(x_vars)
        return r, J


class FactorGraph:
    """
    Factor Graph for batch estimation over manifold-valued variables.

    Factors may be added before the variables they reference: a graph can
    serve as a pure problem description, with values inserted later via
    add_variable. The variable set is checked for completeness when the
    graph is evaluated or optimized.

    Attributes:
        variables: Dictionary mapping variable ID to current value
        factors: List of factors in the graph
        variable_dims: Dictionary mapping variable ID to tangent dimension
        converged: Whether the last optimize() call met its tolerances
        iterations: Iterations used by the last optimize() call
    """

    def __init__(self):
        """Initialize empty Factor Graph."""
        self.variables: Dict[Hashable, Any] = {}
        self.factors: List[Factor] = []
        self.variable_dims: Dict[Hashable, int] = {}
        self._retractions: Dict[Hashable, Retraction] = {}
        self.converged: bool = False
        self.iterations: int = 0

    def add_variable(
        self,
        var_id: Hashable,
        initial_value: Any,
        dim: Optional[int] = None,
        retract: Optional[Retraction] = None,
    ) -> None:
        """
        Add a variable to the graph.

        Args:
            var_id: Unique identifier for this variable.
            initial_value: Initial value for the variable.
            dim: Tangent-space dimension. Defaults to the vector length for
                plain vector variables.
            retract: Function (value, delta) -> new value. Defaults to
                vector addition.
        """
        if retract is None:
            initial_value = np.asarray(initial_value, dtype=float).copy()
            if dim is None:
                dim = initial_value.size
            retract = _vector_retract
        elif dim is None:
            raise ValueError(f"dim is required for manifold variable {var_id}")
        self.variables[var_id] = initial_value
        self.variable_dims[var_id] = int(dim)
        self._retractions[var_id] = retract

    def add_factor(self, factor: Factor) -> None:
        """
        Add a factor to the graph.

        Args:
            factor: Factor connecting variables.
        """
        self.factors.append(factor)

    def size(self) -> int:
        """Number of factors."""
        return len(self.factors)

    def missing_variables(self) -> List[Hashable]:
        """Variable IDs referenced by factors but not yet inserted."""
        missing = []
        for factor in self.factors:
            for vid in factor.variable_ids:
                if vid not in self.variables and vid not in missing:
                    missing.append(vid)
        return missing

    def _check_complete(self) -> None:
        missing = self.missing_variables()
        if missing:
            raise ValueError(f"Variable(s) {missing} not in graph")

    def compute_error(self) -> float:
        """
        Compute total error over all factors.

        error = Σ rᵢᵀ Λᵢ rᵢ

        Returns:
            Total squared error.

        Raises:
            ValueError: If a factor references a variable not in the graph.
        """
        self._check_complete()
        total_error = 0.0
        for factor in self.factors:
            total_error += factor.compute_error(self.variables)
        return total_error

    def optimize(
        self,
        method: str = "levenberg_marquardt",
        max_iterations: int = 100,
        tol: float = 1e-10,
        **kwargs,
    ) -> Tuple[Dict[Hashable, Any], List[float]]:
        """
        Optimize the factor graph.

        Args:
            method: Optimization method. One of:
                - "gauss_newton": Standard Gauss-Newton
                - "levenberg_marquardt" or "lm": damped Gauss-Newton
            max_iterations: Maximum number of iterations.
            tol: Convergence tolerance on the relative error decrease.
            **kwargs: Additional method-specific parameters:
                - initial_mu: Initial damping for LM (default: 1e-3)
                - mu_upper_bound: LM stops once μ exceeds this (default: 1e10)
                - absolute_tol: Convergence tolerance on the absolute error
                  decrease and on the error itself (default: 1e-12)
                - gradient_tol: Stop when ‖JᵀΛr‖∞ falls below (default: 1e-10)
                - step_tol: Stop when ‖δ‖ falls below (default: 1e-12)
                - verbose: Print one line per iteration (default: False)

        Returns:
            Tuple of (optimized_variables, error_history). Whether the
            tolerances were met is recorded in self.converged.

        Raises:
            ValueError: If method is not supported or variables are missing.
        """
        self._check_complete()
        absolute_tol = kwargs.get("absolute_tol", 1e-12)
        gradient_tol = kwargs.get("gradient_tol", 1e-10)
        step_tol = kwargs.get("step_tol", 1e-12)
        verbose = kwargs.get("verbose", False)
        if method == "gauss_newton":
            return self._gauss_newton(
                max_iterations, tol, absolute_tol, gradient_tol, step_tol, verbose
            )
        elif method in ("levenberg_marquardt", "lm"):
            return self._levenberg_marquardt(
                max_iterations,
                tol,
                initial_mu=kwargs.get("initial_mu", 1e-3),
                mu_upper_bound=kwargs.get("mu_upper_bound", 1e10),
                absolute_tol=absolute_tol,
                gradient_tol=gradient_tol,
                step_tol=step_tol,
                verbose=verbose,
            )
        else:
            raise ValueError(f"Unknown method: {method}")

    def _has_converged(
        self, previous: float, current: float, tol: float, absolute_tol: float
    ) -> bool:
        decrease = previous - current
        if current <= absolute_tol:
            return True
        if abs(decrease) <= absolute_tol:
            return True
        return abs(decrease) <= tol * previous

    def _gauss_newton(
        self,
        max_iterations: int,
        tol: float,
        absolute_tol: float,
        gradient_tol: float,
        step_tol: float,
        verbose: bool,
    ) -> Tuple[Dict[Hashable, Any], List[float]]:
        """
        Gauss-Newton optimization.

        Solves the linearized system: (JᵀΛJ) δ = -JᵀΛr
        at each iteration and updates: x ← retract(x, δ)
        """
        error_history = [self.compute_error()]
        self.converged = False
        self.iterations = 0

        for iteration in range(max_iterations):
            self.iterations = iteration + 1
            H, b = self._build_linearized_system()
            if np.max(np.abs(b), initial=0.0) < gradient_tol:
                self.converged = True
                break

            try:
                delta_x = np.linalg.solve(H, b)
            except np.linalg.LinAlgError:
                # Singular matrix - use pseudo-inverse
                delta_x = np.linalg.lstsq(H, b, rcond=None)[0]

            self._update_variables(delta_x)
            current_error = self.compute_error()
            error_history.append(current_error)
            if verbose:
                print(f"    GN iter {iteration + 1:3d}: error={current_error:.6e}")

            if not np.isfinite(current_error):
                break
            if np.linalg.norm(delta_x) < step_tol or self._has_converged(
                error_history[-2], current_error, tol, absolute_tol
            ):
                self.converged = True
                break

        return self.variables.copy(), error_history

    def _levenberg_marquardt(
        self,
        max_iterations: int,
        tol: float,
        initial_mu: float = 1e-3,
        mu_upper_bound: float = 1e10,
        absolute_tol: float = 1e-12,
        gradient_tol: float = 1e-10,
        step_tol: float = 1e-12,
        verbose: bool = False,
    ) -> Tuple[Dict[Hashable, Any], List[float]]:
        """
        Levenberg-Marquardt optimization.

        - (JᵀΛJ + μI) δ = -JᵀΛr
        - Gain ratio ρ = actual / predicted reduction of f = ½ error

        Steps with ρ > 0 are accepted and μ shrinks by max(1/3, 1 - (2ρ-1)³);
        rejected steps restore the previous values and grow μ by ν (ν doubles
        on every consecutive rejection). Once μ exceeds mu_upper_bound no
        descent step can be found and the current point is returned as
        converged.
        """
        error_history = [self.compute_error()]
        self.converged = False
        self.iterations = 0
        if not np.isfinite(error_history[0]):
            return self.variables.copy(), error_history

        mu = initial_mu
        nu = 2.0

        total_dim = sum(self.variable_dims[vid] for vid in self.variables)

        for iteration in range(max_iterations):
            self.iterations = iteration + 1
            # H = JᵀΛJ, b = -JᵀΛr
            H, b = self._build_linearized_system()
            current_error = error_history[-1]

            if np.max(np.abs(b), initial=0.0) < gradient_tol:
                self.converged = True
                break

            H_damped = H + mu * np.eye(total_dim)

            try:
                d_lm = np.linalg.solve(H_damped, b)
            except np.linalg.LinAlgError:
                d_lm = np.linalg.lstsq(H_damped, b, rcond=None)[0]

            if np.linalg.norm(d_lm) < step_tol:
                self.converged = True
                break

            old_vars = dict(self.variables)
            self._update_variables(d_lm)
            new_error = self.compute_error()

            # L(0) - L(δ) for f = ½ error, using (H + μI) δ = b
            actual_reduction = 0.5 * (current_error - new_error)
            predicted_reduction = 0.5 * np.dot(d_lm, mu * d_lm + b)

            if predicted_reduction > 0 and np.isfinite(new_error):
                g = actual_reduction / predicted_reduction
            else:
                g = 0.0

            if g > 0:
                error_history.append(new_error)
                mu_factor = max(1.0 / 3.0, 1.0 - (2.0 * g - 1.0) ** 3)
                mu = mu * mu_factor
                nu = 2.0
                if verbose:
                    print(
                        f"    LM iter {iteration + 1:3d}: error={new_error:.6e} "
                        f"mu={mu:.2e} (accepted)"
                    )
                if self._has_converged(current_error, new_error, tol, absolute_tol):
                    self.converged = True
                    break
            else:
                self.variables = old_vars
                error_history.append(current_error)
                mu = mu * nu
                nu = 2.0 * nu
                if verbose:
                    print(
                        f"    LM iter {iteration + 1:3d}: error={current_error:.6e} "
                        f"mu={mu:.2e} (rejected)"
                    )
                if mu > mu_upper_bound:
                    self.converged = True
                    break

        return self.variables.copy(), error_history

    def _variable_slices(self) -> Dict[Hashable, Tuple[int, int]]:
        var_indices = {}
        current_idx = 0
        for vid in self.variables:
            dim = self.variable_dims[vid]
            var_indices[vid] = (current_idx, current_idx + dim)
            current_idx += dim
        return var_indices

    def _build_linearized_system(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Build linearized system Hδ = b for Gauss-Newton.

        H = JᵀΛJ (Hessian approximation)
        b = -JᵀΛr (negative gradient)

        Variables are stacked in insertion order.

        Returns:
            Tuple of (H, b) for solving Hδ = b.
        """
        var_indices = self._variable_slices()
        total_dim = sum(self.variable_dims[vid] for vid in self.variables)

        H = np.zeros((total_dim, total_dim))
        b = np.zeros(total_dim)

        for factor in self.factors:
            r, jacobians = factor.linearize(self.variables)
            weighted_r = factor._weight(r)
            weighted_J = [
                factor.information * J
                if isinstance(factor.information, float)
                else factor.information @ J
                for J in jacobians
            ]

            for i, vid_i in enumerate(factor.variable_ids):
                J_i = jacobians[i]
                start_i, end_i = var_indices[vid_i]

                # Gradient contribution: -JᵀΛr
                b[start_i:end_i] -= J_i.T @ weighted_r

                for j, vid_j in enumerate(factor.variable_ids):
                    start_j, end_j = var_indices[vid_j]

                    # Hessian contribution: JᵀΛJ
                    H[start_i:end_i, start_j:end_j] += J_i.T @ weighted_J[j]

        return H, b

    def _update_variables(self, delta_x: np.ndarray) -> None:
        """
        Retract all variables along their slice of the stacked update.

        Args:
            delta_x: Stacked update vector for all variables.
        """
        current_idx = 0
        for vid in self.variables:
            dim = self.variable_dims[vid]
            delta = delta_x[current_idx : current_idx + dim]
            self.variables[vid] = self._retractions[vid](self.variables[vid], delta)
            current_idx += dim
