"""Configuration for rotation averaging.

Both parameter sets are frozen dataclasses validated on construction; the
set_*/with_* helpers return modified copies.
"""

from dataclasses import dataclass, field, replace
from typing import Optional


@dataclass(frozen=True)
class LevenbergMarquardtParams:
    """Solver settings passed through to FactorGraph.optimize.

    Attributes:
        max_iterations: Iteration cap. Hitting it without meeting a
            tolerance counts as divergence.
        initial_mu: Initial damping.
        mu_upper_bound: The solver stops once damping exceeds this.
        relative_error_tol: Stop when the relative error decrease is below.
        absolute_error_tol: Stop when the error, or its decrease, is below.
        gradient_tol: Stop when ‖JᵀΛr‖∞ is below.
        step_tol: Stop when the step norm is below.
        verbose: Print one line per LM iteration.
    """

    max_iterations: int = 100
    initial_mu: float = 1e-3
    mu_upper_bound: float = 1e10
    relative_error_tol: float = 1e-10
    absolute_error_tol: float = 1e-12
    gradient_tol: float = 1e-10
    step_tol: float = 1e-12
    verbose: bool = False

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.initial_mu <= 0:
            raise ValueError(f"initial_mu must be positive, got {self.initial_mu}")
        if self.mu_upper_bound <= self.initial_mu:
            raise ValueError(
                f"mu_upper_bound ({self.mu_upper_bound}) must exceed "
                f"initial_mu ({self.initial_mu})"
            )
        for name in ("relative_error_tol", "absolute_error_tol", "gradient_tol", "step_tol"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")

    def with_initial_mu(self, initial_mu: float) -> "LevenbergMarquardtParams":
        # keep the upper bound above the new starting damping
        upper = max(self.mu_upper_bound, 10.0 * initial_mu)
        return replace(self, initial_mu=initial_mu, mu_upper_bound=upper)

    def optimize_kwargs(self) -> dict:
        """Keyword arguments for FactorGraph.optimize(method="lm")."""
        return {
            "max_iterations": self.max_iterations,
            "tol": self.relative_error_tol,
            "initial_mu": self.initial_mu,
            "mu_upper_bound": self.mu_upper_bound,
            "absolute_tol": self.absolute_error_tol,
            "gradient_tol": self.gradient_tol,
            "step_tol": self.step_tol,
            "verbose": self.verbose,
        }


@dataclass(frozen=True)
class ShonanAveragingParameters:
    """Parameters governing the staircase, the certificate and the solver.

    Attributes:
        prior: Add a gauge-fixing prior to each level's problem.
        karcher: Use the Karcher-mean prior (else anchor the first key).
        noise_sigma: Isotropic rotation noise sigma, used as κ = 1/σ² for
            measurements without their own weight. Ignored if zero.
        optimality_threshold: Certificate accepted when λ_min exceeds this.
        lm: Levenberg-Marquardt settings.
        p_min: First staircase level.
        p_max: Last staircase level.
        with_descent: Seed each new level by descent (else plain lifting).
        max_divergence_retries: Random restarts per level after divergence.
        divergence_retry_mu_factor: Initial damping multiplier per retry.
        gradient_tolerance: Line-search Riemannian gradient norm threshold.
        preconditioned_grad_norm_tolerance: Line-search preconditioned
            gradient norm threshold.
        karcher_beta: Jacobian scale of the Karcher-mean factor.
        prior_sigma: Sigma of the anchor prior when karcher is False.
        seed: Seed for the default random generator of run().
        verbose: Print one line per staircase level.
    """

    prior: bool = True
    karcher: bool = True
    noise_sigma: float = 0.0
    optimality_threshold: float = -1e-4
    lm: LevenbergMarquardtParams = field(default_factory=LevenbergMarquardtParams)
    p_min: int = 5
    p_max: int = 20
    with_descent: bool = True
    max_divergence_retries: int = 1
    divergence_retry_mu_factor: float = 10.0
    gradient_tolerance: float = 1e-2
    preconditioned_grad_norm_tolerance: float = 1e-4
    karcher_beta: float = 1.0
    prior_sigma: float = 1.0
    seed: Optional[int] = None
    verbose: bool = False

    def __post_init__(self) -> None:
        """Validate the parameters."""
        if not isinstance(self.lm, LevenbergMarquardtParams):
            raise TypeError(f"lm must be LevenbergMarquardtParams, got {type(self.lm)}")
        if self.noise_sigma < 0:
            raise ValueError(f"noise_sigma must be non-negative, got {self.noise_sigma}")
        if self.optimality_threshold > 0:
            raise ValueError(
                f"optimality_threshold must be <= 0, got {self.optimality_threshold}"
            )
        if self.p_min < 2:
            raise ValueError(f"p_min must be >= 2, got {self.p_min}")
        if self.p_max < self.p_min:
            raise ValueError(f"p_max ({self.p_max}) must be >= p_min ({self.p_min})")
        if self.max_divergence_retries < 0:
            raise ValueError(
                f"max_divergence_retries must be >= 0, got {self.max_divergence_retries}"
            )
        if self.divergence_retry_mu_factor < 1.0:
            raise ValueError(
                "divergence_retry_mu_factor must be >= 1, "
                f"got {self.divergence_retry_mu_factor}"
            )
        if self.gradient_tolerance <= 0 or self.preconditioned_grad_norm_tolerance <= 0:
            raise ValueError("line-search tolerances must be positive")
        if self.karcher_beta <= 0:
            raise ValueError(f"karcher_beta must be positive, got {self.karcher_beta}")
        if self.prior_sigma <= 0:
            raise ValueError(f"prior_sigma must be positive, got {self.prior_sigma}")

    def set_prior(self, value: bool) -> "ShonanAveragingParameters":
        return replace(self, prior=bool(value))

    def set_karcher(self, value: bool) -> "ShonanAveragingParameters":
        return replace(self, karcher=bool(value))

    def set_noise_sigma(self, value: float) -> "ShonanAveragingParameters":
        return replace(self, noise_sigma=float(value))

    def with_lm(self, **changes) -> "ShonanAveragingParameters":
        """Copy with some LM settings replaced, e.g. with_lm(max_iterations=50)."""
        return replace(self, lm=replace(self.lm, **changes))

    def with_staircase(
        self, p_min: int, p_max: int, with_descent: Optional[bool] = None
    ) -> "ShonanAveragingParameters":
        if with_descent is None:
            with_descent = self.with_descent
        return replace(self, p_min=p_min, p_max=p_max, with_descent=with_descent)
