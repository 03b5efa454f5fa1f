"""
Shonan rotation averaging with the Riemannian Staircase.

ShonanAveraging owns the measurement store and the sparse matrices D, Q
and L (built once), and exposes every building block of the method as a
method. run() climbs the staircase:

    AT_LEVEL(p_min) --optimize, certify--> CERTIFIED
                    --not certified, p < p_max--> AT_LEVEL(p+1)
                    --not certified, p = p_max--> EXHAUSTED

Divergence of the solver at a level triggers bounded random restarts with
increasing initial damping; a level where every attempt diverges is
abandoned and the staircase moves up with a random start. EXHAUSTED is a
soft failure: the caller still receives rounded rotations and the negative
eigenvalue, and a RuntimeWarning is emitted.

References:
    Dellaert, Rosen, Wu, Mahony, Carlone. "Shonan Rotation Averaging:
    Global Optimality by Surfing SO(p)^n", ECCV 2020.
"""

import warnings
from typing import Dict, Hashable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import scipy.sparse as sp

from shonan.averaging import certifier, lifted_graph, lifting
from shonan.averaging.errors import SolverDivergence
from shonan.averaging.measurements import MeasurementStore
from shonan.averaging.optimizer import try_optimizing_at
from shonan.averaging.params import LevenbergMarquardtParams, ShonanAveragingParameters
from shonan.averaging.sparse_matrices import build_D, build_L, build_Q
from shonan.averaging.types import (
    LiftedValues,
    Measurement,
    Pose,
    ShonanResult,
    StaircaseLevel,
    StaircaseState,
)
from shonan.estimators import FactorGraph
from shonan.geometry import closest_rotation, lift_rotation


Rotations = Dict[Hashable, np.ndarray]


class ShonanAveraging:
    """
    Certifiable rotation averaging for SO(2) or SO(3).

    Args:
        measurements: Relative rotation measurements R_j ≈ R_i R_ij.
        poses: Optional initial poses; their key order defines indexing.
        parameters: Averaging parameters (defaults if None).

    Raises:
        InputError: If the measurements are invalid or disconnected.

    Example:
        >>> from shonan.datasets import make_cycle_measurements
        >>> measurements, _ = make_cycle_measurements(5, d=3, rng=np.random.default_rng(0))
        >>> shonan = ShonanAveraging(measurements)
        >>> result, min_eigenvalue = shonan.run(p_min=3, p_max=6)
        >>> result.certified
        True
    """

    def __init__(
        self,
        measurements: Sequence[Measurement],
        poses: Optional[Mapping[Hashable, Pose]] = None,
        parameters: Optional[ShonanAveragingParameters] = None,
    ):
        if parameters is None:
            parameters = ShonanAveragingParameters()
        self._parameters = parameters
        self._store = MeasurementStore(measurements, poses)
        sigma = parameters.noise_sigma
        self._D = build_D(self._store, use_noise_model=True, noise_sigma=sigma)
        self._Q = build_Q(self._store, use_noise_model=True, noise_sigma=sigma)
        self._L = build_L(self._D, self._Q)

    @classmethod
    def from_g2o(
        cls,
        path: str,
        parameters: Optional[ShonanAveragingParameters] = None,
        is_3d: Optional[bool] = None,
    ) -> "ShonanAveraging":
        """Construct from a G2O pose-graph file (rotations only are used)."""
        from shonan.datasets.g2o import read_g2o

        measurements, poses = read_g2o(path, is_3d=is_3d)
        return cls(measurements, poses or None, parameters)

    # ------------------------------------------------------------------
    # Accessors

    @property
    def parameters(self) -> ShonanAveragingParameters:
        return self._parameters

    @property
    def store(self) -> MeasurementStore:
        return self._store

    @property
    def d(self) -> int:
        return self._store.d

    def nr_poses(self) -> int:
        """Number of keys."""
        return self._store.nr_poses()

    def nr_measurements(self) -> int:
        return len(self._store)

    def measured(self, k: int) -> np.ndarray:
        """Relative rotation of the k-th measurement."""
        return self._store.measured(k)

    def keys(self, k: int) -> List[Hashable]:
        """Keys of the k-th measurement."""
        return self._store.keys_of(k)

    def poses(self) -> Dict[Hashable, Pose]:
        """Initial poses, empty when none were given."""
        return self._store.poses

    def D(self) -> sp.csr_matrix:
        """Sparse degree matrix."""
        return self._D

    def dense_D(self) -> np.ndarray:
        return self._D.toarray()

    def Q(self) -> sp.csr_matrix:
        """Sparse measurement matrix."""
        return self._Q

    def dense_Q(self) -> np.ndarray:
        return self._Q.toarray()

    def L(self) -> sp.csr_matrix:
        """Sparse connection Laplacian."""
        return self._L

    def dense_L(self) -> np.ndarray:
        return self._L.toarray()

    def _noise_kwargs(self) -> dict:
        return {"use_noise_model": True, "noise_sigma": self._parameters.noise_sigma}

    # ------------------------------------------------------------------
    # Lifted problem

    def build_graph_at(self, p: int) -> FactorGraph:
        """Factor graph of the SO(p) problem, without values."""
        return lifted_graph.build_graph_at(self._store, p, **self._noise_kwargs())

    def initialize_randomly_at(
        self, p: int, rng: Optional[np.random.Generator] = None
    ) -> LiftedValues:
        return lifted_graph.initialize_randomly_at(self._store, p, rng)

    def initial_values_at(self, p: int) -> LiftedValues:
        """Initial poses' rotations embedded in SO(p) as diag(R_i, I)."""
        poses = self._store.poses
        if not poses:
            raise ValueError("No initial poses available")
        return LiftedValues(
            p, {key: lift_rotation(poses[key].rotation, p) for key in self._store.keys}
        )

    def cost_at(self, p: int, values: LiftedValues) -> float:
        """Lifted cost at SO(p), priors excluded."""
        return lifted_graph.cost_at(self._store, p, values, **self._noise_kwargs())

    def stiefel_element_matrix(self, values: LiftedValues) -> np.ndarray:
        return lifted_graph.stiefel_element_matrix(self._store, values)

    # ------------------------------------------------------------------
    # Certificate

    def compute_lambda(self, values: Union[LiftedValues, np.ndarray]) -> sp.csr_matrix:
        return certifier.compute_lambda(self._store, values, **self._noise_kwargs())

    def compute_lambda_dense(self, values: Union[LiftedValues, np.ndarray]) -> np.ndarray:
        return self.compute_lambda(values).toarray()

    def compute_A(self, values: Union[LiftedValues, np.ndarray]) -> sp.csr_matrix:
        """Certificate matrix A = Λ - Q."""
        return certifier.compute_A(self._store, values, self._Q, **self._noise_kwargs())

    def compute_A_dense(self, values: Union[LiftedValues, np.ndarray]) -> np.ndarray:
        return self.compute_A(values).toarray()

    def compute_min_eigenvalue(
        self, values: Union[LiftedValues, np.ndarray]
    ) -> Tuple[float, np.ndarray]:
        """Minimum eigenvalue of A and its unit eigenvector."""
        return certifier.min_eigenpair(self.compute_A(values))

    def check_optimality(self, values: Union[LiftedValues, np.ndarray]) -> bool:
        min_eigenvalue, _ = self.compute_min_eigenvalue(values)
        return certifier.is_certified(min_eigenvalue, self._parameters.optimality_threshold)

    # ------------------------------------------------------------------
    # Optimization and rounding

    def try_optimizing_at(
        self,
        p: int,
        initial: Optional[LiftedValues] = None,
        rng: Optional[np.random.Generator] = None,
        lm: Optional[LevenbergMarquardtParams] = None,
    ) -> LiftedValues:
        """Locally optimal SO(p) values; raises SolverDivergence on failure."""
        return try_optimizing_at(self._store, p, self._parameters, initial, rng, lm)

    def project_from(self, p: int, values: LiftedValues) -> Rotations:
        """Closest SO(d) element to the top-left d x d block of each value."""
        if values.p != p:
            raise ValueError(f"values live in SO({values.p}), expected SO({p})")
        d = self.d
        return {key: closest_rotation(Q[:d, :d]) for key, Q in values.items()}

    def round_solution(self, values: Union[LiftedValues, np.ndarray]) -> Rotations:
        """
        Round a lifted solution to SO(d)^N.

        Takes the rank-d approximation Σ_d V_dᵀ of S from its thin SVD,
        reflects it when fewer than half of the blocks have positive
        determinant, and projects every d x d block onto SO(d).
        """
        S = (
            self.stiefel_element_matrix(values)
            if isinstance(values, LiftedValues)
            else np.asarray(values, dtype=np.float64)
        )
        d = self.d
        keys = self._store.keys
        if S.ndim != 2 or S.shape[0] < d or S.shape[1] != d * len(keys):
            raise ValueError(f"S must have shape (p >= {d}, {d * len(keys)}), got {S.shape}")

        _, singular_values, Vt = np.linalg.svd(S, full_matrices=False)
        R = singular_values[:d, np.newaxis] * Vt[:d]

        determinants = [np.linalg.det(R[:, d * i : d * i + d]) for i in range(len(keys))]
        n_positive = sum(1 for det in determinants if det > 0)
        if n_positive < len(keys) / 2.0:
            reflector = np.ones(d)
            reflector[-1] = -1.0
            R = reflector[:, np.newaxis] * R

        return {key: closest_rotation(R[:, d * i : d * i + d]) for i, key in enumerate(keys)}

    def cost(self, rotations: Mapping[Hashable, np.ndarray]) -> float:
        """Chordal cost of SO(d) rotations."""
        return self.cost_at(self.d, LiftedValues(self.d, rotations))

    # ------------------------------------------------------------------
    # Lifting

    def make_a_tangent_vector(self, p: int, v: np.ndarray, i: int) -> np.ndarray:
        return lifting.make_a_tangent_vector(p, v, i, self.d)

    def riemannian_gradient(self, p: int, values: LiftedValues) -> np.ndarray:
        return lifting.riemannian_gradient(self._store, p, values, self._L)

    def dimension_lifting(
        self, p: int, values: LiftedValues, min_eigen_vector: np.ndarray
    ) -> LiftedValues:
        """SO(p) values lifted to SO(p+1) along the eigenvector."""
        return lifting.dimension_lifting(self._store, p, values, min_eigen_vector)

    def initialize_with_descent(
        self,
        p: int,
        values: LiftedValues,
        min_eigen_vector: np.ndarray,
        min_eigenvalue: float,
        gradient_tolerance: Optional[float] = None,
        preconditioned_grad_norm_tolerance: Optional[float] = None,
    ) -> LiftedValues:
        """SO(p+1) starting point from a line search along the eigenvector."""
        if gradient_tolerance is None:
            gradient_tolerance = self._parameters.gradient_tolerance
        if preconditioned_grad_norm_tolerance is None:
            preconditioned_grad_norm_tolerance = (
                self._parameters.preconditioned_grad_norm_tolerance
            )
        return lifting.initialize_with_descent(
            self._store,
            p,
            values,
            min_eigen_vector,
            min_eigenvalue,
            gradient_tolerance,
            preconditioned_grad_norm_tolerance,
            D=self._D,
            L=self._L,
            **self._noise_kwargs(),
        )

    # ------------------------------------------------------------------
    # Staircase

    def _lift_without_ascent(
        self, p: int, values: LiftedValues, min_eigen_vector: np.ndarray, level_cost: float
    ) -> LiftedValues:
        """Plain lifting, halving the step while it would raise the cost."""
        step = 1.0
        lifted = self.dimension_lifting(p, values, min_eigen_vector)
        while self.cost_at(p + 1, lifted) > level_cost and step > lifting.ALPHA_MIN:
            step /= 2.0
            lifted = self.dimension_lifting(p, values, step * min_eigen_vector)
        if self.cost_at(p + 1, lifted) > level_cost:
            return self.dimension_lifting(p, values, np.zeros_like(min_eigen_vector))
        return lifted

    def _optimize_level(
        self,
        p: int,
        initial: Optional[LiftedValues],
        rng: np.random.Generator,
    ) -> Tuple[Optional[LiftedValues], int, Optional[SolverDivergence]]:
        """Optimize at level p with bounded random restarts on divergence."""
        params = self._parameters
        lm = params.lm
        divergence = None
        for attempt in range(params.max_divergence_retries + 1):
            try:
                return self.try_optimizing_at(p, initial, rng, lm), attempt, None
            except SolverDivergence as e:
                divergence = e
                if attempt < params.max_divergence_retries:
                    warnings.warn(
                        f"Solver diverged at p={p} ({e}); retrying from a random start",
                        RuntimeWarning,
                    )
                initial = None
                lm = lm.with_initial_mu(lm.initial_mu * params.divergence_retry_mu_factor)
        return None, params.max_divergence_retries, divergence

    def _result(
        self,
        values: LiftedValues,
        min_eigenvalue: float,
        state: StaircaseState,
        history: List[StaircaseLevel],
    ) -> ShonanResult:
        rotations = self.round_solution(values)
        return ShonanResult(
            rotations=rotations,
            min_eigenvalue=min_eigenvalue,
            p=values.p,
            state=state,
            cost=self.cost(rotations),
            history=history,
            lifted=values,
        )

    def run(
        self,
        p_min: Optional[int] = None,
        p_max: Optional[int] = None,
        with_descent: Optional[bool] = None,
        initial: Optional[LiftedValues] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> Tuple[ShonanResult, float]:
        """
        Optimize at increasing p until certified or p_max is reached.

        Args:
            p_min: First level (parameters.p_min if None).
            p_max: Last level (parameters.p_max if None).
            with_descent: Seed new levels by descent line search, else by
                plain lifting (parameters.with_descent if None).
            initial: Starting values at SO(p_min), random if None.
            rng: Random source (seeded from parameters.seed if None).

        Returns:
            Tuple of (result, minimum eigenvalue at the final level).

        Raises:
            ValueError: If not d <= p_min <= p_max.
            SolverDivergence: If every level diverged.
            EigensolverFailure: If a certificate cannot be computed.
        """
        params = self._parameters
        p_min = params.p_min if p_min is None else p_min
        p_max = params.p_max if p_max is None else p_max
        with_descent = params.with_descent if with_descent is None else with_descent
        d = self.d
        if not d <= p_min <= p_max:
            raise ValueError(f"Need d <= p_min <= p_max, got d={d}, p_min={p_min}, p_max={p_max}")
        if initial is not None and initial.p != p_min:
            raise ValueError(f"initial values live in SO({initial.p}), expected SO({p_min})")
        if rng is None:
            rng = np.random.default_rng(params.seed)

        history: List[StaircaseLevel] = []
        best = None
        divergence = None
        next_initial = initial

        for p in range(p_min, p_max + 1):
            values, retries, divergence = self._optimize_level(p, next_initial, rng)
            if values is None:
                history.append(
                    StaircaseLevel(p, np.nan, np.nan, False, retries, abandoned=True)
                )
                warnings.warn(
                    f"Abandoning level p={p} after {retries + 1} diverged attempts",
                    RuntimeWarning,
                )
                next_initial = None
                continue

            level_cost = self.cost_at(p, values)
            min_eigenvalue, min_eigen_vector = self.compute_min_eigenvalue(values)
            certified = certifier.is_certified(min_eigenvalue, params.optimality_threshold)
            history.append(StaircaseLevel(p, level_cost, min_eigenvalue, certified, retries))
            if best is None or level_cost < best[2]:
                best = (values, min_eigenvalue, level_cost)
            if params.verbose:
                print(
                    f"  p={p:2d}: cost={level_cost:.6e} min_eigenvalue={min_eigenvalue:.6e} "
                    f"certified={certified}"
                )

            if certified:
                return (
                    self._result(values, min_eigenvalue, StaircaseState.CERTIFIED, history),
                    min_eigenvalue,
                )

            if p < p_max:
                next_initial = None
                if with_descent:
                    next_initial = self.initialize_with_descent(
                        p, values, min_eigen_vector, min_eigenvalue
                    )
                if next_initial is None or self.cost_at(p + 1, next_initial) > level_cost:
                    next_initial = self._lift_without_ascent(
                        p, values, min_eigen_vector, level_cost
                    )

        if best is None:
            raise divergence

        values, min_eigenvalue, _ = best
        warnings.warn(
            f"Staircase exhausted at p_max={p_max} without certificate "
            f"(min eigenvalue {min_eigenvalue:.6e})",
            RuntimeWarning,
        )
        return (
            self._result(values, min_eigenvalue, StaircaseState.EXHAUSTED, history),
            min_eigenvalue,
        )

    def run_with_random(
        self, p_min: int = 5, p_max: int = 20, rng: Optional[np.random.Generator] = None
    ) -> Tuple[ShonanResult, float]:
        """Staircase seeding each level by plain lifting."""
        return self.run(p_min, p_max, with_descent=False, rng=rng)

    def run_with_descent(
        self, p_min: int = 5, p_max: int = 20, rng: Optional[np.random.Generator] = None
    ) -> Tuple[ShonanResult, float]:
        """Staircase seeding each level by descent line search."""
        return self.run(p_min, p_max, with_descent=True, rng=rng)
