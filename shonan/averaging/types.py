"""Data types for certifiable rotation averaging.

This module defines the records shared across the averaging pipeline:
poses and relative-rotation measurements (inputs), lifted SO(p) values
(per staircase level), and the level history and final result (outputs).

Conventions:
    - Keys are hashable identifiers, ints in practice.
    - A measurement (i, j, R_ij) states R_j ≈ R_i R_ij.
    - The block of key k in every (dN)x(dN) matrix starts at row d·index(k),
      index being the insertion order of the key.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Hashable, Iterator, List, Optional, Sequence

import numpy as np

from shonan.geometry import is_rotation


Key = Hashable


def _frozen_array(value, name: str) -> np.ndarray:
    array = np.array(value, dtype=np.float64)
    if not np.all(np.isfinite(array)):
        raise ValueError(f"{name} must be finite")
    array.setflags(write=False)
    return array


@dataclass(frozen=True)
class Pose:
    """Rigid pose estimate. Only the rotation is used by rotation averaging.

    Attributes:
        rotation: (d, d) rotation matrix, d = 2 or 3.
        translation: (d,) translation. Zeros when not given.

    Example:
        >>> pose = Pose(np.eye(3))
        >>> pose.translation
        array([0., 0., 0.])
    """

    rotation: np.ndarray
    translation: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        """Validate the pose structure."""
        rotation = _frozen_array(self.rotation, "rotation")
        if rotation.ndim != 2 or rotation.shape[0] != rotation.shape[1]:
            raise ValueError(f"rotation must be square, got shape {rotation.shape}")
        d = rotation.shape[0]
        if d not in (2, 3):
            raise ValueError(f"rotation must be 2x2 or 3x3, got shape {rotation.shape}")
        if not is_rotation(rotation):
            raise ValueError("rotation must be orthonormal with determinant +1")
        if self.translation is None:
            translation = np.zeros(d)
            translation.setflags(write=False)
        else:
            translation = _frozen_array(self.translation, "translation")
            if translation.shape != (d,):
                raise ValueError(
                    f"translation must have shape ({d},), got {translation.shape}"
                )
        object.__setattr__(self, "rotation", rotation)
        object.__setattr__(self, "translation", translation)

    @property
    def d(self) -> int:
        return self.rotation.shape[0]


@dataclass(frozen=True)
class Measurement:
    """Relative rotation between two keys: R_j ≈ R_i R_ij.

    Rotation validity, dimension and weight positivity are checked by the
    MeasurementStore, which reports them as InputError.

    Attributes:
        key_i: First key.
        key_j: Second key.
        rotation: Measured relative rotation R_ij, (d, d).
        weight: Precision κ of the measurement, None when unknown.
    """

    key_i: Key
    key_j: Key
    rotation: np.ndarray
    weight: Optional[float] = None

    def __post_init__(self) -> None:
        rotation = _frozen_array(self.rotation, "rotation")
        if rotation.ndim != 2 or rotation.shape[0] != rotation.shape[1]:
            raise ValueError(f"rotation must be square, got shape {rotation.shape}")
        object.__setattr__(self, "rotation", rotation)
        if self.weight is not None:
            object.__setattr__(self, "weight", float(self.weight))

    @property
    def d(self) -> int:
        return self.rotation.shape[0]

    @property
    def keys(self) -> List[Key]:
        return [self.key_i, self.key_j]


class LiftedValues(Mapping):
    """Read-only mapping Key -> SO(p) matrix, all sharing one dimension p.

    Args:
        p: Rotation dimension of every value.
        values: Mapping from key to (p, p) rotation matrix.
    """

    def __init__(self, p: int, values: Mapping):
        if p < 1:
            raise ValueError(f"p must be >= 1, got {p}")
        self.p = int(p)
        self._values: Dict[Key, np.ndarray] = {}
        for key, Q in values.items():
            Q = np.array(Q, dtype=np.float64)
            if Q.shape != (p, p):
                raise ValueError(
                    f"Value for key {key} has shape {Q.shape}, expected ({p}, {p})"
                )
            Q.setflags(write=False)
            self._values[key] = Q

    def __getitem__(self, key: Key) -> np.ndarray:
        return self._values[key]

    def __iter__(self) -> Iterator[Key]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"LiftedValues(p={self.p}, n={len(self)})"

    def stiefel_matrix(self, keys: Sequence[Key], d: int) -> np.ndarray:
        """Stack the first d columns of each value into a p x dN matrix."""
        if d > self.p:
            raise ValueError(f"d={d} exceeds p={self.p}")
        S = np.empty((self.p, d * len(keys)))
        for index, key in enumerate(keys):
            S[:, d * index : d * index + d] = self._values[key][:, :d]
        return S


class StaircaseState(Enum):
    """States of the Riemannian Staircase."""

    AT_LEVEL = "at_level"
    CERTIFIED = "certified"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class StaircaseLevel:
    """Outcome of one staircase level.

    Attributes:
        p: Rotation dimension of the level.
        cost: Lifted cost at the level optimum (nan if the level was abandoned).
        min_eigenvalue: Minimum certificate eigenvalue (nan if abandoned).
        certified: Whether the level optimum passed the optimality check.
        retries: Number of divergence retries spent on the level.
        abandoned: True when every optimization attempt diverged.
    """

    p: int
    cost: float
    min_eigenvalue: float
    certified: bool
    retries: int = 0
    abandoned: bool = False


@dataclass
class ShonanResult:
    """Final rotation estimate and its certificate diagnostics.

    Attributes:
        rotations: Key -> (d, d) rotation matrix.
        min_eigenvalue: Minimum certificate eigenvalue at the final level.
        p: Final staircase level.
        state: CERTIFIED or EXHAUSTED.
        cost: SO(d) cost of the rotations.
        history: One StaircaseLevel per level visited.
        lifted: Lifted values at the final level.
    """

    rotations: Dict[Key, np.ndarray]
    min_eigenvalue: float
    p: int
    state: StaircaseState
    cost: float
    history: List[StaircaseLevel] = field(default_factory=list)
    lifted: Optional[LiftedValues] = None

    @property
    def certified(self) -> bool:
        return self.state is StaircaseState.CERTIFIED

    def summary(self) -> Dict[str, object]:
        """JSON-friendly digest used by the demo scripts."""
        return {
            "state": self.state.value,
            "certified": self.certified,
            "p": self.p,
            "min_eigenvalue": float(self.min_eigenvalue),
            "cost": float(self.cost),
            "levels": [level.p for level in self.history],
        }
