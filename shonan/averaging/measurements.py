"""Measurement store: validated relative-rotation measurements and key indexing.

The store fixes the block index of every key. All sparse matrices, Stiefel
matrices and lifted values use this order.
"""

from typing import Dict, Hashable, Iterator, List, Mapping, Optional, Sequence

import numpy as np
import scipy.sparse as sp
from scipy.sparse.csgraph import connected_components

from shonan.averaging.errors import InputError
from shonan.averaging.types import Measurement, Pose
from shonan.geometry import is_rotation


class MeasurementStore:
    """Immutable collection of relative-rotation measurements.

    Args:
        measurements: Relative rotations (i, j, R_ij, weight).
        poses: Optional key -> Pose initial estimates. When given, its key
            order defines the indices and measurements may only reference
            its keys.

    Raises:
        InputError: If the measurement set is empty, has self loops, unknown
            keys, mixed or unsupported dimensions, invalid rotations,
            non-positive weights, or a disconnected graph.

    Example:
        >>> from shonan.geometry import rot2
        >>> store = MeasurementStore([Measurement(0, 1, rot2(0.1))])
        >>> store.nr_poses(), store.d
        (2, 2)
    """

    def __init__(
        self,
        measurements: Sequence[Measurement],
        poses: Optional[Mapping[Hashable, Pose]] = None,
    ):
        measurements = list(measurements)
        if not measurements:
            raise InputError("At least one measurement is required")
        for k, m in enumerate(measurements):
            if not isinstance(m, Measurement):
                raise InputError(f"Measurement {k} has type {type(m)}")

        d = measurements[0].d
        if d not in (2, 3):
            raise InputError(f"Rotation dimension must be 2 or 3, got {d}")

        for k, m in enumerate(measurements):
            if m.d != d:
                raise InputError(
                    f"Measurement {k} has dimension {m.d}, expected {d} (mixed dimensions)"
                )
            if m.key_i == m.key_j:
                raise InputError(f"Measurement {k} is a self loop on key {m.key_i}")
            if not is_rotation(m.rotation):
                raise InputError(f"Measurement {k} ({m.key_i}, {m.key_j}) is not a rotation")
            if m.weight is not None and not (np.isfinite(m.weight) and m.weight > 0):
                raise InputError(f"Measurement {k} has non-positive weight {m.weight}")

        if poses is not None:
            keys = list(poses.keys())
            for key, pose in poses.items():
                if pose.d != d:
                    raise InputError(
                        f"Pose {key} has dimension {pose.d}, expected {d}"
                    )
            known = set(keys)
            for k, m in enumerate(measurements):
                for key in m.keys:
                    if key not in known:
                        raise InputError(f"Measurement {k} references unknown key {key}")
        else:
            keys = []
            seen = set()
            for m in measurements:
                for key in m.keys:
                    if key not in seen:
                        seen.add(key)
                        keys.append(key)

        self._d = d
        self._measurements = measurements
        self._keys = keys
        self._index = {key: i for i, key in enumerate(keys)}
        self._poses: Dict[Hashable, Pose] = dict(poses) if poses is not None else {}
        self._check_connected()

    def _check_connected(self) -> None:
        n = len(self._keys)
        rows = [self._index[m.key_i] for m in self._measurements]
        cols = [self._index[m.key_j] for m in self._measurements]
        adjacency = sp.coo_matrix((np.ones(len(rows)), (rows, cols)), shape=(n, n))
        n_components, _ = connected_components(adjacency, directed=False)
        if n_components != 1:
            raise InputError(
                f"Measurement graph has {n_components} connected components, expected 1"
            )

    @property
    def d(self) -> int:
        """Rotation dimension (2 or 3)."""
        return self._d

    @property
    def keys(self) -> List[Hashable]:
        """Keys in index order."""
        return list(self._keys)

    @property
    def poses(self) -> Dict[Hashable, Pose]:
        return dict(self._poses)

    @property
    def measurements(self) -> List[Measurement]:
        return list(self._measurements)

    def nr_poses(self) -> int:
        return len(self._keys)

    def index(self, key: Hashable) -> int:
        """Block index of a key."""
        try:
            return self._index[key]
        except KeyError:
            raise InputError(f"Unknown key {key}") from None

    def measured(self, k: int) -> np.ndarray:
        """Relative rotation of the k-th measurement."""
        return self._measurements[k].rotation

    def keys_of(self, k: int) -> List[Hashable]:
        """Keys of the k-th measurement."""
        return self._measurements[k].keys

    def kappa(self, k: int, use_noise_model: bool = True, noise_sigma: float = 0.0) -> float:
        """Precision κ of the k-th measurement.

        κ = 1 without noise model. With it, the measurement's own weight when
        known, else 1/noise_sigma² when noise_sigma > 0, else 1.
        """
        if not use_noise_model:
            return 1.0
        weight = self._measurements[k].weight
        if weight is not None:
            return weight
        if noise_sigma > 0:
            return 1.0 / noise_sigma**2
        return 1.0

    def __len__(self) -> int:
        return len(self._measurements)

    def __iter__(self) -> Iterator[Measurement]:
        return iter(self._measurements)

    def __getitem__(self, k: int) -> Measurement:
        return self._measurements[k]
