"""Rotation primitives for SO(n) of arbitrary dimension.

This module provides the manifold operations needed by rotation averaging
and the Riemannian Staircase, where the same code must handle SO(2), SO(3)
and lifted groups SO(p) with p up to ~20:
- Lie algebra basis, hat/vee maps for so(n)
- Compose, inverse, retract (Cayley) and local coordinates
- Haar-uniform sampling
- Projection of arbitrary square matrices onto SO(n)
- Quaternion and planar-angle conversions for SO(3)/SO(2) I/O

Conventions:
- Rotations are (n, n) numpy arrays with R^T R = I and det(R) = +1.
- Tangent vectors are expressed in the right-trivialized chart:
  retract(Q, xi) = Q @ cayley(hat(xi)).
- so(n) generators are indexed by pairs (a, b), a < b, in row-major order;
  generator k has +1 at (b, a) and -1 at (a, b).
- Quaternions: [qw, qx, qy, qz] where qw is the scalar part.
"""

from functools import lru_cache
from typing import Optional

import numpy as np
from numpy.typing import NDArray
from scipy.stats import special_ortho_group


def so_dimension(n: int) -> int:
    """Return the manifold dimension n(n-1)/2 of SO(n)."""
    if n < 1:
        raise ValueError(f"n must be >= 1, got {n}")
    return n * (n - 1) // 2


def pair_index(a: int, b: int, n: int) -> int:
    """Index of the so(n) generator coupling axes a < b.

    Args:
        a: First axis (0-based).
        b: Second axis, must satisfy a < b < n.
        n: Group dimension.

    Returns:
        Position of the generator in the row-major pair ordering.
    """
    if not 0 <= a < b < n:
        raise ValueError(f"Need 0 <= a < b < n, got a={a}, b={b}, n={n}")
    return a * n - a * (a + 1) // 2 + (b - a - 1)


@lru_cache(maxsize=32)
def _generators(n: int) -> NDArray[np.float64]:
    m = so_dimension(n)
    G = np.zeros((m, n, n), dtype=np.float64)
    k = 0
    for a in range(n):
        for b in range(a + 1, n):
            G[k, b, a] = 1.0
            G[k, a, b] = -1.0
            k += 1
    G.setflags(write=False)
    return G


def so_generators(n: int) -> NDArray[np.float64]:
    """Return the (m, n, n) stack of so(n) basis matrices, m = n(n-1)/2.

    The returned array is shared and read-only.
    """
    return _generators(n)


def hat(xi: NDArray[np.float64], n: int) -> NDArray[np.float64]:
    """Map tangent coordinates xi (m,) to a skew-symmetric (n, n) matrix."""
    xi = np.asarray(xi, dtype=np.float64)
    m = so_dimension(n)
    if xi.shape != (m,):
        raise ValueError(f"xi must have shape ({m},) for SO({n}), got {xi.shape}")
    return np.tensordot(xi, so_generators(n), axes=1)


def vee(Omega: NDArray[np.float64]) -> NDArray[np.float64]:
    """Inverse of hat: extract tangent coordinates from a skew matrix."""
    Omega = np.asarray(Omega, dtype=np.float64)
    if Omega.ndim != 2 or Omega.shape[0] != Omega.shape[1]:
        raise ValueError(f"Omega must be square, got shape {Omega.shape}")
    n = Omega.shape[0]
    rows, cols = np.triu_indices(n, k=1)
    # generator k has +1 at (b, a): read the lower triangle
    return 0.5 * (Omega[cols, rows] - Omega[rows, cols])


def cayley(Omega: NDArray[np.float64]) -> NDArray[np.float64]:
    """Cayley transform (I - Ω/2)^-1 (I + Ω/2), exact rotation for skew Ω."""
    n = Omega.shape[0]
    identity = np.eye(n)
    return np.linalg.solve(identity - 0.5 * Omega, identity + 0.5 * Omega)


def compose(Q1: NDArray[np.float64], Q2: NDArray[np.float64]) -> NDArray[np.float64]:
    """Group composition Q1 · Q2."""
    return Q1 @ Q2


def inverse(Q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Group inverse (transpose) of a rotation."""
    return Q.T.copy()


def retract(Q: NDArray[np.float64], xi: NDArray[np.float64]) -> NDArray[np.float64]:
    """Move Q along the tangent vector xi using the Cayley retraction.

    Args:
        Q: Rotation matrix (n, n).
        xi: Tangent coordinates (n(n-1)/2,).

    Returns:
        Q @ cayley(hat(xi)), again an element of SO(n).

    Example:
        >>> Q = np.eye(3)
        >>> Q1 = retract(Q, np.array([0.0, 0.0, 0.1]))
        >>> np.allclose(Q1.T @ Q1, np.eye(3))
        True
    """
    n = Q.shape[0]
    return Q @ cayley(hat(xi, n))


def local_coordinates(
    Q1: NDArray[np.float64], Q2: NDArray[np.float64]
) -> NDArray[np.float64]:
    """Tangent coordinates xi at Q1 such that retract(Q1, xi) == Q2.

    Inverse Cayley: Ω = 2 (R - I)(R + I)^-1 with R = Q1^T Q2. Undefined when
    R has an eigenvalue of -1 (relative rotation by π).
    """
    n = Q1.shape[0]
    R = Q1.T @ Q2
    identity = np.eye(n)
    Omega = 2.0 * np.linalg.solve((R + identity).T, (R - identity).T).T
    return vee(Omega)


def random_rotation(
    n: int, rng: Optional[np.random.Generator] = None
) -> NDArray[np.float64]:
    """Draw a Haar-uniform element of SO(n).

    Args:
        n: Dimension (>= 1).
        rng: Random source. A fresh default generator is used if None,
            so pass one explicitly for reproducible runs.

    Returns:
        Rotation matrix (n, n).
    """
    if n < 1:
        raise ValueError(f"n must be >= 1, got {n}")
    if n == 1:
        return np.eye(1)
    if rng is None:
        rng = np.random.default_rng()
    if n == 2:
        return rot2(rng.uniform(-np.pi, np.pi))
    return np.asarray(special_ortho_group.rvs(dim=n, random_state=rng), dtype=np.float64)


def closest_rotation(M: NDArray[np.float64]) -> NDArray[np.float64]:
    """Project a square matrix onto SO(n) in the Frobenius sense.

    Uses the SVD M = U Σ V^T and returns U diag(1, ..., 1, det(U V^T)) V^T,
    the nearest orthogonal matrix with determinant +1.
    """
    M = np.asarray(M, dtype=np.float64)
    if M.ndim != 2 or M.shape[0] != M.shape[1]:
        raise ValueError(f"M must be square, got shape {M.shape}")
    U, _, Vt = np.linalg.svd(M)
    correction = np.ones(M.shape[0])
    correction[-1] = np.sign(np.linalg.det(U @ Vt))
    if correction[-1] == 0.0:
        correction[-1] = 1.0
    return (U * correction) @ Vt


def lift_rotation(Q: NDArray[np.float64], n: int) -> NDArray[np.float64]:
    """Embed Q ∈ SO(k) into SO(n), n >= k, as diag(Q, I_{n-k})."""
    k = Q.shape[0]
    if n < k:
        raise ValueError(f"Cannot lift SO({k}) into SO({n})")
    lifted = np.eye(n)
    lifted[:k, :k] = Q
    return lifted


def is_rotation(R: NDArray[np.float64], tol: float = 1e-6) -> bool:
    """Check orthonormality and unit determinant within tol."""
    R = np.asarray(R, dtype=np.float64)
    if R.ndim != 2 or R.shape[0] != R.shape[1]:
        return False
    if not np.all(np.isfinite(R)):
        return False
    n = R.shape[0]
    return bool(
        np.allclose(R.T @ R, np.eye(n), atol=tol) and abs(np.linalg.det(R) - 1.0) < tol
    )


def chordal_distance(R1: NDArray[np.float64], R2: NDArray[np.float64]) -> float:
    """Frobenius distance ‖R1 - R2‖_F between two rotations."""
    return float(np.linalg.norm(R1 - R2, "fro"))


def wrap_angle(theta: float) -> float:
    """Normalize angle to the range [-π, π]."""
    return float(np.arctan2(np.sin(theta), np.cos(theta)))


def rot2(theta: float) -> NDArray[np.float64]:
    """Planar rotation matrix for angle theta (radians)."""
    c, s = np.cos(theta), np.sin(theta)
    return np.array([[c, -s], [s, c]], dtype=np.float64)


def rot2_angle(R: NDArray[np.float64]) -> float:
    """Angle in [-π, π] of a 2x2 rotation matrix."""
    if R.shape != (2, 2):
        raise ValueError(f"Expected 2x2 matrix, got shape {R.shape}")
    return wrap_angle(np.arctan2(R[1, 0], R[0, 0]))


def axis_angle_to_rotation_matrix(axis: NDArray[np.float64], angle: float) -> NDArray[np.float64]:
    """Rodrigues formula for a rotation of `angle` about `axis` (3,)."""
    axis = np.asarray(axis, dtype=np.float64)
    if axis.shape != (3,):
        raise ValueError(f"axis must have shape (3,), got {axis.shape}")
    norm = np.linalg.norm(axis)
    if norm < 1e-12:
        raise ValueError("axis must be non-zero")
    k = axis / norm
    K = np.array([[0.0, -k[2], k[1]], [k[2], 0.0, -k[0]], [-k[1], k[0], 0.0]])
    return np.eye(3) + np.sin(angle) * K + (1.0 - np.cos(angle)) * (K @ K)


def quat_to_rotation_matrix(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert quaternion to rotation matrix.

    Args:
        q: Quaternion as numpy array [qw, qx, qy, qz]. Normalized here,
            since file formats rarely store exactly unit quaternions.

    Returns:
        3x3 rotation matrix.

    Raises:
        ValueError: If q is not a non-zero 4-element array.
    """
    q = np.asarray(q, dtype=np.float64)
    if q.shape != (4,):
        raise ValueError(f"Expected 4-element quaternion, got shape {q.shape}")
    norm = np.linalg.norm(q)
    if norm < 1e-12:
        raise ValueError("Quaternion must be non-zero")

    qw, qx, qy, qz = q / norm

    R = np.array(
        [
            [
                1.0 - 2.0 * (qy * qy + qz * qz),
                2.0 * (qx * qy - qw * qz),
                2.0 * (qx * qz + qw * qy),
            ],
            [
                2.0 * (qx * qy + qw * qz),
                1.0 - 2.0 * (qx * qx + qz * qz),
                2.0 * (qy * qz - qw * qx),
            ],
            [
                2.0 * (qx * qz - qw * qy),
                2.0 * (qy * qz + qw * qx),
                1.0 - 2.0 * (qx * qx + qy * qy),
            ],
        ],
        dtype=np.float64,
    )

    return R


def rotation_matrix_to_quat(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert rotation matrix to quaternion [qw, qx, qy, qz] (Shepperd)."""
    if R.shape != (3, 3):
        raise ValueError(f"Expected 3x3 matrix, got shape {R.shape}")

    # Shepperd's method: choose largest diagonal element for stability
    trace = np.trace(R)

    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        qw = 0.25 / s
        qx = (R[2, 1] - R[1, 2]) * s
        qy = (R[0, 2] - R[2, 0]) * s
        qz = (R[1, 0] - R[0, 1]) * s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        qw = (R[2, 1] - R[1, 2]) / s
        qx = 0.25 * s
        qy = (R[0, 1] + R[1, 0]) / s
        qz = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        qw = (R[0, 2] - R[2, 0]) / s
        qx = (R[0, 1] + R[1, 0]) / s
        qy = 0.25 * s
        qz = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        qw = (R[1, 0] - R[0, 1]) / s
        qx = (R[0, 2] + R[2, 0]) / s
        qy = (R[1, 2] + R[2, 1]) / s
        qz = 0.25 * s

    q = np.array([qw, qx, qy, qz], dtype=np.float64)
    q = q / np.linalg.norm(q)
    # scalar part non-negative so q and -q map to one representative
    if q[0] < 0:
        q = -q

    return q
