"""Pinhole calibration types: monocular Cal3_S2 and stereo Cal3_S2Stereo.

Cal3_S2 is the common 5-DOF calibration (fx, fy, skew, u0, v0). The stereo
calibration adds a baseline. It *owns* a Cal3_S2 value rather than deriving
from it, and exposes the monocular fields through explicit accessors.

Both types behave as vector-space manifold elements (retract and local
coordinates are plain additions), so they can be optimized by the factor
graph in shonan.estimators like any other variable.
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class Cal3_S2:
    """
    Monocular pinhole calibration with skew.

    Attributes:
        fx: Focal length in x (pixels).
        fy: Focal length in y (pixels).
        s: Skew.
        u0: Principal point x-coordinate (pixels).
        v0: Principal point y-coordinate (pixels).

    Examples:
        >>> K = Cal3_S2(fx=500.0, fy=500.0, s=0.0, u0=320.0, v0=240.0)
        >>> K.K().shape
        (3, 3)
    """

    fx: float = 1.0
    fy: float = 1.0
    s: float = 0.0
    u0: float = 0.0
    v0: float = 0.0

    dimension = 5

    def __post_init__(self) -> None:
        """Validate calibration values."""
        for name in ("fx", "fy", "s", "u0", "v0"):
            if not np.isfinite(getattr(self, name)):
                raise ValueError(f"{name} must be finite, got {getattr(self, name)}")

    @classmethod
    def from_fov(cls, fov: float, w: int, h: int) -> "Cal3_S2":
        """Build from a horizontal field of view in degrees, zero skew."""
        if not 0.0 < fov < 180.0:
            raise ValueError(f"fov must be in (0, 180) degrees, got {fov}")
        if w <= 0 or h <= 0:
            raise ValueError(f"image size must be positive, got {w}x{h}")
        u0 = w / 2.0
        v0 = h / 2.0
        f = u0 / np.tan(np.deg2rad(fov) / 2.0)
        return cls(fx=f, fy=f, s=0.0, u0=u0, v0=v0)

    @classmethod
    def from_vector(cls, v: np.ndarray) -> "Cal3_S2":
        v = np.asarray(v, dtype=np.float64)
        if v.shape != (5,):
            raise ValueError(f"Vector must have shape (5,), got {v.shape}")
        return cls(*(float(x) for x in v))

    def K(self) -> np.ndarray:
        """Return the 3x3 calibration matrix."""
        return np.array(
            [[self.fx, self.s, self.u0], [0.0, self.fy, self.v0], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    def vector(self) -> np.ndarray:
        """Return [fx, fy, s, u0, v0]."""
        return np.array([self.fx, self.fy, self.s, self.u0, self.v0], dtype=np.float64)

    def dim(self) -> int:
        return self.dimension

    def retract(self, d: np.ndarray) -> "Cal3_S2":
        """Given a 5-dim tangent vector, create a new calibration."""
        d = np.asarray(d, dtype=np.float64)
        if d.shape != (5,):
            raise ValueError(f"d must have shape (5,), got {d.shape}")
        return Cal3_S2.from_vector(self.vector() + d)

    def local_coordinates(self, other: "Cal3_S2") -> np.ndarray:
        return other.vector() - self.vector()

    def equals(self, other: "Cal3_S2", tol: float = 1e-9) -> bool:
        return bool(np.allclose(self.vector(), other.vector(), atol=tol, rtol=0.0))


@dataclass(frozen=True)
class Cal3_S2Stereo:
    """
    Stereo calibration: a monocular calibration shared by both cameras plus
    the stereo baseline.

    Attributes:
        calibration_: The shared monocular calibration.
        b: Baseline (distance between the two camera centers).

    Examples:
        >>> K = Cal3_S2Stereo.from_parameters(500, 500, 0, 320, 240, b=0.12)
        >>> K.baseline
        0.12
        >>> K.fx
        500.0
    """

    calibration_: Cal3_S2 = Cal3_S2()
    b: float = 1.0

    dimension = 6

    def __post_init__(self) -> None:
        if not isinstance(self.calibration_, Cal3_S2):
            raise TypeError(
                f"calibration must be a Cal3_S2, got {type(self.calibration_)}"
            )
        if not np.isfinite(self.b):
            raise ValueError(f"baseline must be finite, got {self.b}")

    @classmethod
    def from_parameters(
        cls, fx: float, fy: float, s: float, u0: float, v0: float, b: float
    ) -> "Cal3_S2Stereo":
        return cls(Cal3_S2(float(fx), float(fy), float(s), float(u0), float(v0)), float(b))

    @classmethod
    def from_vector(cls, v: np.ndarray) -> "Cal3_S2Stereo":
        v = np.asarray(v, dtype=np.float64)
        if v.shape != (6,):
            raise ValueError(f"Vector must have shape (6,), got {v.shape}")
        return cls(Cal3_S2.from_vector(v[:5]), float(v[5]))

    @classmethod
    def from_fov(cls, fov: float, w: int, h: int, b: float) -> "Cal3_S2Stereo":
        return cls(Cal3_S2.from_fov(fov, w, h), float(b))

    # Monocular fields, forwarded to the owned calibration
    @property
    def fx(self) -> float:
        return self.calibration_.fx

    @property
    def fy(self) -> float:
        return self.calibration_.fy

    @property
    def skew(self) -> float:
        return self.calibration_.s

    @property
    def px(self) -> float:
        return self.calibration_.u0

    @property
    def py(self) -> float:
        return self.calibration_.v0

    @property
    def baseline(self) -> float:
        return self.b

    def calibration(self) -> Cal3_S2:
        """Return the monocular calibration, same for left and right."""
        return self.calibration_

    def K(self) -> np.ndarray:
        """Return calibration matrix K, same for left and right."""
        return self.calibration_.K()

    def vector(self) -> np.ndarray:
        """Return [fx, fy, s, u0, v0, b]."""
        return np.append(self.calibration_.vector(), self.b)

    def dim(self) -> int:
        return self.dimension

    def retract(self, d: np.ndarray) -> "Cal3_S2Stereo":
        """Given a 6-dim tangent vector, create a new stereo calibration."""
        d = np.asarray(d, dtype=np.float64)
        if d.shape != (6,):
            raise ValueError(f"d must have shape (6,), got {d.shape}")
        return Cal3_S2Stereo.from_vector(self.vector() + d)

    def local_coordinates(self, other: "Cal3_S2Stereo") -> np.ndarray:
        return other.vector() - self.vector()

    def equals(self, other: "Cal3_S2Stereo", tol: float = 1e-9) -> bool:
        return self.calibration_.equals(other.calibration_, tol) and abs(self.b - other.b) <= tol

    def __repr__(self) -> str:
        return (
            f"Cal3_S2Stereo(fx={self.fx:.2f}, fy={self.fy:.2f}, s={self.skew:.2f}, "
            f"u0={self.px:.2f}, v0={self.py:.2f}, b={self.b:.4f})"
        )
