"""
G2O pose-graph files as rotation averaging input.

Supported records:
    VERTEX_SE2 id x y theta
    VERTEX_SE3:QUAT id x y z qx qy qz qw
    EDGE_SE2 i j dx dy dtheta I11 I12 I13 I22 I23 I33
    EDGE_SE3:QUAT i j dx dy dz qx qy qz qw I11 I12 ... I66  (21 upper-triangular)

Only rotations are used. Edge information becomes the measurement weight:
    2D: κ = I_θθ
    3D: κ = 3 / (2 tr(Ω_rot⁻¹)), Ω_rot the rotation block of the information
Records with other tags are skipped.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from shonan.averaging.types import Measurement, Pose
from shonan.geometry import quat_to_rotation_matrix, rot2, rot2_angle, rotation_matrix_to_quat


VERTEX_2D = "VERTEX_SE2"
VERTEX_3D = "VERTEX_SE3:QUAT"
EDGE_2D = "EDGE_SE2"
EDGE_3D = "EDGE_SE3:QUAT"

_TAGS_2D = (VERTEX_2D, EDGE_2D)
_TAGS_3D = (VERTEX_3D, EDGE_3D)


def _upper_triangular_to_matrix(values: Sequence[float], n: int) -> np.ndarray:
    M = np.zeros((n, n))
    rows, cols = np.triu_indices(n)
    M[rows, cols] = values
    M[cols, rows] = values
    return M


def _matrix_to_upper_triangular(M: np.ndarray) -> np.ndarray:
    return M[np.triu_indices(M.shape[0])]


def _quat_xyzw(values: Sequence[float]) -> np.ndarray:
    qx, qy, qz, qw = values
    return quat_to_rotation_matrix(np.array([qw, qx, qy, qz]))


def _weight_3d(information: np.ndarray) -> float:
    rotation_information = information[3:, 3:]
    return 3.0 / (2.0 * np.trace(np.linalg.inv(rotation_information)))


def read_g2o(
    path: Union[str, Path], is_3d: Optional[bool] = None
) -> Tuple[List[Measurement], Dict[int, Pose]]:
    """
    Read measurements and initial poses from a G2O file.

    Args:
        path: File path.
        is_3d: Expect 3D records (True), 2D records (False), or detect from
            the first vertex/edge record (None).

    Returns:
        Tuple of (measurements, poses). poses is empty when the file has no
        vertex records.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: On malformed lines (reported with their line number),
            or records of the other dimension.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"G2O file not found: {path}")

    measurements: List[Measurement] = []
    poses: Dict[int, Pose] = {}

    with open(path, "r") as f:
        for line_number, line in enumerate(f, start=1):
            tokens = line.split()
            if not tokens or tokens[0].startswith("#"):
                continue
            tag = tokens[0]
            if tag not in _TAGS_2D + _TAGS_3D:
                continue
            if is_3d is None:
                is_3d = tag in _TAGS_3D
            elif (tag in _TAGS_3D) != is_3d:
                raise ValueError(
                    f"{path}:{line_number}: {tag} record in a "
                    f"{'3D' if is_3d else '2D'} file"
                )
            try:
                _parse_record(tag, tokens[1:], measurements, poses)
            except (ValueError, IndexError, np.linalg.LinAlgError) as e:
                raise ValueError(f"{path}:{line_number}: malformed {tag} record: {e}") from e

    return measurements, poses


def _parse_record(
    tag: str,
    fields: List[str],
    measurements: List[Measurement],
    poses: Dict[int, Pose],
) -> None:
    if tag == VERTEX_2D:
        if len(fields) != 4:
            raise ValueError(f"expected 4 fields, got {len(fields)}")
        key = int(fields[0])
        x, y, theta = (float(v) for v in fields[1:4])
        poses[key] = Pose(rot2(theta), np.array([x, y]))
    elif tag == VERTEX_3D:
        if len(fields) != 8:
            raise ValueError(f"expected 8 fields, got {len(fields)}")
        key = int(fields[0])
        values = [float(v) for v in fields[1:8]]
        poses[key] = Pose(_quat_xyzw(values[3:7]), np.array(values[:3]))
    elif tag == EDGE_2D:
        if len(fields) not in (5, 11):
            raise ValueError(f"expected 5 or 11 fields, got {len(fields)}")
        i, j = int(fields[0]), int(fields[1])
        theta = float(fields[4])
        weight = None
        if len(fields) == 11:
            information = _upper_triangular_to_matrix([float(v) for v in fields[5:11]], 3)
            weight = information[2, 2]
        measurements.append(Measurement(i, j, rot2(theta), weight))
    elif tag == EDGE_3D:
        if len(fields) not in (9, 30):
            raise ValueError(f"expected 9 or 30 fields, got {len(fields)}")
        i, j = int(fields[0]), int(fields[1])
        rotation = _quat_xyzw([float(v) for v in fields[5:9]])
        weight = None
        if len(fields) == 30:
            information = _upper_triangular_to_matrix([float(v) for v in fields[9:30]], 6)
            weight = _weight_3d(information)
        measurements.append(Measurement(i, j, rotation, weight))


def write_g2o(
    path: Union[str, Path],
    measurements: Sequence[Measurement],
    poses: Optional[Dict[int, Pose]] = None,
) -> None:
    """
    Write measurements (and optional poses) as a G2O file.

    Edge translations are written as zero. The information matrix carries
    the weight (identity when the weight is unknown) so that read_g2o
    recovers it.
    """
    measurements = list(measurements)
    if not measurements:
        raise ValueError("Nothing to write: no measurements")
    d = measurements[0].d
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    lines = []
    for key, pose in (poses or {}).items():
        if d == 2:
            x, y = pose.translation
            lines.append(f"{VERTEX_2D} {key} {x:.9g} {y:.9g} {rot2_angle(pose.rotation):.12g}")
        else:
            qw, qx, qy, qz = rotation_matrix_to_quat(pose.rotation)
            t = " ".join(f"{v:.9g}" for v in pose.translation)
            lines.append(f"{VERTEX_3D} {key} {t} {qx:.12g} {qy:.12g} {qz:.12g} {qw:.12g}")

    for m in measurements:
        weight = 1.0 if m.weight is None else m.weight
        if d == 2:
            information = np.diag([1.0, 1.0, weight])
            info = " ".join(f"{v:.12g}" for v in _matrix_to_upper_triangular(information))
            lines.append(
                f"{EDGE_2D} {m.key_i} {m.key_j} 0 0 {rot2_angle(m.rotation):.12g} {info}"
            )
        else:
            # κ = 3 / (2 tr(Ω_rot⁻¹)) holds for Ω_rot = 2κ I
            information = np.diag([1.0, 1.0, 1.0] + [2.0 * weight] * 3)
            info = " ".join(f"{v:.12g}" for v in _matrix_to_upper_triangular(information))
            qw, qx, qy, qz = rotation_matrix_to_quat(m.rotation)
            lines.append(
                f"{EDGE_3D} {m.key_i} {m.key_j} 0 0 0 "
                f"{qx:.12g} {qy:.12g} {qz:.12g} {qw:.12g} {info}"
            )

    with open(path, "w") as f:
        f.write("\n".join(lines) + "\n")
