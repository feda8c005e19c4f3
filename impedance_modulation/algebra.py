"""Linear-algebra and orientation helpers.

Quaternions are laid out as ``[x, y, z, w]``.  Homogeneous transforms are
4x4 matrices whose upper-left 3x3 block is the linear part and whose last
column holds the translation.
"""
from __future__ import annotations

import numpy as np

_EPSILON = np.finfo(float).eps
_TINY = np.finfo(float).tiny


def _vector(values, name: str = "vector", min_size: int = 0) -> np.ndarray:
    arr = np.ravel(np.asarray(values, dtype=float))
    if arr.size < min_size:
        raise ValueError(f"{name} needs at least {min_size} elements, got {arr.size}")
    return arr


def _matrix(values, shape: tuple[int, int], name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.shape != shape:
        raise ValueError(f"{name} must have shape {shape}, got {arr.shape}")
    return arr


def _quat_to_matrix(x: float, y: float, z: float, w: float) -> np.ndarray:
    """Rotation matrix of a quaternion, without normalising it first."""
    tx, ty, tz = 2.0 * x, 2.0 * y, 2.0 * z
    twx, twy, twz = tx * w, ty * w, tz * w
    txx, txy, txz = tx * x, ty * x, tz * x
    tyy, tyz, tzz = ty * y, tz * y, tz * z
    return np.array(
        [
            [1.0 - (tyy + tzz), txy - twz, txz + twy],
            [txy + twz, 1.0 - (txx + tzz), tyz - twx],
            [txz - twy, tyz + twx, 1.0 - (txx + tyy)],
        ]
    )


def _euler_angles_xyz(rot: np.ndarray) -> np.ndarray:
    """Angles (a0, a1, a2) with rot = Rx(a0) Ry(a1) Rz(a2) and a0 in [0, pi]."""
    i, j, k = 0, 1, 2
    a0 = np.arctan2(rot[j, k], rot[k, k])
    c2 = np.hypot(rot[i, i], rot[i, j])
    if a0 > 0:
        a0 -= np.pi
        a1 = np.arctan2(-rot[i, k], -c2)
    else:
        a1 = np.arctan2(-rot[i, k], c2)
    s1, c1 = np.sin(a0), np.cos(a0)
    a2 = np.arctan2(s1 * rot[k, i] - c1 * rot[j, i], c1 * rot[j, j] - s1 * rot[k, j])
    return -np.array([a0, a1, a2], dtype=float)


def _quat_mul(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    ax, ay, az, aw = a
    bx, by, bz, bw = b
    return np.array(
        [
            aw * bx + ax * bw + ay * bz - az * by,
            aw * by - ax * bz + ay * bw + az * bx,
            aw * bz + ax * by - ay * bx + az * bw,
            aw * bw - ax * bx - ay * by - az * bz,
        ],
        dtype=a.dtype,
    )


def _axis_quat(angle, axis: int, dtype) -> np.ndarray:
    half = dtype(angle) / dtype(2)
    quat = np.zeros(4, dtype=dtype)
    quat[axis] = np.sin(half)
    quat[3] = np.cos(half)
    return quat


def _zyx_quat(angles: np.ndarray, dtype) -> np.ndarray:
    """Quaternion of Rz(angles[2]) * Ry(angles[1]) * Rx(angles[0])."""
    qz = _axis_quat(angles[2], 2, dtype)
    qy = _axis_quat(angles[1], 1, dtype)
    qx = _axis_quat(angles[0], 0, dtype)
    return _quat_mul(_quat_mul(qz, qy), qx)


def _rotation_part(t: np.ndarray) -> np.ndarray:
    """Rotation factor of the polar decomposition of the linear block."""
    linear = t[:3, :3]
    u, _, vh = np.linalg.svd(linear)
    sign = np.linalg.det(u @ vh)
    u = u.copy()
    u[:, -1] *= sign
    return u @ vh


def pseudo_inverse(m) -> np.ndarray:
    """Moore-Penrose pseudo-inverse computed from a thin SVD."""
    a = np.asarray(m, dtype=float)
    if a.ndim == 1:
        a = a.reshape(1, -1)
    if a.ndim != 2:
        raise ValueError(f"expected a matrix, got an array with {a.ndim} dimensions")
    rows, cols = a.shape
    if a.size == 0:
        return np.zeros((cols, rows))
    u, s, vh = np.linalg.svd(a, full_matrices=False)
    threshold = max(s[0] * _EPSILON * max(rows, cols), _TINY)
    rank = int(np.count_nonzero(s >= threshold))
    return (vh[:rank].T / s[:rank]) @ u[:, :rank].T


def skew_matrix(p) -> np.ndarray:
    """Skew-symmetric matrix S such that S @ v equals cross(p, v)."""
    x, y, z = _vector(p, "p", 3)[:3]
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def quat_to_euler_rad(quat) -> np.ndarray:
    """Roll-pitch-yaw angles (X, Y, Z order) in radians of an ``[x, y, z, w]`` quaternion."""
    q = _vector(quat, "quat", 4)[:4]
    norm = np.linalg.norm(q)
    if norm > 0:
        q = q / norm
    return _euler_angles_xyz(_quat_to_matrix(*q))


def quat_to_euler_deg(quat) -> np.ndarray:
    """Like :func:`quat_to_euler_rad`, in degrees."""
    return rad_to_deg(quat_to_euler_rad(quat))


def quat_to_euler(quat, are_degrees: bool) -> np.ndarray:
    """Euler angles of a quaternion, in degrees when ``are_degrees`` is true."""
    return quat_to_euler_deg(quat) if are_degrees else quat_to_euler_rad(quat)


def euler_to_quat(euler_angles) -> np.ndarray:
    """Single-precision quaternion of Rz*Ry*Rx; the angles are taken in degrees."""
    angles = deg_to_rad(_vector(euler_angles, "euler_angles", 3))
    return _zyx_quat(angles.astype(np.float32), np.float32)


def euler_to_quat_vec(euler_angles) -> np.ndarray:
    """:func:`euler_to_quat` as a double-precision ``[x, y, z, w]`` vector."""
    return euler_to_quat(euler_angles).astype(float)


def eulers_to_quats_rad(euler_angle_orients) -> np.ndarray:
    """Convert consecutive angle triples to consecutive quaternions.

    Each triple goes through :func:`euler_to_quat_vec`; trailing values that
    do not fill a triple are ignored.
    """
    angles = _vector(euler_angle_orients, "euler_angle_orients")
    count = angles.size // 3
    triples = angles[: count * 3].reshape(count, 3)
    if count == 0:
        return np.zeros(0)
    return np.concatenate([euler_to_quat_vec(triple) for triple in triples])


def eulers_to_quats_deg(euler_angle_orients) -> np.ndarray:
    """:func:`eulers_to_quats_rad` with every component scaled by 180/pi."""
    return rad_to_deg(eulers_to_quats_rad(euler_angle_orients))


def eulers_to_quats(euler_angle_orients, are_degrees: bool) -> np.ndarray:
    """Dispatch to the degree or radian variant of the triple conversion."""
    if are_degrees:
        return eulers_to_quats_deg(euler_angle_orients)
    return eulers_to_quats_rad(euler_angle_orients)


def rot_to_quat(rot) -> np.ndarray:
    """``[x, y, z, w]`` quaternion of a 3x3 rotation matrix."""
    m = _matrix(rot, (3, 3), "rot")
    diagonal_sum = float(m[0, 0] + m[1, 1] + m[2, 2])
    quat = np.zeros(4)
    if diagonal_sum > 0:
        t = np.sqrt(diagonal_sum + 1.0)
        quat[3] = 0.5 * t
        t = 0.5 / t
        quat[0] = (m[2, 1] - m[1, 2]) * t
        quat[1] = (m[0, 2] - m[2, 0]) * t
        quat[2] = (m[1, 0] - m[0, 1]) * t
    else:
        i = int(np.argmax(np.diag(m)))
        j = (i + 1) % 3
        k = (j + 1) % 3
        t = np.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        quat[i] = 0.5 * t
        t = 0.5 / t
        quat[3] = (m[k, j] - m[j, k]) * t
        quat[j] = (m[j, i] + m[i, j]) * t
        quat[k] = (m[k, i] + m[i, k]) * t
    return quat


def transformation_rot_trasl(t) -> tuple[np.ndarray, np.ndarray]:
    """Split a homogeneous transform into its rotation and translation."""
    transform = _matrix(t, (4, 4), "t")
    return _rotation_part(transform), transform[:3, 3].copy()


def min_to_t(position, orientation, are_degree: bool) -> np.ndarray:
    """Homogeneous transform from a position and an orientation.

    A three-element orientation is roll-pitch-yaw composed as Rz*Ry*Rx
    (in degrees when ``are_degree`` is true); a four-element one is an
    ``[x, y, z, w]`` quaternion used as given.
    """
    pos = _vector(position, "position", 3)
    orient = _vector(orientation, "orientation")
    if orient.size == 3:
        angles = deg_to_rad(orient) if are_degree else orient
        quat = _zyx_quat(angles, np.float64)
    elif orient.size == 4:
        quat = orient
    else:
        raise ValueError(f"orientation needs 3 or 4 elements, got {orient.size}")
    transform = np.eye(4)
    transform[:3, 3] = pos[:3]
    transform[:3, :3] = _quat_to_matrix(*quat)
    return transform


def t_to_min(t) -> np.ndarray:
    """Translation followed by X-Y-Z Euler angles in radians."""
    rot, trasl = transformation_rot_trasl(t)
    return np.concatenate([trasl, _euler_angles_xyz(rot)])


def t_to_min_deg(t) -> np.ndarray:
    """Translation followed by X-Y-Z Euler angles in degrees."""
    result = t_to_min(t)
    result[3:] = rad_to_deg(result[3:])
    return result


def t_to_min_quat(t) -> np.ndarray:
    """Translation followed by the ``[x, y, z, w]`` quaternion of the rotation."""
    rot, trasl = transformation_rot_trasl(t)
    return np.concatenate([trasl, rot_to_quat(rot)])


def deg_to_rad(deg) -> np.ndarray:
    """Degrees to radians, element-wise."""
    return _vector(deg, "deg") * (np.pi / 180.0)


def rad_to_deg(vec_rad) -> np.ndarray:
    """Radians to degrees, element-wise."""
    return _vector(vec_rad, "vec_rad") * (180.0 / np.pi)