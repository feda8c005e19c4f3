"""Conversions between plain sequences and numeric vectors."""
from __future__ import annotations

from collections.abc import Iterable

import numpy as np

from impedance_modulation.algebra import eulers_to_quats


def to_array(vec: Iterable[float]) -> np.ndarray:
    """Copy a sequence of numbers into a one-dimensional float array."""
    return np.array(list(vec), dtype=float).reshape(-1)


def to_list(vec) -> list[float]:
    """Copy a vector into a list of Python floats."""
    return [float(value) for value in np.ravel(np.asarray(vec, dtype=float))]


def to_quaternion_pose(poses: Iterable[float], are_degrees: bool) -> list[float]:
    """Turn ``[x, y, z, r, p, y]`` poses into ``[x, y, z, qx, qy, qz, qw]`` poses.

    The orientations are converted with :func:`eulers_to_quats`; values that
    do not fill a whole six-element pose are ignored.
    """
    flat = to_array(poses)
    count = flat.size // 6
    table = flat[: count * 6].reshape(count, 6)
    quats = eulers_to_quats(table[:, 3:].ravel(), are_degrees).reshape(count, 4)
    return to_list(np.hstack([table[:, :3], quats]))