"""Serial kinematic chains read from URDF: forward and inverse kinematics,
geometric Jacobian and gravity torques."""
from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import numpy as np
from scipy.spatial.transform import Rotation

from impedance_modulation.algebra import min_to_t

DEFAULT_GRAVITY = (0.0, 0.0, -9.81)

_IK_MAX_ITERATIONS = 100
_IK_EPSILON = 1e-6
_IK_SINGULAR_THRESHOLD = 1e-5
_RPY_EPSILON = 1e-12


class URDFError(ValueError):
    """The robot description cannot be read or holds no usable chain."""


class JointType(Enum):
    FIXED = "fixed"
    REVOLUTE = "revolute"
    PRISMATIC = "prismatic"


_JOINT_TYPES = {
    "revolute": JointType.REVOLUTE,
    "continuous": JointType.REVOLUTE,
    "prismatic": JointType.PRISMATIC,
}


def _axis_rotation(axis: np.ndarray, angle: float) -> np.ndarray:
    x, y, z = axis
    c, s = np.cos(angle), np.sin(angle)
    v = 1.0 - c
    return np.array(
        [
            [c + x * x * v, x * y * v - z * s, x * z * v + y * s],
            [y * x * v + z * s, c + y * y * v, y * z * v - x * s],
            [z * x * v - y * s, z * y * v + x * s, c + z * z * v],
        ]
    )


@dataclass(frozen=True)
class ChainSegment:
    """One link of a chain together with the joint that moves it.

    ``origin`` is the joint frame in the parent link frame, ``axis`` the
    joint axis in the joint frame and ``com`` the centre of mass in the
    link frame.
    """

    name: str
    joint_name: str
    joint_type: JointType
    origin: np.ndarray = field(repr=False)
    axis: np.ndarray
    mass: float = 0.0
    com: np.ndarray = field(default_factory=lambda: np.zeros(3))

    @property
    def is_moving(self) -> bool:
        return self.joint_type is not JointType.FIXED

    def motion(self, value: float) -> np.ndarray:
        """Transform produced by the joint at position ``value``."""
        transform = np.eye(4)
        if self.joint_type is JointType.REVOLUTE:
            transform[:3, :3] = _axis_rotation(self.axis, value)
        elif self.joint_type is JointType.PRISMATIC:
            transform[:3, 3] = self.axis * value
        return transform

    def frame(self, value: float) -> np.ndarray:
        """Link frame in the parent link frame at joint position ``value``."""
        return self.origin @ self.motion(value)


def _floats(text: str | None, default: tuple[float, ...], what: str) -> np.ndarray:
    if text is None:
        return np.array(default, dtype=float)
    try:
        values = [float(item) for item in text.split()]
    except ValueError as exc:
        raise URDFError(f"bad numbers in {what}: {text!r}") from exc
    if len(values) != len(default):
        raise URDFError(f"{what} needs {len(default)} numbers, got {len(values)}")
    return np.array(values, dtype=float)


def _origin(element: ET.Element | None, what: str) -> np.ndarray:
    if element is None:
        return np.eye(4)
    xyz = _floats(element.get("xyz"), (0.0, 0.0, 0.0), f"{what} xyz")
    rpy = _floats(element.get("rpy"), (0.0, 0.0, 0.0), f"{what} rpy")
    return min_to_t(xyz, rpy, False)


def _inertial(link: ET.Element) -> tuple[float, np.ndarray]:
    inertial = link.find("inertial")
    if inertial is None:
        return 0.0, np.zeros(3)
    mass_element = inertial.find("mass")
    mass = 0.0
    if mass_element is not None:
        try:
            mass = float(mass_element.get("value", "0"))
        except ValueError as exc:
            raise URDFError(f"bad mass in link {link.get('name')!r}") from exc
    origin = inertial.find("origin")
    com = _floats(
        origin.get("xyz") if origin is not None else None,
        (0.0, 0.0, 0.0),
        "inertial xyz",
    )
    return mass, com


@dataclass(frozen=True)
class KinematicChain:
    """Segments from a base frame to a tip frame, in order."""

    base: str
    tip: str
    segments: tuple[ChainSegment, ...]

    @classmethod
    def from_urdf_string(cls, text: str, base_frame: str, tip_frame: str) -> "KinematicChain":
        """Build the chain between two links of a URDF document."""
        try:
            root = ET.fromstring(text)
        except ET.ParseError as exc:
            raise URDFError(f"Failed to parse URDF: {exc}") from exc
        if root.tag != "robot":
            raise URDFError(f"URDF root element must be 'robot', got {root.tag!r}")

        links: dict[str, ET.Element] = {}
        for link in root.findall("link"):
            name = link.get("name")
            if not name:
                raise URDFError("link without a name")
            if name in links:
                raise URDFError(f"duplicate link {name!r}")
            links[name] = link

        parent_joint: dict[str, tuple[str, ET.Element]] = {}
        for joint in root.findall("joint"):
            jname = joint.get("name", "")
            parent_el, child_el = joint.find("parent"), joint.find("child")
            if parent_el is None or child_el is None:
                raise URDFError(f"joint {jname!r} needs a parent and a child")
            parent, child = parent_el.get("link"), child_el.get("link")
            for link_name in (parent, child):
                if link_name not in links:
                    raise URDFError(f"joint {jname!r} refers to unknown link {link_name!r}")
            if child in parent_joint:
                raise URDFError(f"link {child!r} has more than one parent joint")
            parent_joint[child] = (parent, joint)

        for frame in (base_frame, tip_frame):
            if frame not in links:
                raise URDFError(f"no link named {frame!r}")

        path: list[tuple[str, ET.Element]] = []
        current = tip_frame
        while current != base_frame:
            if current not in parent_joint:
                raise URDFError(f"{tip_frame!r} does not descend from {base_frame!r}")
            parent, joint = parent_joint[current]
            path.append((current, joint))
            current = parent

        segments = tuple(
            cls._segment(link_name, joint, links[link_name])
            for link_name, joint in reversed(path)
        )
        return cls(base=base_frame, tip=tip_frame, segments=segments)

    @staticmethod
    def _segment(link_name: str, joint: ET.Element, link: ET.Element) -> ChainSegment:
        jname = joint.get("name", "")
        joint_type = _JOINT_TYPES.get(joint.get("type", ""), JointType.FIXED)
        axis_el = joint.find("axis")
        axis = _floats(
            axis_el.get("xyz") if axis_el is not None else None,
            (1.0, 0.0, 0.0),
            f"joint {jname!r} axis",
        )
        norm = np.linalg.norm(axis)
        if norm == 0.0:
            if joint_type is not JointType.FIXED:
                raise URDFError(f"joint {jname!r} has a zero axis")
        else:
            axis = axis / norm
        mass, com = _inertial(link)
        return ChainSegment(
            name=link_name,
            joint_name=jname,
            joint_type=joint_type,
            origin=_origin(joint.find("origin"), f"joint {jname!r} origin"),
            axis=axis,
            mass=mass,
            com=com,
        )

    @classmethod
    def from_urdf_file(cls, path, base_frame: str, tip_frame: str) -> "KinematicChain":
        """Read a URDF file and build the chain between two of its links."""
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise URDFError(f"Failed to parse URDF: {exc}") from exc
        return cls.from_urdf_string(text, base_frame, tip_frame)

    def joint_count(self) -> int:
        """Number of joints that move."""
        return sum(1 for segment in self.segments if segment.is_moving)


def _rpy(rot: np.ndarray) -> np.ndarray:
    pitch = np.arctan2(-rot[2, 0], np.hypot(rot[0, 0], rot[1, 0]))
    if abs(pitch) > np.pi / 2.0 - _RPY_EPSILON:
        yaw = np.arctan2(-rot[0, 1], rot[1, 1])
        roll = 0.0
    else:
        roll = np.arctan2(rot[2, 1], rot[2, 2])
        yaw = np.arctan2(rot[1, 0], rot[0, 0])
    return np.array([roll, pitch, yaw])


def _twist_between(current: np.ndarray, target: np.ndarray) -> np.ndarray:
    linear = target[:3, 3] - current[:3, 3]
    rel = current[:3, :3].T @ target[:3, :3]
    angular = current[:3, :3] @ Rotation.from_matrix(rel).as_rotvec()
    return np.concatenate([linear, angular])


class RobotModel:
    """Joint state, target pose and solvers for one kinematic chain."""

    def __init__(self, chain: KinematicChain, gravity=DEFAULT_GRAVITY):
        self.chain = chain
        self.gravity_vector = np.asarray(gravity, dtype=float).reshape(3)
        self._q = np.zeros(chain.joint_count())
        self._pose = np.eye(4)

    @property
    def joint_count(self) -> int:
        return self._q.size

    @property
    def joint_positions(self) -> np.ndarray:
        return self._q.copy()

    @joint_positions.setter
    def joint_positions(self, values) -> None:
        arr = np.ravel(np.asarray(values, dtype=float))
        if arr.size < self._q.size:
            raise ValueError(f"need {self._q.size} joint positions, got {arr.size}")
        self._q = arr[: self._q.size].copy()

    def _frames(self, q: np.ndarray):
        world = np.eye(4)
        values = iter(q)
        frames = []
        for segment in self.chain.segments:
            joint_frame = world @ segment.origin
            value = next(values) if segment.is_moving else 0.0
            world = joint_frame @ segment.motion(value)
            frames.append((segment, joint_frame, world))
        return frames

    def _fk(self, q: np.ndarray) -> np.ndarray:
        frames = self._frames(q)
        return frames[-1][2].copy() if frames else np.eye(4)

    def _jacobian(self, q: np.ndarray) -> np.ndarray:
        frames = self._frames(q)
        tip = frames[-1][2][:3, 3] if frames else np.zeros(3)
        columns = []
        for segment, joint_frame, _ in frames:
            if not segment.is_moving:
                continue
            z = joint_frame[:3, :3] @ segment.axis
            if segment.joint_type is JointType.REVOLUTE:
                columns.append(np.concatenate([np.cross(z, tip - joint_frame[:3, 3]), z]))
            else:
                columns.append(np.concatenate([z, np.zeros(3)]))
        return np.column_stack(columns) if columns else np.zeros((6, 0))

    def set_pose(self, pose) -> None:
        """Set the target pose from ``[x, y, z, roll, pitch, yaw]``."""
        values = np.ravel(np.asarray(pose, dtype=float))
        if values.size < 6:
            raise ValueError(f"pose needs 6 elements, got {values.size}")
        self._pose = min_to_t(values[:3], values[3:6], False)

    def forward_kinematics(self) -> np.ndarray:
        """Set the pose to the tip frame at the current joints and return it."""
        self._pose = self._fk(self._q)
        return self._pose.copy()

    def inverse_kinematics(self) -> np.ndarray:
        """Newton-Raphson search, from the current joints, for the set pose."""
        q = self._q.copy()
        for _ in range(_IK_MAX_ITERATIONS):
            twist = _twist_between(self._fk(q), self._pose)
            if np.all(np.abs(twist) < _IK_EPSILON):
                break
            u, s, vh = np.linalg.svd(self._jacobian(q), full_matrices=False)
            inv = np.where(s < _IK_SINGULAR_THRESHOLD, 0.0, 1.0 / np.where(s == 0, 1.0, s))
            q = q + vh.T @ (inv * (u.T @ twist))
        self._q = q
        return q.copy()

    def pose(self) -> np.ndarray:
        """Current pose as ``[x, y, z, roll, pitch, yaw]``."""
        return np.concatenate([self._pose[:3, 3], _rpy(self._pose[:3, :3])])

    def jacobian(self) -> np.ndarray:
        """6 x n Jacobian, linear rows first, in the base frame at the tip."""
        return self._jacobian(self._q)

    def gravity(self) -> np.ndarray:
        """Joint torques that hold the chain still against gravity."""
        frames = self._frames(self._q)
        lift = -self.gravity_vector
        loads = [
            (segment.mass * lift, (world @ np.append(segment.com, 1.0))[:3])
            for segment, _, world in frames
        ]
        torques = []
        for index, (segment, joint_frame, _) in enumerate(frames):
            if not segment.is_moving:
                continue
            z = joint_frame[:3, :3] @ segment.axis
            downstream = loads[index:]
            if segment.joint_type is JointType.REVOLUTE:
                point = joint_frame[:3, 3]
                moment = sum(
                    (np.cross(centre - point, force) for force, centre in downstream),
                    np.zeros(3),
                )
                torques.append(float(z @ moment))
            else:
                total = sum((force for force, _ in downstream), np.zeros(3))
                torques.append(float(z @ total))
        return np.array(torques, dtype=float)


def load_robot(path, base_frame: str, tip_frame: str) -> RobotModel:
    """Read a URDF file and return a model of the chain between two links."""
    return RobotModel(KinematicChain.from_urdf_file(path, base_frame, tip_frame))