"""Joint impedance modulation driven by task requests.

The manager turns a task (a wrench to exert and a precision to keep at the
end effector) into joint stiffness, joint damping and feed-forward torques
for the robot.  When it starts, it blends from preset gains to the gains of
an initial task along a quintic profile, publishing every step.
"""
from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import ExitStack
from dataclasses import dataclass, field, fields
from pathlib import Path

import numpy as np
import yaml

from impedance_modulation.algebra import pseudo_inverse
from impedance_modulation.kinematics import RobotModel, URDFError, load_robot
from impedance_modulation.logger import DataLogger
from impedance_modulation.utilities import to_array, to_list

CARTESIAN_DIM = 6
DAMPING_RATIO = 0.7


def _status(*lines: str) -> None:
    for line in lines:
        print(line, file=sys.stderr)


def _floats(values, name: str) -> tuple[float, ...]:
    if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
        raise ValueError(f"{name} must be a sequence of numbers")
    try:
        return tuple(float(value) for value in values)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must hold numbers only") from exc


def _row(vec) -> str:
    return " ".join(f"{value:g}" for value in np.ravel(vec))


_TASK_VECTORS = (
    "task_pose_reference",
    "joints_position_reference",
    "joints_position",
    "task_wrench",
    "task_precision",
)


@dataclass(frozen=True)
class TaskMsg:
    """A task request: references, current joints, wrench and precision."""

    cartesian_space: bool = False
    task_pose_reference: tuple[float, ...] = ()
    joints_position_reference: tuple[float, ...] = ()
    joints_position: tuple[float, ...] = ()
    task_wrench: tuple[float, ...] = ()
    task_precision: tuple[float, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping) -> "TaskMsg":
        """Build a task from a mapping with the message's field names."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"unknown task fields: {', '.join(sorted(unknown))}")
        vectors = {name: _floats(data.get(name, ()), name) for name in _TASK_VECTORS}
        return cls(cartesian_space=bool(data.get("cartesian_space", False)), **vectors)


@dataclass
class ImpedanceMsg:
    """Gains and torques sent to the robot."""

    robot_stiffness: list[float] = field(default_factory=list)
    robot_damping: list[float] = field(default_factory=list)
    robot_feedforward_torque: list[float] = field(default_factory=list)

    def to_mapping(self) -> dict[str, list[float]]:
        """The message as a plain dictionary of lists."""
        return {
            "robot_stiffness": list(self.robot_stiffness),
            "robot_damping": list(self.robot_damping),
            "robot_feedforward_torque": list(self.robot_feedforward_torque),
        }


def _as_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    return value


def _as_float(value, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number")
    return float(value)


def _as_bool(value, name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be true or false")
    return value


def _as_str(value, name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string")
    return value


@dataclass(frozen=True)
class ManagerConfig:
    """Parameters of the manager, with the node's defaults."""

    rate: int = 1000
    topic_subscriber_name: str = "task_planner"
    topic_publisher_name: str = "robot_IM_planner"
    log_path: str = "/tmp/"
    verbose: bool = False
    stiffness_preset: tuple[float, ...] = ()
    stiffness_constant: tuple[float, ...] = ()
    stiffness_maximum: tuple[float, ...] = ()
    damping_preset: tuple[float, ...] = ()
    damping_maximum: tuple[float, ...] = ()
    wrench_initial: tuple[float, ...] = ()
    precision_initial: tuple[float, ...] = ()
    robot_initial_config: tuple[float, ...] = ()
    robot_urdf_model_path: str = "/tmp/robot.urdf"
    robot_base_frame_name: str = "base_link"
    robot_tip_frame_name: str = "end_effector"
    transition_time: float = 5.0

    def __post_init__(self) -> None:
        if self.rate <= 0:
            raise ValueError(f"rate must be positive, got {self.rate}")
        if not self.transition_time > 0:
            raise ValueError(f"transition_time must be positive, got {self.transition_time}")

    @classmethod
    def from_mapping(cls, data: Mapping) -> "ManagerConfig":
        """Read parameters from a mapping; keys that are not parameters are ignored."""
        converters: dict[str, Callable] = {}
        for f in fields(cls):
            default = f.default
            if isinstance(default, bool):
                converters[f.name] = _as_bool
            elif isinstance(default, int):
                converters[f.name] = _as_int
            elif isinstance(default, float):
                converters[f.name] = _as_float
            elif isinstance(default, str):
                converters[f.name] = _as_str
            else:
                converters[f.name] = _floats
        values = {
            name: convert(data[name], name)
            for name, convert in converters.items()
            if name in data
        }
        return cls(**values)

    @classmethod
    def from_yaml(cls, path) -> "ManagerConfig":
        """Read parameters from a YAML file, plain or in node parameter layout."""
        with open(path, encoding="utf-8") as stream:
            document = yaml.safe_load(stream)
        if document is None:
            return cls()
        if not isinstance(document, Mapping):
            raise ValueError(f"{path}: parameters must form a mapping")
        for value in document.values():
            if isinstance(value, Mapping) and "ros__parameters" in value:
                document = value["ros__parameters"] or {}
                break
        return cls.from_mapping(document)


class ImpedanceModulationManager:
    """Computes joint impedance and feed-forward torque for incoming tasks.

    Creating the manager runs :meth:`initialize_impedance`, which publishes
    the transition from the preset gains to those of the initial task.
    """

    def __init__(
        self,
        config: ManagerConfig,
        robot: RobotModel,
        publish: Callable[[ImpedanceMsg], object] | None = None,
        logger: DataLogger | None = None,
    ):
        self.config = config
        self.robot = robot
        self._publish = publish if publish is not None else (lambda msg: None)
        self._logger = logger
        self._rate = float(config.rate)
        self._ref_time = float(config.transition_time)
        self._verbose = config.verbose

        self._k_preset = to_array(config.stiffness_preset)
        self._k_0 = to_array(config.stiffness_constant)
        self._k_max = to_array(config.stiffness_maximum)
        self._d_preset = to_array(config.damping_preset)
        self._d_max = to_array(config.damping_maximum)
        self._w_ee_d_initial = to_array(config.wrench_initial)
        self._delta_x_ee_initial = to_array(config.precision_initial)
        self._q = to_array(config.robot_initial_config)

        nj = self._k_0.size
        self._nj = nj
        for name, vec in (
            ("stiffness_preset", self._k_preset),
            ("stiffness_maximum", self._k_max),
            ("damping_preset", self._d_preset),
            ("damping_maximum", self._d_max),
            ("robot_initial_config", self._q),
        ):
            if vec.size != nj:
                raise ValueError(f"{name} needs {nj} values, got {vec.size}")
        for name, vec in (
            ("wrench_initial", self._w_ee_d_initial),
            ("precision_initial", self._delta_x_ee_initial),
        ):
            if vec.size != CARTESIAN_DIM:
                raise ValueError(f"{name} needs {CARTESIAN_DIM} values, got {vec.size}")
        if robot.joint_count != nj:
            raise ValueError(
                f"robot has {robot.joint_count} joints but {nj} stiffness values are given"
            )
        robot.joint_positions = self._q

        nc = CARTESIAN_DIM
        self._w_ee_d = np.zeros(nc)
        self._w_ee_td = np.zeros(nc)
        self._w_ee_g = np.zeros(nc)
        self._delta_x_ee_td = np.zeros(nc)
        self._k_c_d = np.zeros(nc)
        self._K_C_d = np.eye(nc)

        self._qref = np.zeros(nj)
        self._qerr = np.zeros(nj)
        self._k = np.zeros(nj)
        self._d = np.zeros(nj)
        self._K_0 = np.diag(self._k_0)
        self._K_J = np.eye(nj)
        self._D_J = np.eye(nj)
        self._K_J_off = np.eye(nj)
        self._tau_g = np.zeros(nj)
        self._tau_ext = np.zeros(nj)
        self._tau_Koff = np.zeros(nj)
        self._tau_ff = np.zeros(nj)
        self._J = np.zeros((nc, nj))

        self.robot_msg = ImpedanceMsg()
        self._subscribed = False

        self.initialize_impedance()

    @property
    def subscribed(self) -> bool:
        """Whether a task arrived that has not been processed yet."""
        return self._subscribed

    @property
    def joint_stiffness(self) -> np.ndarray:
        return self._k.copy()

    @property
    def joint_damping(self) -> np.ndarray:
        return self._d.copy()

    @property
    def feedforward_torque(self) -> np.ndarray:
        return self._tau_ff.copy()

    @property
    def joint_positions(self) -> np.ndarray:
        return self._q.copy()

    @property
    def joint_reference(self) -> np.ndarray:
        return self._qref.copy()

    def _jacobian(self) -> np.ndarray:
        self.robot.joint_positions = self._q
        return self.robot.jacobian()

    def _gravity_compensation(self) -> np.ndarray:
        self.robot.joint_positions = self._q
        return self.robot.gravity()

    def _gravity_wrench(self) -> np.ndarray:
        self._J = self._jacobian()
        return pseudo_inverse(self._J.T) @ self._gravity_compensation()

    def initialize_impedance(self) -> None:
        """Blend from preset gains to those of the initial task, publishing each step."""
        time = 0.0
        it_time = 0.0
        tau_g_final = self._gravity_compensation()
        self._J = self._jacobian()
        j = self._J
        j_inv_t = pseudo_inverse(j.T)

        while it_time < 1.0:
            it_time = time / self._ref_time
            t = ((6 * it_time - 15) * it_time + 10) * it_time * it_time * it_time

            self._tau_g = t * tau_g_final
            self._w_ee_td = t * self._w_ee_d_initial
            self._w_ee_g = j_inv_t @ self._tau_g
            self._w_ee_d = np.abs(self._w_ee_g + self._w_ee_td)
            with np.errstate(divide="ignore", invalid="ignore"):
                self._k_c_d = self._w_ee_d * (1.0 / self._delta_x_ee_initial)
                self._K_C_d = np.diag(self._k_c_d)
                self._K_J = self._K_0 + j.T @ self._K_C_d @ j

            k = np.diag(self._K_J).copy()
            d = 2 * DAMPING_RATIO * np.sqrt(np.abs(self._k))
            self._K_J_off = self._K_J - np.diag(k)

            self._tau_Koff = t * (self._K_J_off @ self._qerr)
            self._tau_ext = j.T @ self._w_ee_td

            self._k = (1 - t) * self._k_preset + t * k
            self._d = (1 - t) * self._d_preset + t * d
            self._tau_ff = self._tau_g + self._tau_Koff + self._tau_ext

            self.check_limits()
            self._publish(self.compose_robot_msg())

            time += 1 / self._rate
            self._log()

    def compute_impedance_modulation(self) -> None:
        """Stiffness, damping and torques for the current task."""
        self._w_ee_g = self._gravity_wrench()
        self._w_ee_d = np.abs(self._w_ee_g + self._w_ee_td)

        self._J = self._jacobian()
        with np.errstate(divide="ignore", invalid="ignore"):
            self._k_c_d = self._w_ee_d * (1.0 / self._delta_x_ee_td)
            self._K_C_d = np.diag(self._k_c_d)
            self._K_J = self._K_0 + self._J.T @ self._K_C_d @ self._J
        self._k = np.diag(self._K_J).copy()
        self._K_J_off = self._K_J - np.diag(self._k)

        self._d = 2 * DAMPING_RATIO * np.sqrt(np.abs(self._k))
        np.fill_diagonal(self._D_J, self._d)

        self._qerr = self._qref - self._q
        self._tau_g = self._gravity_compensation()
        self._tau_Koff = self._K_J_off @ self._qerr
        self._tau_ext = self._J.T @ self._w_ee_td
        self._tau_ff = self._tau_g + self._tau_Koff + self._tau_ext

        self.check_limits()

    def check_limits(self) -> None:
        """Cap stiffness and damping at their maxima."""
        self._k = np.where(self._k > self._k_max, self._k_max, self._k)
        self._d = np.where(self._d > self._d_max, self._d_max, self._d)

    def compose_robot_msg(self) -> ImpedanceMsg:
        """Store and return the message holding the current gains and torques."""
        self.robot_msg = ImpedanceMsg(
            robot_stiffness=to_list(self._k),
            robot_damping=to_list(self._d),
            robot_feedforward_torque=to_list(self._tau_ff),
        )
        return self.robot_msg

    def on_task(self, msg: TaskMsg) -> None:
        """Take in a task; it is processed on the next timer tick."""
        if msg.cartesian_space:
            self.robot.set_pose(msg.task_pose_reference)
            self.robot.forward_kinematics()
            self._qref = self.robot.joint_positions
        else:
            self._qref = to_array(msg.joints_position_reference)

        self._q = to_array(msg.joints_position)
        self._w_ee_td = to_array(msg.task_wrench)
        self._delta_x_ee_td = to_array(msg.task_precision)
        self._subscribed = True

    def timer_callback(self) -> ImpedanceMsg | None:
        """Process a pending task; return the published message, or None."""
        if not self._subscribed:
            return None
        if self._verbose:
            _status(
                "Subscribed data...",
                f"Joints state: {_row(self._q)}",
                f"Joints reference: {_row(self._qref)}",
                f"Wrench reference: {_row(self._w_ee_td)}",
                f"Precision reference: {_row(self._delta_x_ee_td)}",
            )
        self.compute_impedance_modulation()
        msg = self.compose_robot_msg()
        self._publish(msg)
        self._log()
        self._subscribed = False
        return msg

    def spin(self, messages: Iterable[TaskMsg | Mapping]) -> list[ImpedanceMsg]:
        """Handle tasks one after another and return the messages published for them."""
        _status(
            "-" * 78,
            "Robot Impedance Modulation started! Ready to accept task planning...",
        )
        published = []
        for message in messages:
            task = message if isinstance(message, TaskMsg) else TaskMsg.from_mapping(message)
            self.on_task(task)
            result = self.timer_callback()
            if result is not None:
                published.append(result)
        return published

    def _log(self) -> None:
        if self._logger is None:
            return
        for name, data in (
            ("EEwrench", self._w_ee_d),
            ("EETaskwrench", self._w_ee_td),
            ("TaskErrorDesired", self._delta_x_ee_td),
            ("CartesianStiffness", self._k_c_d),
            ("JointStiffness", self._k),
            ("JointDamping", self._d),
            ("FeedforwardTorque", self._tau_ff),
            ("JointsPosition", self._q),
            ("JointsPositionReference", self._qref),
        ):
            self._logger.log_data(name, data)


def _read_tasks(stream) -> Iterator[TaskMsg]:
    for line in stream:
        text = line.strip()
        if text:
            yield TaskMsg.from_mapping(json.loads(text))


def main(argv=None) -> int:
    """Run the manager on JSON task lines, writing JSON impedance lines."""
    parser = argparse.ArgumentParser(
        prog="impedance-modulation",
        description="Modulate joint impedance from task requests.",
    )
    parser.add_argument("--config", help="YAML parameter file")
    parser.add_argument("--input", default="-", help="task lines in JSON ('-' for stdin)")
    parser.add_argument("--output", default="-", help="where to write messages ('-' for stdout)")
    args = parser.parse_args(argv)

    try:
        config = ManagerConfig.from_yaml(args.config) if args.config else ManagerConfig()
        robot = load_robot(
            config.robot_urdf_model_path,
            config.robot_base_frame_name,
            config.robot_tip_frame_name,
        )
        with ExitStack() as stack:
            source = (
                sys.stdin
                if args.input == "-"
                else stack.enter_context(open(args.input, encoding="utf-8"))
            )
            sink = (
                sys.stdout
                if args.output == "-"
                else stack.enter_context(open(args.output, "w", encoding="utf-8"))
            )

            def publish(msg: ImpedanceMsg) -> None:
                sink.write(json.dumps(msg.to_mapping()) + "\n")
                sink.flush()

            logger = stack.enter_context(DataLogger(Path(config.log_path), False))
            manager = ImpedanceModulationManager(config, robot, publish, logger)
            manager.spin(_read_tasks(source))
    except (URDFError, ValueError, OSError, yaml.YAMLError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())