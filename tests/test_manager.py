import json

import numpy as np
import pytest
import yaml
from scipy.io import loadmat

from impedance_modulation.kinematics import KinematicChain, RobotModel
from impedance_modulation.logger import DataLogger
from impedance_modulation.manager import (
    ImpedanceModulationManager,
    ImpedanceMsg,
    ManagerConfig,
    TaskMsg,
    main,
)

URDF = """<robot name="arm">
  <link name="base_link"/>
  <link name="link1">
    <inertial><origin xyz="0.5 0 0"/><mass value="1.0"/></inertial>
  </link>
  <link name="end_effector">
    <inertial><origin xyz="0.5 0 0"/><mass value="1.0"/></inertial>
  </link>
  <joint name="j1" type="revolute">
    <parent link="base_link"/><child link="link1"/><axis xyz="0 1 0"/>
  </joint>
  <joint name="j2" type="revolute">
    <parent link="link1"/><child link="end_effector"/>
    <origin xyz="1 0 0"/><axis xyz="0 1 0"/>
  </joint>
</robot>
"""

Q0 = [0.3, -0.2]


def _robot():
    chain = KinematicChain.from_urdf_string(URDF, "base_link", "end_effector")
    return RobotModel(chain)


def _params(**overrides):
    params = {
        "rate": 4,
        "transition_time": 1.0,
        "stiffness_preset": [50.0, 50.0],
        "stiffness_constant": [10.0, 10.0],
        "stiffness_maximum": [1e9, 1e9],
        "damping_preset": [5.0, 5.0],
        "damping_maximum": [1e9, 1e9],
        "wrench_initial": [1.0, 0.0, 2.0, 0.0, 0.0, 0.0],
        "precision_initial": [0.01] * 6,
        "robot_initial_config": Q0,
    }
    params.update(overrides)
    return params


def _manager(logger=None, **overrides):
    published = []
    robot = _robot()
    config = ManagerConfig.from_mapping(_params(**overrides))
    manager = ImpedanceModulationManager(config, robot, published.append, logger)
    return manager, robot, published


def test_config_defaults():
    config = ManagerConfig.from_mapping({})
    assert config.rate == 1000
    assert config.transition_time == 5.0
    assert config.topic_subscriber_name == "task_planner"
    assert config.topic_publisher_name == "robot_IM_planner"
    assert config.robot_base_frame_name == "base_link"
    assert config.robot_tip_frame_name == "end_effector"


def test_config_converts_vectors_and_ignores_unknown_keys():
    config = ManagerConfig.from_mapping({"stiffness_constant": [1, 2], "other": 3})
    assert config.stiffness_constant == (1.0, 2.0)


@pytest.mark.parametrize(
    "params",
    [{"rate": 0}, {"rate": "fast"}, {"transition_time": 0.0}, {"verbose": "yes"}],
)
def test_config_rejects_bad_values(params):
    with pytest.raises(ValueError):
        ManagerConfig.from_mapping(params)


def test_config_from_yaml_with_node_layout(tmp_path):
    path = tmp_path / "params.yaml"
    path.write_text(
        yaml.safe_dump({"impedance_modulation": {"ros__parameters": {"rate": 250}}})
    )
    assert ManagerConfig.from_yaml(path).rate == 250


def test_task_msg_from_mapping():
    task = TaskMsg.from_mapping({"joints_position": [1, 2], "cartesian_space": True})
    assert task.joints_position == (1.0, 2.0)
    assert task.cartesian_space is True
    assert task.task_wrench == ()


def test_task_msg_rejects_unknown_field():
    with pytest.raises(ValueError):
        TaskMsg.from_mapping({"bogus": [1.0]})


def test_impedance_msg_to_mapping():
    msg = ImpedanceMsg([1.0], [2.0], [3.0])
    assert msg.to_mapping() == {
        "robot_stiffness": [1.0],
        "robot_damping": [2.0],
        "robot_feedforward_torque": [3.0],
    }


def test_initialization_publishes_transition():
    _, _, published = _manager()
    assert len(published) == 5
    first = published[0]
    assert first.robot_stiffness == [50.0, 50.0]
    assert first.robot_damping == [5.0, 5.0]
    assert first.robot_feedforward_torque == [0.0, 0.0]


def test_initialization_ends_above_constant_stiffness():
    manager, _, published = _manager()
    last = np.array(published[-1].robot_stiffness)
    assert np.all(last >= np.array([10.0, 10.0]))
    assert np.allclose(manager.joint_stiffness, last)


def test_initialization_ends_at_gravity_torque_without_wrench():
    manager, robot, published = _manager(wrench_initial=[0.0] * 6)
    robot.joint_positions = Q0
    assert np.allclose(published[-1].robot_feedforward_torque, robot.gravity())
    assert np.allclose(manager.feedforward_torque, robot.gravity())


def test_limits_cap_every_message():
    _, _, published = _manager(stiffness_maximum=[20.0, 20.0], damping_maximum=[1.0, 1.0])
    for msg in published:
        assert msg.robot_stiffness == [20.0, 20.0]
        assert all(value <= 1.0 for value in msg.robot_damping)
    assert published[0].robot_damping == [1.0, 1.0]


def test_mismatched_sizes_raise():
    with pytest.raises(ValueError):
        _manager(stiffness_maximum=[1.0])
    with pytest.raises(ValueError):
        _manager(stiffness_constant=[1.0, 2.0, 3.0])


def test_timer_without_task_does_nothing():
    manager, _, published = _manager()
    count = len(published)
    assert manager.timer_callback() is None
    assert len(published) == count


def test_joint_space_task():
    manager, robot, published = _manager()
    task = TaskMsg(
        joints_position_reference=(0.3, -0.2),
        joints_position=tuple(Q0),
        task_wrench=(0.0,) * 6,
        task_precision=(0.01,) * 6,
    )
    manager.on_task(task)
    assert manager.subscribed
    msg = manager.timer_callback()
    assert not manager.subscribed
    assert published[-1] is msg
    assert np.allclose(manager.joint_reference, [0.3, -0.2])
    stiffness = np.array(msg.robot_stiffness)
    damping = np.array(msg.robot_damping)
    assert np.all(stiffness >= 10.0)
    assert np.allclose(damping**2, (2 * 0.7) ** 2 * stiffness)
    robot.joint_positions = Q0
    assert np.allclose(msg.robot_feedforward_torque, robot.gravity())
    assert manager.timer_callback() is None


def test_cartesian_task_takes_reference_from_model_joints():
    manager, _, _ = _manager()
    task = TaskMsg(
        cartesian_space=True,
        task_pose_reference=(1.0, 0.0, 0.5, 0.0, 0.0, 0.0),
        joints_position=(0.0, 0.0),
        task_wrench=(0.0,) * 6,
        task_precision=(0.01,) * 6,
    )
    manager.on_task(task)
    assert np.allclose(manager.joint_reference, Q0)
    assert np.allclose(manager.joint_positions, [0.0, 0.0])


def test_spin_processes_mappings(capsys):
    manager, _, published = _manager(verbose=True)
    before = len(published)
    tasks = [
        {
            "joints_position_reference": Q0,
            "joints_position": Q0,
            "task_wrench": [0.0] * 6,
            "task_precision": [0.02] * 6,
        }
    ] * 2
    results = manager.spin(tasks)
    assert len(results) == 2
    assert published[before:] == results
    assert "Joints state:" in capsys.readouterr().err


def test_logger_records_every_step(tmp_path):
    with DataLogger(tmp_path, False) as logger:
        _, _, published = _manager(logger=logger)
    data = loadmat(str(logger.path))
    assert data["JointStiffness"].shape == (2, len(published))
    assert data["EEwrench"].shape == (6, len(published))


def test_main_runs_tasks(tmp_path):
    urdf = tmp_path / "robot.urdf"
    urdf.write_text(URDF)
    params = _params(robot_urdf_model_path=str(urdf), log_path=str(tmp_path / "logs"))
    config = tmp_path / "params.yaml"
    config.write_text(yaml.safe_dump({"/**": {"ros__parameters": params}}))
    task = {
        "joints_position_reference": Q0,
        "joints_position": Q0,
        "task_wrench": [0.0] * 6,
        "task_precision": [0.01] * 6,
    }
    tasks = tmp_path / "tasks.jsonl"
    tasks.write_text(json.dumps(task) + "\n\n" + json.dumps(task) + "\n")
    output = tmp_path / "out.jsonl"
    code = main(["--config", str(config), "--input", str(tasks), "--output", str(output)])
    assert code == 0
    lines = [json.loads(line) for line in output.read_text().splitlines()]
    assert len(lines) == 7
    assert all(len(line["robot_stiffness"]) == 2 for line in lines)
    assert len(list((tmp_path / "logs").glob("*.mat"))) == 1


def test_main_reports_missing_urdf(tmp_path):
    config = tmp_path / "params.yaml"
    config.write_text(yaml.safe_dump(_params(robot_urdf_model_path=str(tmp_path / "none.urdf"))))
    assert main(["--config", str(config)]) == 1