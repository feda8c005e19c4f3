# impedance-modulation

Joint impedance modulation for serial robot arms.

Given a task (a joint or Cartesian reference, the current joint state, the
wrench the end effector has to apply and the precision it must keep), the
package works out joint stiffness, joint damping and a feed-forward torque
for each joint:

- the desired end-effector wrench is the absolute value of the gravity
  wrench (`pinv(Jᵀ) · τ_g`) plus the task wrench;
- the Cartesian stiffness is that wrench divided element-wise by the
  requested precision;
- it is mapped into joint space through the Jacobian, `K_J = K_0 + Jᵀ K_C J`;
- the diagonal of `K_J` becomes the joint stiffness, and the damping is
  `2·ξ·√|k|` with `ξ = 0.7`;
- the feed-forward torque is gravity compensation, plus the off-diagonal
  part of `K_J` times the joint error `q_ref − q`, plus `Jᵀ` times the task
  wrench;
- stiffness and damping are capped at the configured maxima.

When a manager is created it blends from the preset stiffness and damping
to those of the initial task, following the quintic profile
`t = 10s³ − 15s⁴ + 6s⁵` with `s` running from 0 to 1 over the transition
time in steps of `1 / rate`, and publishes a message at every step.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Command line

```
impedance-modulation [--config CONFIG.yaml] [--input TASKS] [--output MESSAGES]
```

The command reads the YAML configuration (defaults are used without one),
loads the chain between the base and tip frames from the URDF file it names,
and builds the manager, which first publishes the start-up blend. It then
reads tasks, one JSON object per line, from `--input` (standard input by
default) and writes each impedance message as one JSON line to `--output`
(standard output by default). Status lines go to standard error. Every
published step is recorded in a `.mat` file in `log_path`. Errors in the
configuration, the URDF or the task lines are reported on standard error and
the command exits with status 1.

A task line holds any of these fields; omitted vectors are empty:

```json
{"cartesian_space": false,
 "joints_position": [0, 0, 0],
 "joints_position_reference": [0.1, 0.1, 0.1],
 "task_pose_reference": [],
 "task_wrench": [0, 0, 5, 0, 0, 0],
 "task_precision": [0.01, 0.01, 0.01, 0.1, 0.1, 0.1]}
```

Unknown fields are rejected. With `cartesian_space` true, the pose
`[x, y, z, roll, pitch, yaw]` is set on the robot model, forward kinematics
is run, and the joint reference becomes the model's current joint positions.

An output line has the form

```json
{"robot_stiffness": [...], "robot_damping": [...], "robot_feedforward_torque": [...]}
```

## Configuration

A configuration file holds the parameters, either at the top level or under
`<node name>: ros__parameters:`. Every key is optional; keys that are not
parameters are ignored. The values below are the defaults except the
vectors, which default to empty:

```yaml
rate: 1000
topic_subscriber_name: task_planner
topic_publisher_name: robot_IM_planner
log_path: /tmp/
verbose: false
stiffness_preset:   [100, 100, 100]
stiffness_constant: [10, 10, 10]
stiffness_maximum:  [1000, 1000, 1000]
damping_preset:     [5, 5, 5]
damping_maximum:    [50, 50, 50]
wrench_initial:     [0, 0, 0, 0, 0, 0]
precision_initial:  [0.01, 0.01, 0.01, 0.1, 0.1, 0.1]
robot_initial_config: [0, 0, 0]
robot_urdf_model_path: /tmp/robot.urdf
robot_base_frame_name: base_link
robot_tip_frame_name: end_effector
transition_time: 5.0
```

`stiffness_constant` fixes the number of joints; the other joint vectors and
the robot chain must match it, and `wrench_initial` and `precision_initial`
need six values. `rate` and `transition_time` must be positive. With
`verbose` set, each processed task is echoed to standard error. The two
topic names are read and kept in the configuration but not used.

## Library use

```python
from impedance_modulation.kinematics import load_robot
from impedance_modulation.logger import DataLogger
from impedance_modulation.manager import ImpedanceModulationManager, ManagerConfig

config = ManagerConfig.from_yaml("config.yaml")
robot = load_robot(
    config.robot_urdf_model_path,
    config.robot_base_frame_name,
    config.robot_tip_frame_name,
)

published = []
with DataLogger("/tmp/", False) as logger:
    # Creating the manager publishes the start-up blend.
    manager = ImpedanceModulationManager(config, robot, published.append, logger)
    replies = manager.spin([
        {
            "joints_position": [0.0, 0.0, 0.0],
            "joints_position_reference": [0.1, 0.1, 0.1],
            "task_wrench": [0, 0, 5, 0, 0, 0],
            "task_precision": [0.01, 0.01, 0.01, 0.1, 0.1, 0.1],
        }
    ])

for msg in replies:
    print(msg.to_mapping())
```

`spin` accepts `TaskMsg` objects or mappings, handles each one at once
(`on_task` followed by `timer_callback`) and returns the messages published
for them. `timer_callback` does nothing and returns `None` when no task is
pending. The manager also exposes `joint_stiffness`, `joint_damping`,
`feedforward_torque`, `joint_positions`, `joint_reference` and
`subscribed`.

### Modules

- `impedance_modulation.algebra` — `pseudo_inverse` (SVD based),
  `skew_matrix`, conversions between Euler angles, `[x, y, z, w]`
  quaternions and rotation matrices (`quat_to_euler`, `euler_to_quat`,
  `eulers_to_quats`, `rot_to_quat`, …), homogeneous transforms
  (`min_to_t`, `t_to_min`, `t_to_min_deg`, `t_to_min_quat`,
  `transformation_rot_trasl`) and `deg_to_rad` / `rad_to_deg`.
- `impedance_modulation.utilities` — `to_array`, `to_list` and
  `to_quaternion_pose`, which turns `[x, y, z, r, p, y]` poses into
  `[x, y, z, qx, qy, qz, qw]` poses.
- `impedance_modulation.logger` — `DataLogger`, which collects samples per
  variable name and writes them, one column per sample, to
  `log__<timestamp>.mat` in its directory on `save()` or `close()`. With
  `limited` set, only the last 10 000 samples of each variable are kept.
- `impedance_modulation.kinematics` — `KinematicChain`, read from a URDF
  string or file between two links (revolute, continuous and prismatic
  joints move; other joints are fixed; link masses and centres of mass come
  from `<inertial>`), and `RobotModel` with `forward_kinematics`,
  Newton-Raphson `inverse_kinematics`, `pose`, the 6 × n `jacobian` and
  `gravity` torques. `load_robot` builds a model from a file. Bad
  descriptions raise `URDFError`.
- `impedance_modulation.manager` — `TaskMsg`, `ImpedanceMsg`,
  `ManagerConfig`, `ImpedanceModulationManager` and the command's `main`.

## What it does not do

The package does not connect to a robot or to any message bus: there is no
subscription to a task topic, no publisher and no periodic timer. Tasks come
from an iterable or from JSON lines, and messages go to a callable or to
JSON lines, each task being processed as soon as it is read.