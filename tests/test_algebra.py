import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from impedance_modulation import algebra


def _same_quat(a, b):
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    return np.allclose(a, b, atol=1e-6) or np.allclose(a, -b, atol=1e-6)


def test_pseudo_inverse_matches_numpy_for_full_rank():
    m = np.array([[1.0, 2.0, 3.0], [0.5, -1.0, 4.0]])
    assert np.allclose(algebra.pseudo_inverse(m), np.linalg.pinv(m))


def test_pseudo_inverse_penrose_conditions_rank_deficient():
    m = np.array([[1.0, 2.0], [2.0, 4.0], [3.0, 6.0]])
    p = algebra.pseudo_inverse(m)
    assert p.shape == (2, 3)
    assert np.allclose(m @ p @ m, m)
    assert np.allclose(p @ m @ p, p)
    assert np.allclose((m @ p).T, m @ p)


def test_pseudo_inverse_of_zero_matrix_is_zero():
    p = algebra.pseudo_inverse(np.zeros((2, 3)))
    assert p.shape == (3, 2)
    assert np.all(p == 0.0)


def test_skew_matrix_reproduces_cross_product():
    p = np.array([0.3, -1.2, 2.0])
    v = np.array([1.5, 0.7, -0.4])
    s = algebra.skew_matrix(p)
    assert np.allclose(s @ v, np.cross(p, v))
    assert np.allclose(s.T, -s)


def test_quat_to_euler_rad_quarter_turn_about_x():
    half = np.sqrt(0.5)
    angles = algebra.quat_to_euler_rad([half, 0.0, 0.0, half])
    assert np.allclose(angles, [np.pi / 2, 0.0, 0.0])


@pytest.mark.parametrize(
    "angles", [[0.2, -0.4, 1.1], [-0.5, 0.2, 0.3], [2.5, 1.0, -2.0]]
)
def test_quat_to_euler_rad_reconstructs_rotation(angles):
    rotation = Rotation.from_euler("XYZ", angles)
    result = algebra.quat_to_euler_rad(rotation.as_quat())
    assert 0.0 <= result[0] <= np.pi
    rebuilt = Rotation.from_euler("XYZ", result).as_matrix()
    assert np.allclose(rebuilt, rotation.as_matrix())


def test_quat_to_euler_normalises_input():
    quat = Rotation.from_euler("XYZ", [0.1, 0.2, 0.3]).as_quat()
    assert np.allclose(
        algebra.quat_to_euler_rad(quat * 3.0), algebra.quat_to_euler_rad(quat)
    )


def test_quat_to_euler_degree_flag():
    quat = Rotation.from_euler("XYZ", [0.1, 0.2, 0.3]).as_quat()
    rad = algebra.quat_to_euler(quat, False)
    deg = algebra.quat_to_euler(quat, True)
    assert np.allclose(deg, np.degrees(rad))
    assert np.allclose(algebra.quat_to_euler_deg(quat), deg)


def test_quat_to_euler_rejects_short_input():
    with pytest.raises(ValueError):
        algebra.quat_to_euler_rad([1.0, 0.0, 0.0])


def test_euler_to_quat_takes_degrees_and_single_precision():
    angles_deg = [30.0, -20.0, 45.0]
    quat = algebra.euler_to_quat(angles_deg)
    assert quat.dtype == np.float32
    expected = Rotation.from_euler("xyz", np.radians(angles_deg)).as_quat()
    assert _same_quat(quat, expected)
    assert np.allclose(algebra.euler_to_quat_vec(angles_deg), quat)


def test_eulers_to_quats_handles_every_triple():
    angles = [10.0, 20.0, 30.0, -40.0, 5.0, 60.0, 1.0]
    quats = algebra.eulers_to_quats_rad(angles)
    assert quats.shape == (8,)
    assert np.allclose(quats[:4], algebra.euler_to_quat_vec(angles[:3]))
    assert np.allclose(quats[4:], algebra.euler_to_quat_vec(angles[3:6]))
    assert np.allclose(np.linalg.norm(quats.reshape(2, 4), axis=1), 1.0, atol=1e-6)


def test_eulers_to_quats_degree_variant_scales_components():
    angles = [10.0, 20.0, 30.0]
    rad = algebra.eulers_to_quats(angles, False)
    deg = algebra.eulers_to_quats(angles, True)
    assert np.allclose(deg, np.degrees(rad))
    assert np.allclose(algebra.eulers_to_quats_deg(angles), deg)


def test_rot_to_quat_identity():
    assert np.allclose(algebra.rot_to_quat(np.eye(3)), [0.0, 0.0, 0.0, 1.0])


@pytest.mark.parametrize(
    "angles", [[0.3, 0.2, 0.1], [3.0, 0.1, 0.0], [0.0, 3.1, 0.2], [0.1, 0.0, 3.1]]
)
def test_rot_to_quat_matches_rotation(angles):
    rotation = Rotation.from_euler("XYZ", angles)
    quat = algebra.rot_to_quat(rotation.as_matrix())
    assert np.linalg.norm(quat) == pytest.approx(1.0)
    assert abs(float(np.dot(quat, rotation.as_quat()))) == pytest.approx(1.0, abs=1e-9)


def test_rot_to_quat_rejects_wrong_shape():
    with pytest.raises(ValueError):
        algebra.rot_to_quat(np.eye(4))


def test_transformation_rot_trasl_splits_transform():
    rot = Rotation.from_euler("XYZ", [0.4, -0.3, 0.9]).as_matrix()
    t = np.eye(4)
    t[:3, :3] = rot
    t[:3, 3] = [1.0, 2.0, 3.0]
    r, trasl = algebra.transformation_rot_trasl(t)
    assert np.allclose(r, rot)
    assert np.allclose(trasl, [1.0, 2.0, 3.0])


def test_min_to_t_euler_composes_z_y_x():
    angles = [0.3, -0.2, 1.0]
    t = algebra.min_to_t([1.0, -2.0, 0.5], angles, False)
    expected = Rotation.from_euler("xyz", angles).as_matrix()
    assert np.allclose(t[:3, :3], expected)
    assert np.allclose(t[:3, 3], [1.0, -2.0, 0.5])
    assert np.allclose(t[3], [0.0, 0.0, 0.0, 1.0])


def test_min_to_t_degrees_matches_radians():
    deg = algebra.min_to_t([0.0, 0.0, 0.0], [30.0, 45.0, 60.0], True)
    rad = algebra.min_to_t([0.0, 0.0, 0.0], np.radians([30.0, 45.0, 60.0]), False)
    assert np.allclose(deg, rad)


def test_min_to_t_quaternion_round_trip():
    quat = Rotation.from_euler("XYZ", [0.5, 0.1, -0.7]).as_quat()
    t = algebra.min_to_t([0.1, 0.2, 0.3], quat, False)
    result = algebra.t_to_min_quat(t)
    assert np.allclose(result[:3], [0.1, 0.2, 0.3])
    assert abs(float(np.dot(result[3:], quat))) == pytest.approx(1.0, abs=1e-9)


def test_min_to_t_rejects_bad_orientation():
    with pytest.raises(ValueError):
        algebra.min_to_t([0.0, 0.0, 0.0], [1.0, 2.0], False)


def test_t_to_min_reconstructs_transform():
    t = algebra.min_to_t([0.4, 0.5, 0.6], [0.7, -0.3, 2.0], False)
    result = algebra.t_to_min(t)
    assert result.shape == (6,)
    assert np.allclose(result[:3], [0.4, 0.5, 0.6])
    rebuilt = Rotation.from_euler("XYZ", result[3:]).as_matrix()
    assert np.allclose(rebuilt, t[:3, :3])


def test_t_to_min_deg_converts_angles():
    t = algebra.min_to_t([0.4, 0.5, 0.6], [0.7, -0.3, 2.0], False)
    rad = algebra.t_to_min(t)
    deg = algebra.t_to_min_deg(t)
    assert np.allclose(deg[:3], rad[:3])
    assert np.allclose(deg[3:], np.degrees(rad[3:]))


def test_degree_radian_round_trip():
    values = np.array([-270.0, 0.0, 12.5, 360.0])
    assert np.allclose(algebra.rad_to_deg(algebra.deg_to_rad(values)), values)
    assert np.isclose(algebra.rad_to_deg([np.pi])[0], 180.0)