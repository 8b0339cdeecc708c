"""
Tests for camera frame decoding and the vision observation filter.
"""

import math

import pytest

from swerve_nav.config import CAMERA_TRANSFORMS, VisionConfig
from swerve_nav.geometry import Pose2d, Pose3d, Quaternion, Transform3d
from swerve_nav.io import VisionFrame
from swerve_nav.vision import DEFAULT_TAGS, FieldLayout, VisionFilter, choose_hypothesis

IDENTITY = VisionConfig(camera_transforms=(Transform3d(),), camera_weights=(1.0,))


def pose_values(x, y, z=0.0, yaw=0.0):
    q = Quaternion.from_euler(0.0, 0.0, yaw)
    return [x, y, z, q.w, q.x, q.y, q.z]


def single_frame(x, y, z=0.0, yaw=0.0, tag_ids=(14,), timestamp_us=1_000_000, error=0.1):
    return VisionFrame(timestamp_us, tuple([1, error] + pose_values(x, y, z, yaw) + list(tag_ids)))


def dual_frame(pose0, pose1, error0, error1, tag_ids=(14,), timestamp_us=1_000_000):
    values = [2, error0] + pose_values(*pose0) + [error1] + pose_values(*pose1) + list(tag_ids)
    return VisionFrame(timestamp_us, tuple(values))


@pytest.fixture
def vision_filter(clock):
    return VisionFilter(IDENTITY, FieldLayout(), clock=clock)


@pytest.mark.parametrize(
    "error0,error1,expected",
    [
        (1.0, 5.0, 0),
        (1.0, 10.0, 0),
        (1.0, 2.0, None),
        (10.0, 1.0, 1),
        (0.0, 0.0, None),
    ],
)
def test_choose_hypothesis(error0, error1, expected):
    assert choose_hypothesis(error0, error1, 0.3) == expected


def test_single_hypothesis_frame(vision_filter):
    observations = vision_filter.process([[single_frame(3.0, 2.5, yaw=0.4)]])
    assert len(observations) == 1
    pose = observations[0].pose
    assert pose.x == pytest.approx(3.0)
    assert pose.y == pytest.approx(2.5)
    assert pose.theta == pytest.approx(0.4)


def test_timestamp_converted_from_microseconds(vision_filter):
    observations = vision_filter.process([[single_frame(3.0, 2.5, timestamp_us=1_500_000)]])
    assert observations[0].timestamp == pytest.approx(1.5)


def test_dual_hypothesis_picks_lower_error(vision_filter):
    frame = dual_frame((3.0, 2.0, 0.0, 0.0), (6.0, 5.0, 0.0, 1.0), error0=4.0, error1=0.5)
    observations = vision_filter.process([[frame]])
    assert len(observations) == 1
    assert observations[0].pose.x == pytest.approx(6.0)
    assert observations[0].pose.theta == pytest.approx(1.0)


def test_ambiguous_dual_frame_is_dropped(vision_filter):
    frame = dual_frame((3.0, 2.0, 0.0, 0.0), (6.0, 5.0, 0.0, 1.0), error0=1.0, error1=1.2)
    assert vision_filter.process([[frame]]) == []
    assert vision_filter.frames_dropped == 1
    assert vision_filter.get_diagnostics()["error1"] == pytest.approx(1.2)


@pytest.mark.parametrize(
    "x,y,z",
    [
        (-0.6, 2.0, 0.0),
        (2.0, FieldLayout().field_width + 0.6, 0.0),
        (2.0, 2.0, 1.0),
    ],
)
def test_invalid_poses_are_rejected(vision_filter, x, y, z):
    assert vision_filter.process([[single_frame(x, y, z)]]) == []
    assert vision_filter.last_invalid_pose is not None


def test_pose_within_border_margin_is_accepted(vision_filter):
    assert len(vision_filter.process([[single_frame(-0.4, 2.0)]])) == 1


def test_std_devs_scale_with_distance_and_tag_count(vision_filter):
    camera = Pose3d(*pose_values(2.0, 2.0)[:3])
    observations = vision_filter.process([[single_frame(2.0, 2.0, tag_ids=(14, 16))]])

    tags = [DEFAULT_TAGS[14], DEFAULT_TAGS[16]]
    average = sum(camera.distance(tag) for tag in tags) / 2
    expected_xy = IDENTITY.xy_std_dev_coefficient * average**2 / 2
    expected_theta = IDENTITY.theta_std_dev_coefficient * average**2 / 2

    std_devs = observations[0].std_devs
    assert std_devs[0] == pytest.approx(expected_xy)
    assert std_devs[1] == pytest.approx(expected_xy)
    assert std_devs[2] == pytest.approx(expected_theta)


def test_camera_weight_divides_std_devs(clock):
    weighted = VisionFilter(
        VisionConfig(camera_transforms=(Transform3d(),), camera_weights=(0.5,)), clock=clock
    )
    plain = VisionFilter(IDENTITY, clock=clock)
    frame = single_frame(3.0, 3.0)
    weighted_std = weighted.process([[frame]])[0].std_devs[0]
    plain_std = plain.process([[frame]])[0].std_devs[0]
    assert weighted_std == pytest.approx(plain_std * 2.0)


def test_unknown_tags_are_ignored(vision_filter):
    assert vision_filter.process([[single_frame(3.0, 2.0, tag_ids=(99,))]]) == []
    observations = vision_filter.process([[single_frame(3.0, 2.0, tag_ids=(99, 14))]])
    assert len(observations) == 1


@pytest.mark.parametrize(
    "values",
    [
        (),
        (0, 0.1, 1.0),
        (1, 0.1, 3.0, 2.0),
        (2, 0.1, 3.0, 2.0, 0.0, 1.0, 0.0, 0.0, 0.0, 0.5),
        (7, 0.1, 3.0, 2.0, 0.0, 1.0, 0.0, 0.0, 0.0, 14),
        (math.nan, 0.1, 3.0, 2.0, 0.0, 1.0, 0.0, 0.0, 0.0, 14),
        (math.inf, 0.1, 3.0, 2.0, 0.0, 1.0, 0.0, 0.0, 0.0, 14),
        (1, 0.1, 3.0, 2.0, 0.0, 1.0, 0.0, 0.0, 0.0, math.nan),
        (1, 0.1, 3.0, 2.0, 0.0, 1.0, 0.0, 0.0, 0.0, -math.inf),
        (1, 0.1, math.nan, 2.0, 0.0, 1.0, 0.0, 0.0, 0.0, 14),
        (1, 0.1, 3.0, 2.0, 0.0, math.nan, 0.0, 0.0, 0.0, 14),
    ],
)
def test_malformed_frames_produce_nothing(vision_filter, values):
    assert vision_filter.process([[VisionFrame(0, values)]]) == []


def test_non_finite_frames_are_counted_and_skipped(vision_filter):
    good = single_frame(3.0, 2.0)
    bad_id = VisionFrame(1_000_000, good.values[:-1] + (math.nan,))
    bad_format = VisionFrame(1_000_000, (math.nan,) + good.values[1:])

    observations = vision_filter.process([[bad_id, bad_format, good]])

    assert len(observations) == 1
    assert vision_filter.frames_dropped == 2
    assert vision_filter.get_diagnostics()["detection_count"] == 1


def test_tag_weights_divide_std_devs(clock):
    config = VisionConfig(
        camera_transforms=(Transform3d(),), camera_weights=(1.0,), tag_weights={14: 0.5, 16: 2.0}
    )
    weighted = VisionFilter(config, clock=clock)
    plain = VisionFilter(IDENTITY, clock=clock)

    single = single_frame(3.0, 3.0, tag_ids=(14,))
    assert weighted.process([[single]])[0].std_devs[0] == pytest.approx(
        plain.process([[single]])[0].std_devs[0] * 2.0
    )

    # Mean weight of 14 and 16 is 1.25; unlisted tags count as 1.0
    pair = single_frame(3.0, 3.0, tag_ids=(14, 16))
    assert weighted.process([[pair]])[0].std_devs[0] == pytest.approx(
        plain.process([[pair]])[0].std_devs[0] / 1.25
    )
    other = single_frame(3.0, 3.0, tag_ids=(13,))
    assert weighted.process([[other]])[0].std_devs[0] == pytest.approx(
        plain.process([[other]])[0].std_devs[0]
    )


def test_camera_without_transform_is_dropped(vision_filter):
    frame = single_frame(3.0, 2.0)
    assert vision_filter.process([[], [frame]]) == []


def test_visible_tags_expire(vision_filter, clock):
    vision_filter.process([[single_frame(2.0, 2.0, tag_ids=(14, 16, 99))]])
    clock.advance(0.05)
    assert vision_filter.get_visible_tags() == [14, 16, 99]
    clock.advance(0.1)
    assert vision_filter.get_visible_tags() == []


def test_default_camera_transforms_recover_robot_pose(clock):
    vision_filter = VisionFilter(clock=clock)
    robot = Pose2d.from_xy_theta(3.0, 4.0, 0.7)

    frames = []
    for transform in CAMERA_TRANSFORMS:
        camera = Pose3d.from_pose2d(robot).transform_by(transform.inverse())
        values = [1, 0.1, camera.x, camera.y, camera.z] + list(camera.rotation.as_tuple()) + [14]
        frames.append([VisionFrame(2_000_000, tuple(values))])

    observations = vision_filter.process(frames)
    assert len(observations) == len(CAMERA_TRANSFORMS)
    for observation in observations:
        assert observation.pose.x == pytest.approx(robot.x, abs=1e-9)
        assert observation.pose.y == pytest.approx(robot.y, abs=1e-9)
        assert math.cos(observation.pose.theta - robot.theta) == pytest.approx(1.0)


def test_field_layout_from_json(tmp_path):
    path = tmp_path / "layout.json"
    path.write_text(
        '{"tags": [{"ID": 3, "pose": {"translation": {"x": 1.0, "y": 2.0, "z": 0.5},'
        ' "rotation": {"quaternion": {"W": 1.0, "X": 0.0, "Y": 0.0, "Z": 0.0}}}}],'
        ' "field": {"length": 10.0, "width": 5.0}}'
    )
    layout = FieldLayout.from_json(str(path))
    assert layout.field_length == 10.0
    assert layout.field_width == 5.0
    assert layout.get_tag_pose(3) == Pose3d(1.0, 2.0, 0.5, Quaternion(1.0, 0.0, 0.0, 0.0))
    assert layout.get_tag_pose(4) is None
