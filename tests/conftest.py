"""Pytest configuration and fixtures."""

import time

import numpy as np
import pytest

from motionquality.pose.base_estimator import (
    COCO17_TO_MEDIAPIPE,
    BasePoseEstimator,
    InitializationError,
    KeypointFormat,
    MEDIAPIPE_33_LANDMARKS,
    ModelAResult,
    ModelBResult,
)
from motionquality.pose.model_fusion import FusedPose, Landmark

# Upright person facing the camera, normalized image coordinates
STANDING_POSE = {
    "nose": (0.50, 0.10),
    "left_shoulder": (0.40, 0.25),
    "right_shoulder": (0.60, 0.25),
    "left_elbow": (0.38, 0.40),
    "right_elbow": (0.62, 0.40),
    "left_wrist": (0.37, 0.55),
    "right_wrist": (0.63, 0.55),
    "left_hip": (0.45, 0.55),
    "right_hip": (0.55, 0.55),
    "left_knee": (0.45, 0.75),
    "right_knee": (0.55, 0.75),
    "left_ankle": (0.45, 0.95),
    "right_ankle": (0.55, 0.95),
    "left_foot_index": (0.42, 0.98),
    "right_foot_index": (0.58, 0.98),
}


def standing_pose_array(visibility: float = 0.9) -> np.ndarray:
    """Build a (33, 4) [x, y, z, visibility] array for an upright pose."""
    array = np.zeros((33, 4))
    for idx, name in enumerate(MEDIAPIPE_33_LANDMARKS):
        x, y = STANDING_POSE.get(name, (0.5, 0.08 + 0.002 * idx))
        array[idx] = [x, y, 0.0, visibility]
    return array


def fused_pose_from_array(array: np.ndarray, timestamp: float = 0.0) -> FusedPose:
    """Wrap a (33, 4) array as a FusedPose with confidence = visibility."""
    landmarks = [
        Landmark(
            index=idx,
            name=MEDIAPIPE_33_LANDMARKS[idx],
            x=float(row[0]),
            y=float(row[1]),
            z=float(row[2]),
            visibility=float(row[3]),
            confidence=float(row[3]),
        )
        for idx, row in enumerate(array)
    ]
    return FusedPose(
        landmarks=landmarks,
        overall_confidence=float(np.mean(array[:, 3])),
        model_agreement=1.0,
        timestamp=timestamp,
    )


def coco_array_from_pose(array: np.ndarray, confidence: float | None = None) -> np.ndarray:
    """Project a (33, 4) pose array onto a (17, 3) COCO [x, y, conf] array."""
    coco = np.zeros((17, 3))
    for coco_idx, mp_idx in COCO17_TO_MEDIAPIPE.items():
        conf = array[mp_idx, 3] if confidence is None else confidence
        coco[coco_idx] = [array[mp_idx, 0], array[mp_idx, 1], conf]
    return coco


class FakeEstimator(BasePoseEstimator):
    """Scripted detector for tests.

    Returns ``results`` in order (repeating the last one); an entry may be
    None (no person) or an Exception instance (raised).
    """

    def __init__(
        self,
        results,
        keypoint_format: KeypointFormat = KeypointFormat.MEDIAPIPE_33,
        fail_init: bool = False,
        delay: float = 0.0,
        on_detect=None,
    ):
        super().__init__(f"fake_{keypoint_format.value}")
        self.results = list(results)
        self.keypoint_format = keypoint_format
        self.fail_init = fail_init
        self.delay = delay
        self.on_detect = on_detect
        self.calls = 0

    def initialize(self):
        if self.fail_init:
            raise InitializationError("fake model missing")
        self.model = object()

    def detect(self, frame):
        self.calls += 1
        if self.on_detect is not None:
            self.on_detect()
        if self.delay:
            time.sleep(self.delay)

        idx = min(self.calls - 1, len(self.results) - 1)
        result = self.results[idx] if self.results else None
        if isinstance(result, Exception):
            raise result
        return result

    def get_keypoint_format(self) -> KeypointFormat:
        return self.keypoint_format


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def sample_frame():
    """Create a sample BGR frame for testing.

    Returns:
        Numpy array representing a 640x480 BGR image.
    """
    return np.zeros((480, 640, 3), dtype=np.uint8)


@pytest.fixture
def standing_array():
    """(33, 4) array for an upright, fully visible pose."""
    return standing_pose_array()


@pytest.fixture
def standing_pose(standing_array):
    """FusedPose for an upright, fully visible pose."""
    return fused_pose_from_array(standing_array)


@pytest.fixture
def model_a_result(standing_array):
    """MediaPipe-style result for the upright pose."""
    return ModelAResult.from_array(standing_array)


@pytest.fixture
def model_b_result(standing_array):
    """YOLO-style result for the upright pose."""
    return ModelBResult.from_array(coco_array_from_pose(standing_array))


@pytest.fixture
def fake_clock():
    """Manually advanced clock starting at t=100s."""
    return FakeClock()
