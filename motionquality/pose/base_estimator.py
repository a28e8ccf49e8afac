"""Unified pose detector interface.

Supports:
- MediaPipe Pose (33 landmarks, with depth)
- YOLO11-Pose (Ultralytics, 17 COCO keypoints, 2D)

Every provider returns one of two typed result variants in normalized image
coordinates, so fusion never has to care which backend produced a frame.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar

import numpy as np


class InitializationError(RuntimeError):
    """A pose detector could not load its model."""


class KeypointFormat(Enum):
    """Keypoint format standards."""

    COCO_17 = "coco17"  # 17 keypoints (YOLO)
    MEDIAPIPE_33 = "mediapipe"  # 33 landmarks, canonical topology


# Keypoint name mappings for different formats
COCO_17_KEYPOINTS = [
    "nose",
    "left_eye",
    "right_eye",
    "left_ear",
    "right_ear",
    "left_shoulder",
    "right_shoulder",
    "left_elbow",
    "right_elbow",
    "left_wrist",
    "right_wrist",
    "left_hip",
    "right_hip",
    "left_knee",
    "right_knee",
    "left_ankle",
    "right_ankle",
]

MEDIAPIPE_33_LANDMARKS = [
    "nose",
    "left_eye_inner",
    "left_eye",
    "left_eye_outer",
    "right_eye_inner",
    "right_eye",
    "right_eye_outer",
    "left_ear",
    "right_ear",
    "mouth_left",
    "mouth_right",
    "left_shoulder",
    "right_shoulder",
    "left_elbow",
    "right_elbow",
    "left_wrist",
    "right_wrist",
    "left_pinky",
    "right_pinky",
    "left_index",
    "right_index",
    "left_thumb",
    "right_thumb",
    "left_hip",
    "right_hip",
    "left_knee",
    "right_knee",
    "left_ankle",
    "right_ankle",
    "left_heel",
    "right_heel",
    "left_foot_index",
    "right_foot_index",
]

# Name -> canonical index
LANDMARK_INDEX = {name: idx for idx, name in enumerate(MEDIAPIPE_33_LANDMARKS)}

# Every COCO-17 keypoint has a same-named MediaPipe landmark
COCO17_TO_MEDIAPIPE = {coco_idx: LANDMARK_INDEX[name] for coco_idx, name in enumerate(COCO_17_KEYPOINTS)}


@dataclass
class RawLandmark:
    """One model's estimate of one landmark, in normalized image coordinates."""

    x: float
    y: float
    z: float | None = None  # None when the model is 2D only
    confidence: float = 0.0

    def __post_init__(self):
        if not (np.isfinite(self.x) and np.isfinite(self.y)):
            raise ValueError(f"Landmark coordinates must be finite, got ({self.x}, {self.y})")
        if self.z is not None and not np.isfinite(self.z):
            self.z = None
        self.x = float(self.x)
        self.y = float(self.y)
        self.confidence = float(np.clip(np.nan_to_num(self.confidence), 0.0, 1.0))


@dataclass
class _ProviderResult:
    landmarks: list[RawLandmark]
    timestamp: float | None = None
    metadata: dict = field(default_factory=dict)

    MODEL_NAME: ClassVar[str] = ""
    FORMAT: ClassVar[KeypointFormat]
    NUM_POINTS: ClassVar[int] = 0

    def __post_init__(self):
        if len(self.landmarks) != self.NUM_POINTS:
            raise ValueError(
                f"{type(self).__name__} expects {self.NUM_POINTS} landmarks, "
                f"got {len(self.landmarks)}"
            )

    @property
    def model_name(self) -> str:
        return self.MODEL_NAME

    @property
    def mean_confidence(self) -> float:
        return float(np.mean([lm.confidence for lm in self.landmarks]))


@dataclass
class ModelAResult(_ProviderResult):
    """MediaPipe output: 33 canonical landmarks with depth."""

    MODEL_NAME: ClassVar[str] = "mediapipe"
    FORMAT: ClassVar[KeypointFormat] = KeypointFormat.MEDIAPIPE_33
    NUM_POINTS: ClassVar[int] = 33

    @classmethod
    def from_array(cls, array: np.ndarray, timestamp: float | None = None) -> "ModelAResult":
        """Build from a (33, 4) array of [x, y, z, visibility]."""
        array = np.asarray(array, dtype=float)
        if array.ndim != 2 or array.shape[1] < 4:
            raise ValueError(f"Expected (33, 4) array, got shape {array.shape}")
        landmarks = [RawLandmark(x=row[0], y=row[1], z=row[2], confidence=row[3]) for row in array]
        return cls(landmarks=landmarks, timestamp=timestamp)


@dataclass
class ModelBResult(_ProviderResult):
    """YOLO pose output: 17 COCO keypoints, 2D, normalized by image size."""

    MODEL_NAME: ClassVar[str] = "yolo"
    FORMAT: ClassVar[KeypointFormat] = KeypointFormat.COCO_17
    NUM_POINTS: ClassVar[int] = 17

    @classmethod
    def from_array(cls, array: np.ndarray, timestamp: float | None = None) -> "ModelBResult":
        """Build from a (17, 3) array of [x, y, confidence]."""
        array = np.asarray(array, dtype=float)
        if array.ndim != 2 or array.shape[1] < 3:
            raise ValueError(f"Expected (17, 3) array, got shape {array.shape}")
        landmarks = [RawLandmark(x=row[0], y=row[1], confidence=row[2]) for row in array]
        return cls(landmarks=landmarks, timestamp=timestamp)


ProviderResult = ModelAResult | ModelBResult


class BasePoseEstimator(ABC):
    """Abstract base class for pose detectors."""

    def __init__(
        self,
        model_name: str,
        device: str = "cpu",
        confidence: float = 0.5,
    ):
        """Initialize pose detector.

        Args:
            model_name: Name/path of the model.
            device: Device to run on (cpu, cuda, mps).
            confidence: Confidence threshold.
        """
        self.model_name = model_name
        self.device = device
        self.confidence = confidence
        self.model = None

    @abstractmethod
    def initialize(self):
        """Load the model.

        Raises:
            InitializationError: If the model cannot be loaded.
        """

    @abstractmethod
    def detect(self, frame: np.ndarray) -> ProviderResult | None:
        """Detect the pose in one frame.

        Args:
            frame: Input image (BGR format).

        Returns:
            Provider result in normalized coordinates, or None if no person
            was found.
        """

    @abstractmethod
    def get_keypoint_format(self) -> KeypointFormat:
        """Get the keypoint format this model outputs."""

    @property
    def is_initialized(self) -> bool:
        return self.model is not None

    def close(self):
        """Release model resources."""
        self.model = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def get_model_info(self) -> dict:
        """Get model information.

        Returns:
            Dictionary with model metadata.
        """
        return {
            "name": self.model_name,
            "device": self.device,
            "confidence_threshold": self.confidence,
            "format": self.get_keypoint_format().value,
            "initialized": self.is_initialized,
        }
