"""Pose detection and fusion module."""

from motionquality.pose.base_estimator import (
    BasePoseEstimator,
    InitializationError,
    KeypointFormat,
    ModelAResult,
    ModelBResult,
    RawLandmark,
)
from motionquality.pose.model_fusion import FusedPose, FusionConfig, Landmark, PoseFusionEngine

__all__ = [
    "BasePoseEstimator",
    "InitializationError",
    "KeypointFormat",
    "ModelAResult",
    "ModelBResult",
    "RawLandmark",
    "FusedPose",
    "FusionConfig",
    "Landmark",
    "PoseFusionEngine",
]
