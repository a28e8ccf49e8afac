"""MediaPipe Pose wrapper (primary detector).

MediaPipe is a lightweight, cross-platform pose estimation solution that
runs on CPU in real time. Its 33-landmark topology is the canonical one
for fusion and scoring.

Install: pip install motionquality[detectors]
"""

import logging
import time

import cv2
import numpy as np

from motionquality.pose.base_estimator import (
    BasePoseEstimator,
    InitializationError,
    KeypointFormat,
    ModelAResult,
    RawLandmark,
)

logger = logging.getLogger(__name__)

try:
    import mediapipe as mp
    MEDIAPIPE_AVAILABLE = True
except ImportError:
    MEDIAPIPE_AVAILABLE = False
    logger.warning("MediaPipe not available. Install with: pip install motionquality[detectors]")


class MediaPipeEstimator(BasePoseEstimator):
    """MediaPipe Pose wrapper producing ModelAResult frames."""

    def __init__(
        self,
        model_complexity: int = 1,  # 0=lite, 1=full, 2=heavy
        min_detection_confidence: float = 0.7,
        min_tracking_confidence: float = 0.5,
        smooth_landmarks: bool = True,
    ):
        """Initialize MediaPipe estimator.

        The model is not loaded until ``initialize()``.

        Args:
            model_complexity: Model complexity (0-2).
            min_detection_confidence: Detection confidence threshold.
            min_tracking_confidence: Tracking confidence threshold.
            smooth_landmarks: Enable MediaPipe's own landmark smoothing.
        """
        super().__init__(f"mediapipe_complexity_{model_complexity}", "cpu", min_detection_confidence)

        self.model_complexity = model_complexity
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence
        self.smooth_landmarks = smooth_landmarks

    def initialize(self):
        """Load MediaPipe Pose model."""
        if not MEDIAPIPE_AVAILABLE:
            raise InitializationError(
                "MediaPipe not installed. Install with: pip install motionquality[detectors]"
            )

        try:
            self.model = mp.solutions.pose.Pose(
                static_image_mode=False,
                model_complexity=self.model_complexity,
                smooth_landmarks=self.smooth_landmarks,
                enable_segmentation=False,
                min_detection_confidence=self.min_detection_confidence,
                min_tracking_confidence=self.min_tracking_confidence,
            )
        except Exception as e:
            raise InitializationError(f"Failed to load MediaPipe Pose model: {e}") from e

        logger.info(f"MediaPipe Pose model loaded (complexity={self.model_complexity})")

    def detect(self, frame: np.ndarray) -> ModelAResult | None:
        """Estimate pose using MediaPipe.

        Args:
            frame: Input image (BGR format).

        Returns:
            33 landmarks in normalized coordinates, or None if no pose.
        """
        if self.model is None:
            raise InitializationError("MediaPipe model used before initialize()")

        image_rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        results = self.model.process(image_rgb)

        if not results or not results.pose_landmarks:
            return None

        return self._format_output(results)

    def _format_output(self, results) -> ModelAResult:
        # MediaPipe landmarks are already normalized; visibility is the confidence
        landmarks = [
            RawLandmark(x=lm.x, y=lm.y, z=lm.z, confidence=lm.visibility)
            for lm in results.pose_landmarks.landmark
        ]
        return ModelAResult(
            landmarks=landmarks,
            timestamp=time.time(),
            metadata={"complexity": self.model_complexity},
        )

    def get_keypoint_format(self) -> KeypointFormat:
        return KeypointFormat.MEDIAPIPE_33

    def close(self):
        """Explicitly close MediaPipe resources."""
        if self.model is not None:
            try:
                self.model.close()
                logger.debug("MediaPipe model closed successfully")
            except (RuntimeError, ValueError) as e:
                logger.warning(f"Error closing MediaPipe model: {e}")
            finally:
                self.model = None
