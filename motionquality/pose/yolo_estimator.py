"""YOLO11 pose detector wrapper (secondary detector)."""

import logging
import time

import numpy as np

from motionquality.pose.base_estimator import (
    BasePoseEstimator,
    InitializationError,
    KeypointFormat,
    ModelBResult,
    RawLandmark,
)
from motionquality.utils.config import load_pipeline_config
from motionquality.utils.device_utils import get_optimal_device

logger = logging.getLogger(__name__)

try:
    from ultralytics import YOLO
    ULTRALYTICS_AVAILABLE = True
except ImportError:
    ULTRALYTICS_AVAILABLE = False
    logger.warning("Ultralytics not available. Install with: pip install motionquality[detectors]")


class YOLOPoseEstimator(BasePoseEstimator):
    """YOLO11 pose wrapper producing ModelBResult frames.

    Pixel keypoints are normalized by the frame's width and height so they
    share MediaPipe's coordinate space. Only the most confident person is
    returned.
    """

    def __init__(
        self,
        model_name: str | None = None,
        device: str = "auto",
        confidence: float | None = None,
    ):
        """Initialize YOLO pose estimator.

        Args:
            model_name: YOLO weights (default from pipeline config).
            device: Device to run on ('cpu', 'cuda', 'mps', 'auto').
            confidence: Minimum detection confidence (default from pipeline config).
        """
        yolo_config = load_pipeline_config().get("detectors", {}).get("yolo", {})

        super().__init__(
            model_name or yolo_config.get("model", "yolo11n-pose.pt"),
            get_optimal_device(None if device == "auto" else device),
            confidence if confidence is not None else yolo_config.get("confidence", 0.25),
        )

        self.iou = yolo_config.get("iou", 0.7)
        self.imgsz = yolo_config.get("imgsz", 640)

    def initialize(self):
        """Load YOLO model."""
        if not ULTRALYTICS_AVAILABLE:
            raise InitializationError(
                "Ultralytics not installed. Install with: pip install motionquality[detectors]"
            )

        try:
            self.model = YOLO(self.model_name)
            self.model.to(self.device)
        except Exception as e:
            raise InitializationError(f"Failed to load YOLO model: {e}") from e

        logger.info(f"YOLO pose model loaded ({self.model_name} on {self.device})")

    def detect(self, frame: np.ndarray) -> ModelBResult | None:
        """Estimate the pose of the most confident person in a frame.

        Args:
            frame: Input image (BGR format).

        Returns:
            17 keypoints in normalized coordinates, or None if nobody detected.
        """
        if self.model is None:
            raise InitializationError("YOLO model used before initialize()")

        results = self.model.predict(
            frame,
            conf=self.confidence,
            iou=self.iou,
            max_det=1,
            imgsz=self.imgsz,
            verbose=False,
        )

        if len(results) == 0 or results[0].keypoints is None:
            logger.debug("No pose detected")
            return None

        result = results[0]
        if len(result.keypoints.data) == 0:
            return None

        kpts = result.keypoints.data[0].cpu().numpy()  # (17, 3) [x, y, conf]
        if kpts.shape[0] != 17 or kpts.shape[1] < 3:
            logger.debug(f"Invalid keypoints shape: {kpts.shape}")
            return None

        height, width = frame.shape[:2]
        return self._format_output(kpts, width, height)

    def _format_output(self, kpts: np.ndarray, width: int, height: int) -> ModelBResult:
        landmarks = [
            RawLandmark(x=kpt[0] / width, y=kpt[1] / height, confidence=kpt[2])
            for kpt in kpts
        ]
        return ModelBResult(
            landmarks=landmarks,
            timestamp=time.time(),
            metadata={"model": self.model_name, "image_size": (width, height)},
        )

    def get_keypoint_format(self) -> KeypointFormat:
        return KeypointFormat.COCO_17
