"""Dual-model fusion for pose estimation.

Combines MediaPipe and YOLO pose predictions for the same frame into one
pose on the canonical 33-landmark topology:
- Per landmark, only models above the confidence threshold contribute
- Coordinates are averaged with the configured model weights
- Disagreement between models lowers the landmark's confidence
- An exponential moving average against the previous pose removes jitter
"""

import logging
import time
from collections import Counter, deque
from dataclasses import dataclass, field, fields, replace
from itertools import combinations
from typing import Iterable

import numpy as np

from motionquality.pose.base_estimator import (
    COCO17_TO_MEDIAPIPE,
    MEDIAPIPE_33_LANDMARKS,
    ModelAResult,
    ModelBResult,
    ProviderResult,
    RawLandmark,
)

logger = logging.getLogger(__name__)

NUM_LANDMARKS = len(MEDIAPIPE_33_LANDMARKS)


@dataclass
class FusionConfig:
    """Fusion parameters."""

    model_weights: dict[str, float] = field(
        default_factory=lambda: {"mediapipe": 0.6, "yolo": 0.4}
    )
    confidence_threshold: float = 0.5  # Models at or below this are ignored per landmark
    smoothing_factor: float = 0.7  # Weight of the previous pose, [0, 1)
    disagreement_scale: float = 0.1  # Normalized distance meaning full disagreement

    def __post_init__(self):
        if not 0.0 <= self.smoothing_factor < 1.0:
            raise ValueError(f"smoothing_factor must be in [0, 1), got {self.smoothing_factor}")
        if self.disagreement_scale <= 0:
            raise ValueError(f"disagreement_scale must be positive, got {self.disagreement_scale}")

    @classmethod
    def from_dict(cls, data: dict | None, **overrides) -> "FusionConfig":
        data = {**(data or {}), **overrides}
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    def weight_for(self, model_name: str) -> float:
        return float(self.model_weights.get(model_name, 0.0))


@dataclass
class Landmark:
    """A fused landmark in normalized image coordinates."""

    index: int
    name: str
    x: float
    y: float
    z: float
    visibility: float  # Weighted confidence of the contributing models
    confidence: float  # Visibility discounted by model disagreement
    models: dict[str, RawLandmark] = field(default_factory=dict)  # Models above the confidence threshold
    agreement: float | None = None  # Set when two or more models contributed

    @property
    def is_unknown(self) -> bool:
        """True for landmarks no model was confident about."""
        return self.confidence == 0.0 and self.visibility == 0.0

    @property
    def position(self) -> tuple[float, float, float]:
        return (self.x, self.y, self.z)


@dataclass
class FusedPose:
    """One frame's fused pose."""

    landmarks: list[Landmark]
    overall_confidence: float
    model_agreement: float
    timestamp: float
    contributing_models: list[str] = field(default_factory=list)

    def __getitem__(self, index: int) -> Landmark:
        return self.landmarks[index]

    def get(self, name: str) -> Landmark | None:
        """Get a landmark by name (e.g. 'left_wrist')."""
        try:
            return self.landmarks[MEDIAPIPE_33_LANDMARKS.index(name)]
        except ValueError:
            return None

    def to_array(self) -> np.ndarray:
        """Landmarks as a (33, 4) array of [x, y, z, visibility]."""
        return np.array([[lm.x, lm.y, lm.z, lm.visibility] for lm in self.landmarks])


def reconcile(results: Iterable[ProviderResult | None]) -> dict[int, dict[str, RawLandmark]]:
    """Translate provider results onto the canonical topology.

    Args:
        results: Provider results for one frame (None entries are ignored).

    Returns:
        Canonical landmark index -> {model name: raw landmark}. Every
        canonical index is present; indices no model defines map to {}.
    """
    contributions: dict[int, dict[str, RawLandmark]] = {i: {} for i in range(NUM_LANDMARKS)}

    for result in results:
        if result is None:
            continue

        if isinstance(result, ModelAResult):
            for idx, raw in enumerate(result.landmarks):
                contributions[idx][result.model_name] = raw
        elif isinstance(result, ModelBResult):
            for coco_idx, raw in enumerate(result.landmarks):
                contributions[COCO17_TO_MEDIAPIPE[coco_idx]][result.model_name] = raw
        else:
            raise TypeError(f"Unsupported provider result: {type(result).__name__}")

    return contributions


class PoseFusionEngine:
    """Fuse per-frame detector outputs and smooth them over time."""

    def __init__(self, config: FusionConfig | None = None, stats_window: int = 30):
        """Initialize fusion engine.

        Args:
            config: Fusion parameters (uses defaults if None).
            stats_window: Number of recent frames averaged in statistics.
        """
        self.config = config or FusionConfig()
        self.previous_pose: FusedPose | None = None

        self._recent_confidence = deque(maxlen=stats_window)
        self._recent_agreement = deque(maxlen=stats_window)
        self._model_frames: Counter = Counter()
        self.frames_fused = 0
        self.empty_frames = 0

    def fuse(
        self,
        results: Iterable[ProviderResult | None],
        timestamp: float | None = None,
    ) -> FusedPose | None:
        """Fuse one frame's provider results.

        Args:
            results: Zero, one or two provider results (None means absent).
            timestamp: Frame timestamp in seconds (defaults to now).

        Returns:
            Smoothed fused pose, or None if no provider returned anything.
        """
        present = [r for r in results if r is not None]
        if not present:
            self.empty_frames += 1
            return None

        contributions = reconcile(present)

        landmarks = []
        agreements = []
        for idx in range(NUM_LANDMARKS):
            landmark = self._fuse_landmark(idx, contributions[idx])
            if landmark.agreement is not None:
                agreements.append(landmark.agreement)
            landmarks.append(landmark)

        pose = FusedPose(
            landmarks=landmarks,
            overall_confidence=float(np.mean([lm.confidence for lm in landmarks])),
            model_agreement=float(np.mean(agreements)) if agreements else 1.0,
            timestamp=timestamp if timestamp is not None else time.time(),
            contributing_models=[r.model_name for r in present],
        )

        if self.previous_pose is not None:
            pose = self._apply_smoothing(self.previous_pose, pose)
        self.previous_pose = pose

        self.frames_fused += 1
        self._model_frames.update(pose.contributing_models)
        self._recent_confidence.append(pose.overall_confidence)
        self._recent_agreement.append(pose.model_agreement)

        logger.debug(
            f"Fused pose from {pose.contributing_models}: "
            f"confidence={pose.overall_confidence:.2f}, agreement={pose.model_agreement:.2f}"
        )
        return pose

    def _fuse_landmark(self, idx: int, contributions: dict[str, RawLandmark]) -> Landmark:
        threshold = self.config.confidence_threshold
        included = {m: raw for m, raw in contributions.items() if raw.confidence > threshold}
        name = MEDIAPIPE_33_LANDMARKS[idx]

        if not included:
            # Keep a position from the most trusted model, but flag it as unknown
            if contributions:
                model = max(contributions, key=self.config.weight_for)
                raw = contributions[model]
                x, y, z = raw.x, raw.y, raw.z or 0.0
            else:
                x = y = z = 0.0
            return Landmark(idx, name, x, y, z, 0.0, 0.0)

        weights = np.array([self.config.weight_for(m) for m in included])
        if weights.sum() <= 0:
            weights = np.ones(len(included))
        weights = weights / weights.sum()

        raws = list(included.values())
        x = float(np.dot(weights, [raw.x for raw in raws]))
        y = float(np.dot(weights, [raw.y for raw in raws]))
        visibility = float(np.dot(weights, [raw.confidence for raw in raws]))

        with_z = [(w, raw.z) for w, raw in zip(weights, raws) if raw.z is not None]
        if with_z:
            z_weights = np.array([w for w, _ in with_z])
            z = float(np.dot(z_weights / z_weights.sum(), [v for _, v in with_z]))
        else:
            z = 0.0

        agreement = None
        confidence = visibility
        if len(raws) >= 2:
            distances = [np.hypot(a.x - b.x, a.y - b.y) for a, b in combinations(raws, 2)]
            agreement = float(np.clip(1.0 - np.mean(distances) / self.config.disagreement_scale, 0.0, 1.0))
            confidence = visibility * agreement

        return Landmark(
            idx,
            name,
            x,
            y,
            z,
            float(np.clip(visibility, 0.0, 1.0)),
            float(np.clip(confidence, 0.0, 1.0)),
            dict(included),
            agreement,
        )

    def _apply_smoothing(self, previous: FusedPose, current: FusedPose) -> FusedPose:
        """Exponential moving average against the previous pose."""
        factor = self.config.smoothing_factor
        alpha = 1.0 - factor

        smoothed = []
        for prev, curr in zip(previous.landmarks, current.landmarks):
            if curr.confidence > self.config.confidence_threshold and not prev.is_unknown:
                smoothed.append(
                    replace(
                        curr,
                        x=prev.x * factor + curr.x * alpha,
                        y=prev.y * factor + curr.y * alpha,
                        z=prev.z * factor + curr.z * alpha,
                        visibility=prev.visibility * factor + curr.visibility * alpha,
                    )
                )
            else:
                smoothed.append(curr)

        return replace(current, landmarks=smoothed)

    def reset_smoothing(self):
        """Forget the previous pose (call when starting a new exercise)."""
        self.previous_pose = None

    def update_config(self, **changes):
        """Update fusion parameters.

        ``model_weights`` is merged into the current weights; other keys
        replace the current value.

        Raises:
            ValueError: For unknown keys or out-of-range values.
        """
        names = {f.name for f in fields(FusionConfig)}
        unknown = set(changes) - names
        if unknown:
            raise ValueError(f"Unknown fusion parameters: {sorted(unknown)}")

        if "model_weights" in changes:
            changes["model_weights"] = {**self.config.model_weights, **changes["model_weights"]}

        self.config = replace(self.config, **changes)
        logger.info(f"Fusion config updated: {changes}")

    def get_performance_stats(self) -> dict:
        """Get fusion statistics over recent frames.

        Returns:
            Dictionary with frame counts, per-model frame counts and recent
            average confidence and agreement.
        """
        return {
            "frames_fused": self.frames_fused,
            "empty_frames": self.empty_frames,
            "model_frames": dict(self._model_frames),
            "average_confidence": float(np.mean(self._recent_confidence)) if self._recent_confidence else 0.0,
            "average_agreement": float(np.mean(self._recent_agreement)) if self._recent_agreement else 0.0,
            "smoothing_active": self.previous_pose is not None,
        }
