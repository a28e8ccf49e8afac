"""Movement-quality scoring for guided exercises.

This module scores a stream of fused poses against an exercise's criteria:
- Symmetry (left/right joint angle balance)
- Range of motion (achieved vs target joint angles)
- Tempo (consistency of angular speed over recent frames)
- Stability (unwanted movement of core and peripheral landmarks)
"""

import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum

import numpy as np
from scipy.stats import variation

from motionquality.analysis.exercise_criteria import DEFAULT_CRITERIA, ExerciseCriteria
from motionquality.pose.base_estimator import LANDMARK_INDEX
from motionquality.pose.model_fusion import FusedPose
from motionquality.utils.geometry import (
    DEFAULT_EPSILON,
    calculate_angle_3d,
    euclidean_distance_3d,
    is_degenerate,
    linear_score,
)

logger = logging.getLogger(__name__)

# Joint -> (proximal, vertex, distal) landmark names
JOINT_DEFINITIONS = {
    "left_shoulder": ("left_elbow", "left_shoulder", "left_hip"),
    "right_shoulder": ("right_elbow", "right_shoulder", "right_hip"),
    "left_elbow": ("left_wrist", "left_elbow", "left_shoulder"),
    "right_elbow": ("right_wrist", "right_elbow", "right_shoulder"),
    "left_hip": ("left_knee", "left_hip", "left_shoulder"),
    "right_hip": ("right_knee", "right_hip", "right_shoulder"),
    "left_knee": ("left_ankle", "left_knee", "left_hip"),
    "right_knee": ("right_ankle", "right_knee", "right_hip"),
    "left_ankle": ("left_knee", "left_ankle", "left_foot_index"),
    "right_ankle": ("right_knee", "right_ankle", "right_foot_index"),
    "spine": ("left_shoulder", "left_hip", "left_knee"),
}

SYMMETRY_PAIRS = [
    ("left_shoulder", "right_shoulder"),
    ("left_elbow", "right_elbow"),
    ("left_hip", "right_hip"),
    ("left_knee", "right_knee"),
    ("left_ankle", "right_ankle"),
]

PERIPHERAL_LANDMARKS = ["left_wrist", "right_wrist", "left_ankle", "right_ankle"]


class DominantSide(Enum):
    """Which side carries more of the movement."""

    BALANCED = "balanced"
    LEFT = "left_dominant"
    RIGHT = "right_dominant"


@dataclass
class AnalyzerConfig:
    """Scoring parameters."""

    history_size: int = 60
    min_landmark_visibility: float = 0.5
    angle_epsilon: float = DEFAULT_EPSILON
    symmetry_ceiling_deg: float = 30.0  # Mean L/R difference scoring 0
    dominance_threshold_deg: float = 10.0  # Above this a side is dominant
    tempo_cv_ceiling: float = 0.5  # Coefficient of variation scoring 0
    core_displacement_ceiling: float = 0.05
    peripheral_displacement_ceiling: float = 0.08
    weights: dict[str, dict[str, float]] = field(
        default_factory=lambda: {
            "symmetric": {"symmetry": 0.3, "range_of_motion": 0.3, "tempo": 0.2, "stability": 0.2},
            "unilateral": {"symmetry": 0.15, "range_of_motion": 0.4, "tempo": 0.25, "stability": 0.2},
        }
    )

    @classmethod
    def from_dict(cls, data: dict | None, **overrides) -> "AnalyzerConfig":
        data = {**(data or {}), **overrides}
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class SymmetryDetails:
    left_right_diff: float  # Mean absolute difference in degrees
    balance_score: float
    side: DominantSide


@dataclass
class RomDetails:
    achieved: float  # Mean primary joint angle
    target: float  # Mean target angle
    percentage: float  # achieved / target, not capped


@dataclass
class TempoDetails:
    consistency: float
    average_speed: float  # Degrees per second
    variation: float  # Standard deviation of speed


@dataclass
class StabilityDetails:
    core_stability: float
    joint_stability: float
    tremor: float  # Lower means more shaking


@dataclass
class FormBreakdown:
    symmetry: SymmetryDetails
    rom: RomDetails
    tempo: TempoDetails
    stability: StabilityDetails


@dataclass
class FormScore:
    """Movement-quality score for one frame (all scores 0-100)."""

    overall: float
    symmetry: float
    range_of_motion: float
    tempo: float
    stability: float
    breakdown: FormBreakdown
    joint_angles: dict[str, float] = field(default_factory=dict)
    exercise_id: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["breakdown"]["symmetry"]["side"] = self.breakdown.symmetry.side.value
        return data


@dataclass
class HistoryEntry:
    timestamp: float
    positions: np.ndarray  # (33, 4) [x, y, z, visibility]
    angles: dict[str, float]


class MotionQualityAnalyzer:
    """Score fused poses against exercise criteria."""

    def __init__(self, config: AnalyzerConfig | None = None):
        """Initialize analyzer.

        Args:
            config: Scoring parameters (uses defaults if None).
        """
        self.config = config or AnalyzerConfig()
        self.history: deque[HistoryEntry] = deque(maxlen=self.config.history_size)
        self.degenerate_angles = 0

    def calculate_joint_angles(self, pose: FusedPose) -> dict[str, float]:
        """Calculate joint angles from a fused pose.

        A joint is only measured when all three of its landmarks are visible.
        Collapsed limb segments give 0 degrees and are counted.

        Args:
            pose: Fused pose.

        Returns:
            Joint name -> angle in degrees. Unmeasured joints are omitted.
        """
        angles = {}
        min_visibility = self.config.min_landmark_visibility
        epsilon = self.config.angle_epsilon

        for joint, names in JOINT_DEFINITIONS.items():
            landmarks = [pose.landmarks[LANDMARK_INDEX[name]] for name in names]
            if any(lm.visibility < min_visibility for lm in landmarks):
                continue

            p1, p2, p3 = (lm.position for lm in landmarks)
            if is_degenerate(p1, p2, p3, epsilon):
                self.degenerate_angles += 1
                logger.debug(f"Degenerate geometry at {joint}")
            angles[joint] = calculate_angle_3d(p1, p2, p3, epsilon)

        return angles

    def analyze(
        self,
        pose: FusedPose,
        criteria: ExerciseCriteria | None = None,
        timestamp: float | None = None,
    ) -> FormScore:
        """Score one frame and add it to the history.

        Args:
            pose: Fused pose for the frame.
            criteria: Exercise criteria (permissive defaults if None).
            timestamp: Frame time in seconds (pose timestamp if None).

        Returns:
            Form score for the frame.
        """
        criteria = criteria or DEFAULT_CRITERIA
        if timestamp is None:
            timestamp = pose.timestamp if pose.timestamp is not None else time.time()

        angles = self.calculate_joint_angles(pose)
        self.history.append(HistoryEntry(timestamp, pose.to_array(), angles))

        symmetry = self.analyze_symmetry(angles)
        rom = self.analyze_rom(angles, criteria)
        tempo = self.analyze_tempo()
        stability = self.analyze_stability(criteria)

        scores = {
            "symmetry": symmetry.balance_score,
            "range_of_motion": min(100.0, rom.percentage),
            "tempo": tempo.consistency,
            "stability": (stability.core_stability + stability.joint_stability) / 2,
        }

        weights = self.config.weights["symmetric" if criteria.symmetry_required else "unilateral"]
        overall = sum(weights.get(name, 0.0) * value for name, value in scores.items())

        return FormScore(
            overall=float(np.clip(overall, 0.0, 100.0)),
            symmetry=scores["symmetry"],
            range_of_motion=scores["range_of_motion"],
            tempo=scores["tempo"],
            stability=scores["stability"],
            breakdown=FormBreakdown(symmetry, rom, tempo, stability),
            joint_angles=angles,
            exercise_id=criteria.exercise_id,
        )

    def analyze_symmetry(self, angles: dict[str, float]) -> SymmetryDetails:
        """Compare left and right joint angles.

        Args:
            angles: Joint angles for the frame.

        Returns:
            Symmetry details; 100 and balanced when no pair is measured.
        """
        pairs = [
            (angles[left], angles[right])
            for left, right in SYMMETRY_PAIRS
            if left in angles and right in angles
        ]
        if not pairs:
            return SymmetryDetails(0.0, 100.0, DominantSide.BALANCED)

        avg_diff = float(np.mean([abs(left - right) for left, right in pairs]))
        balance_score = linear_score(avg_diff, self.config.symmetry_ceiling_deg)

        side = DominantSide.BALANCED
        if avg_diff > self.config.dominance_threshold_deg:
            left_sum = sum(left for left, _ in pairs)
            right_sum = sum(right for _, right in pairs)
            side = DominantSide.LEFT if left_sum > right_sum else DominantSide.RIGHT

        return SymmetryDetails(avg_diff, balance_score, side)

    def analyze_rom(self, angles: dict[str, float], criteria: ExerciseCriteria) -> RomDetails:
        """Compare primary joint angles with the exercise's targets.

        Args:
            angles: Joint angles for the frame.
            criteria: Exercise criteria.

        Returns:
            ROM details; 100% when the exercise defines no targets.
        """
        if not criteria.target_rom:
            return RomDetails(0.0, 0.0, 100.0)

        measured = [angles[joint] for joint in criteria.primary_joints if joint in angles]
        achieved = float(np.mean(measured)) if measured else 0.0
        target = float(np.mean(list(criteria.target_rom.values())))

        percentage = achieved / target * 100.0 if target > 0 else 100.0
        return RomDetails(achieved, target, percentage)

    def analyze_tempo(self) -> TempoDetails:
        """Score how evenly joint angles change across the history."""
        if len(self.history) < 2:
            return TempoDetails(100.0, 0.0, 0.0)

        speeds = []
        entries = list(self.history)
        for prev, curr in zip(entries, entries[1:]):
            dt = curr.timestamp - prev.timestamp
            if dt <= 0:
                continue
            shared = [j for j in curr.angles if j in prev.angles]
            if not shared:
                continue
            mean_change = np.mean([abs(curr.angles[j] - prev.angles[j]) for j in shared])
            speeds.append(mean_change / dt)

        if not speeds:
            return TempoDetails(100.0, 0.0, 0.0)

        speeds = np.array(speeds)
        average_speed = float(np.mean(speeds))
        std = float(np.std(speeds))

        cv = float(variation(speeds)) if average_speed > 0 else 0.0
        consistency = linear_score(cv, self.config.tempo_cv_ceiling)

        return TempoDetails(consistency, average_speed, std)

    def analyze_stability(self, criteria: ExerciseCriteria | None = None) -> StabilityDetails:
        """Score unwanted movement between the two latest frames.

        Core landmarks come from the exercise's stability zones; wrists and
        ankles outside them are scored as peripheral joints.
        """
        if len(self.history) < 2:
            return StabilityDetails(100.0, 100.0, 100.0)

        criteria = criteria or DEFAULT_CRITERIA
        core = criteria.stability_landmarks()
        peripheral = [name for name in PERIPHERAL_LANDMARKS if name not in core]

        prev, curr = self.history[-2].positions, self.history[-1].positions

        core_stability = linear_score(
            self._mean_displacement(prev, curr, core), self.config.core_displacement_ceiling
        )
        joint_stability = linear_score(
            self._mean_displacement(prev, curr, peripheral),
            self.config.peripheral_displacement_ceiling,
        )

        return StabilityDetails(
            core_stability=core_stability,
            joint_stability=joint_stability,
            tremor=min(core_stability, joint_stability),
        )

    def _mean_displacement(self, prev: np.ndarray, curr: np.ndarray, names: list[str]) -> float:
        min_visibility = self.config.min_landmark_visibility
        movements = []
        for name in names:
            idx = LANDMARK_INDEX[name]
            if prev[idx, 3] >= min_visibility and curr[idx, 3] >= min_visibility:
                movements.append(euclidean_distance_3d(prev[idx, :3], curr[idx, :3]))
        return float(np.mean(movements)) if movements else 0.0

    def reset_history(self):
        """Clear frame history (call between exercises)."""
        self.history.clear()
