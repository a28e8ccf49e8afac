"""Unit tests for movement-quality scoring."""

import numpy as np
import pytest
from conftest import fused_pose_from_array, standing_pose_array

from motionquality.analysis.exercise_criteria import ExerciseCriteria
from motionquality.analysis.motion_quality import (
    AnalyzerConfig,
    DominantSide,
    HistoryEntry,
    MotionQualityAnalyzer,
)
from motionquality.pose.base_estimator import LANDMARK_INDEX

SQUAT = ExerciseCriteria(
    exercise_id="squat",
    name="Squat",
    primary_joints=["left_knee", "right_knee", "left_hip", "right_hip"],
    target_rom={"knee": 90, "hip": 90},
    symmetry_required=True,
    stability_zones=["spine", "ankles"],
)

ELBOW_FLEXION = ExerciseCriteria(
    exercise_id="elbow_flexion",
    name="Elbow flexion",
    primary_joints=["left_elbow", "right_elbow"],
    target_rom={"elbow": 140},
    symmetry_required=False,
    stability_zones=["shoulders"],
)


def bend_knee(array: np.ndarray, side: str, angle_deg: float) -> np.ndarray:
    """Place the ankle so the knee angle equals ``angle_deg``."""
    knee = array[LANDMARK_INDEX[f"{side}_knee"], :2]
    theta = np.radians(angle_deg)
    ankle = knee + 0.2 * np.array([np.sin(theta), -np.cos(theta)])
    array[LANDMARK_INDEX[f"{side}_ankle"], :2] = ankle
    return array


@pytest.fixture
def analyzer():
    return MotionQualityAnalyzer()


class TestJointAngles:
    """Test joint angle extraction."""

    def test_standing_knees_straight(self, analyzer, standing_pose):
        """Test an upright pose has straight knees."""
        angles = analyzer.calculate_joint_angles(standing_pose)

        assert angles["left_knee"] == pytest.approx(180.0)
        assert angles["right_knee"] == pytest.approx(180.0)
        assert set(angles) == {
            "left_shoulder", "right_shoulder", "left_elbow", "right_elbow",
            "left_hip", "right_hip", "left_knee", "right_knee",
            "left_ankle", "right_ankle", "spine",
        }

    def test_bent_knee(self, analyzer):
        """Test a 90-degree knee bend is measured."""
        array = bend_knee(standing_pose_array(), "left", 90.0)
        angles = analyzer.calculate_joint_angles(fused_pose_from_array(array))
        assert angles["left_knee"] == pytest.approx(90.0)

    def test_low_visibility_joint_absent(self, analyzer):
        """Test joints with a hidden landmark are omitted."""
        array = standing_pose_array()
        array[LANDMARK_INDEX["left_wrist"], 3] = 0.3

        angles = analyzer.calculate_joint_angles(fused_pose_from_array(array))
        assert "left_elbow" not in angles
        assert "right_elbow" in angles

    def test_degenerate_geometry_counted(self, analyzer):
        """Test collapsed segments give 0 degrees and are counted."""
        array = standing_pose_array()
        array[LANDMARK_INDEX["left_knee"], :3] = array[LANDMARK_INDEX["left_hip"], :3]

        angles = analyzer.calculate_joint_angles(fused_pose_from_array(array))
        assert angles["left_knee"] == 0.0
        assert analyzer.degenerate_angles >= 1


class TestSymmetry:
    """Test left/right balance scoring."""

    def test_equal_pairs_score_100(self, analyzer):
        """Test perfect symmetry."""
        details = analyzer.analyze_symmetry({"left_knee": 120.0, "right_knee": 120.0})
        assert details.balance_score == 100.0
        assert details.side == DominantSide.BALANCED

    def test_near_ceiling_scores_near_zero(self, analyzer):
        """Test a 29-degree difference is close to 0."""
        details = analyzer.analyze_symmetry({"left_knee": 130.0, "right_knee": 101.0})
        assert details.balance_score < 5.0
        assert details.side == DominantSide.LEFT

    def test_right_dominant(self, analyzer):
        """Test the larger right side is reported."""
        details = analyzer.analyze_symmetry({"left_elbow": 90.0, "right_elbow": 110.0})
        assert details.side == DominantSide.RIGHT

    def test_no_pairs(self, analyzer):
        """Test frames without pairs are treated as balanced."""
        details = analyzer.analyze_symmetry({"left_knee": 90.0, "spine": 170.0})
        assert details.balance_score == 100.0
        assert details.side == DominantSide.BALANCED


class TestRangeOfMotion:
    """Test ROM scoring."""

    def test_squat_example(self, analyzer):
        """Test knees at 85/95 against a 90-degree target."""
        angles = {"left_knee": 85.0, "right_knee": 95.0}

        rom = analyzer.analyze_rom(angles, SQUAT)
        symmetry = analyzer.analyze_symmetry(angles)

        assert rom.percentage == pytest.approx(100.0)
        assert symmetry.balance_score == pytest.approx(66.67, abs=0.01)

    def test_percentage_not_capped(self, analyzer):
        """Test the breakdown keeps over-target percentages."""
        rom = analyzer.analyze_rom({"left_elbow": 160.0, "right_elbow": 162.0}, ELBOW_FLEXION)
        assert rom.percentage > 110.0

    def test_no_targets(self, analyzer):
        """Test exercises without targets score 100."""
        rom = analyzer.analyze_rom({"left_knee": 10.0}, ExerciseCriteria("x", "X"))
        assert rom.percentage == 100.0

    def test_score_capped_at_100(self, analyzer):
        """Test the ROM score never exceeds 100."""
        array = standing_pose_array()
        score = analyzer.analyze(fused_pose_from_array(array), ELBOW_FLEXION, timestamp=0.0)
        assert score.range_of_motion <= 100.0


class TestTempo:
    """Test tempo consistency scoring."""

    def _fill(self, analyzer, angles):
        positions = standing_pose_array()
        for t, angle in enumerate(angles):
            analyzer.history.append(HistoryEntry(float(t), positions, {"left_knee": angle}))

    def test_single_sample(self, analyzer):
        """Test one frame is perfectly consistent."""
        self._fill(analyzer, [90.0])
        assert analyzer.analyze_tempo().consistency == 100.0

    def test_even_tempo(self, analyzer):
        """Test constant angular speed scores 100."""
        self._fill(analyzer, [90.0, 100.0, 110.0, 120.0])
        tempo = analyzer.analyze_tempo()

        assert tempo.consistency == pytest.approx(100.0)
        assert tempo.average_speed == pytest.approx(10.0)

    def test_jerky_tempo(self, analyzer):
        """Test irregular speed scores low."""
        self._fill(analyzer, [90.0, 91.0, 120.0, 121.0])
        assert analyzer.analyze_tempo().consistency < 10.0


class TestStability:
    """Test stability scoring."""

    def test_still_pose(self, analyzer, standing_pose):
        """Test no movement is fully stable."""
        analyzer.analyze(standing_pose, timestamp=0.0)
        score = analyzer.analyze(standing_pose, timestamp=0.1)

        assert score.stability == 100.0
        assert score.breakdown.stability.tremor == 100.0

    def test_core_movement(self, analyzer):
        """Test half the core ceiling halves core stability."""
        array = standing_pose_array()
        analyzer.analyze(fused_pose_from_array(array), timestamp=0.0)

        moved = array.copy()
        for name in ("left_shoulder", "right_shoulder", "left_hip", "right_hip"):
            moved[LANDMARK_INDEX[name], 0] += 0.025
        details = analyzer.analyze(fused_pose_from_array(moved), timestamp=0.1).breakdown.stability

        assert details.core_stability == pytest.approx(50.0)
        assert details.joint_stability == 100.0
        assert details.tremor == pytest.approx(50.0)

    def test_stability_zones_select_core(self, analyzer):
        """Test squat ankles count as core, so only wrists are peripheral."""
        array = standing_pose_array()
        analyzer.analyze(fused_pose_from_array(array), SQUAT, timestamp=0.0)

        moved = array.copy()
        moved[LANDMARK_INDEX["left_wrist"], 1] += 0.04
        moved[LANDMARK_INDEX["right_wrist"], 1] += 0.04
        details = analyzer.analyze(fused_pose_from_array(moved), SQUAT, timestamp=0.1).breakdown.stability

        assert details.core_stability == 100.0
        assert details.joint_stability == pytest.approx(50.0)


class TestOverallScore:
    """Test score aggregation."""

    def test_symmetric_weights(self, analyzer, standing_pose):
        """Test bilateral exercises weight symmetry and ROM equally."""
        score = analyzer.analyze(standing_pose, SQUAT, timestamp=0.0)
        expected = (
            0.3 * score.symmetry + 0.3 * score.range_of_motion + 0.2 * score.tempo + 0.2 * score.stability
        )
        assert score.overall == pytest.approx(expected)

    def test_unilateral_weights(self, analyzer, standing_pose):
        """Test unilateral exercises emphasize ROM."""
        score = analyzer.analyze(standing_pose, ELBOW_FLEXION, timestamp=0.0)
        expected = (
            0.15 * score.symmetry + 0.4 * score.range_of_motion + 0.25 * score.tempo + 0.2 * score.stability
        )
        assert score.overall == pytest.approx(expected)

    def test_scores_in_range(self, analyzer):
        """Test all scores stay within [0, 100] for a jittery stream."""
        rng = np.random.default_rng(3)
        for t in range(20):
            array = standing_pose_array()
            array[:, :2] += rng.normal(0, 0.05, size=(33, 2))
            score = analyzer.analyze(fused_pose_from_array(array), SQUAT, timestamp=t * 0.1)
            for value in (score.overall, score.symmetry, score.range_of_motion, score.tempo, score.stability):
                assert 0.0 <= value <= 100.0

    def test_history_bounded(self, standing_pose):
        """Test the history ring buffer evicts old frames."""
        analyzer = MotionQualityAnalyzer(AnalyzerConfig(history_size=60))
        for t in range(70):
            analyzer.analyze(standing_pose, timestamp=float(t))
        assert len(analyzer.history) == 60

    def test_reset_history(self, analyzer, standing_pose):
        """Test reset clears the history."""
        analyzer.analyze(standing_pose, timestamp=0.0)
        analyzer.reset_history()
        assert len(analyzer.history) == 0

    def test_to_dict(self, analyzer, standing_pose):
        """Test serialization of the dominant side."""
        data = analyzer.analyze(standing_pose, SQUAT, timestamp=0.0).to_dict()
        assert data["breakdown"]["symmetry"]["side"] == "balanced"
        assert data["exercise_id"] == "squat"
