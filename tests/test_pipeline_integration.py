"""
Integration tests for the motion-quality pipeline.
Runs the full capture loop with scripted detectors.
"""

import pytest
from conftest import FakeClock, FakeEstimator, coco_array_from_pose, standing_pose_array

from motionquality.analysis.exercise_criteria import ExerciseCatalog
from motionquality.pipeline.orchestrator import MotionQualityPipeline, PipelineConfig, build_default_providers
from motionquality.pose.base_estimator import KeypointFormat, ModelAResult, ModelBResult
from motionquality.utils.device_utils import (
    TIER_PROFILES,
    DeviceCapabilityProfiler,
    DeviceTier,
    HardwareSignals,
)


def workstation_profiler():
    return DeviceCapabilityProfiler(
        signal_provider=lambda: HardwareSignals(cpu_cores=16, memory_gb=32.0, device_class="desktop")
    )


def mediapipe_fake(**kwargs):
    return FakeEstimator([ModelAResult.from_array(standing_pose_array())], **kwargs)


def yolo_fake(**kwargs):
    coco = coco_array_from_pose(standing_pose_array())
    return FakeEstimator([ModelBResult.from_array(coco)], KeypointFormat.COCO_17, **kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_pipeline(clock):
    created = []

    def factory(providers, detector_timeout_ms=1000.0):
        pipeline = MotionQualityPipeline(
            config=PipelineConfig(detector_timeout_ms=detector_timeout_ms),
            providers=providers,
            profiler=workstation_profiler(),
            catalog=ExerciseCatalog(),
            clock=clock,
        )
        created.append(pipeline)
        return pipeline

    yield factory

    for pipeline in created:
        pipeline.close()


def next_frame(pipeline, clock, frame):
    """Advance past the frame interval and process a frame."""
    clock.advance(pipeline.scheduler.frame_interval * 1.01)
    return pipeline.process_frame(frame)


class TestPipelineFlow:
    """Test the normal capture loop."""

    def test_both_detectors_fused(self, make_pipeline, sample_frame):
        """Test a frame is detected, fused, scored and coached."""
        pipeline = make_pipeline({"mediapipe": mediapipe_fake(), "yolo": yolo_fake()})
        assert pipeline.initialize() == ["mediapipe", "yolo"]
        pipeline.start_exercise("squat")

        result = pipeline.process_frame(sample_frame, timestamp=1.0)

        assert result is not None
        assert result.providers == ["mediapipe", "yolo"]
        assert len(result.pose.landmarks) == 33
        assert result.score.exercise_id == "squat"
        assert 0.0 <= result.score.overall <= 100.0
        assert isinstance(result.feedback, list)
        assert result.session_token == pipeline.session_token

    def test_high_tier_profile(self, make_pipeline):
        """Test the profile drives the scheduler baseline."""
        pipeline = make_pipeline({"mediapipe": mediapipe_fake()})

        assert pipeline.profile.tier == DeviceTier.HIGH
        assert pipeline.scheduler.current_fps == 30.0
        assert pipeline.fusion.config.smoothing_factor == 0.7

    def test_skipped_frames_return_none(self, make_pipeline, clock, sample_frame):
        """Test frames inside the interval are dropped."""
        pipeline = make_pipeline({"mediapipe": mediapipe_fake()})
        pipeline.initialize()

        assert pipeline.process_frame(sample_frame) is not None
        assert pipeline.process_frame(sample_frame) is None
        assert next_frame(pipeline, clock, sample_frame) is not None
        assert pipeline.monitor.get_metrics().dropped_frames == 1

    def test_run_yields_admitted_frames(self, make_pipeline, sample_frame):
        """Test the generator skips frames the scheduler drops."""
        pipeline = make_pipeline({"mediapipe": mediapipe_fake()})
        results = list(pipeline.run([sample_frame] * 3))

        # Clock does not move, so only the first frame is admitted
        assert len(results) == 1
        assert results[0].frame_id == 0

    def test_lazy_initialization(self, make_pipeline, sample_frame):
        """Test process_frame initializes detectors on first use."""
        detector = mediapipe_fake()
        pipeline = make_pipeline({"mediapipe": detector})

        pipeline.process_frame(sample_frame)
        assert detector.is_initialized

    def test_start_exercise(self, make_pipeline):
        """Test switching exercise retunes the pipeline."""
        pipeline = make_pipeline({"mediapipe": mediapipe_fake()})
        token = pipeline.session_token

        pipeline.start_exercise("Knäböj")

        assert pipeline.exercise_id == "squat"
        assert pipeline.session_token == token + 1
        assert pipeline.scheduler.current_fps == pytest.approx(24.0)

    def test_reset(self, make_pipeline, sample_frame):
        """Test reset returns to baseline settings."""
        pipeline = make_pipeline({"mediapipe": mediapipe_fake()})
        pipeline.start_exercise("pendulum")
        pipeline.process_frame(sample_frame)

        pipeline.reset()

        assert pipeline.exercise_id is None
        assert pipeline.scheduler.current_fps == 30.0
        assert len(pipeline.analyzer.history) == 0
        assert pipeline.fusion.previous_pose is None


class TestDefaultProviders:
    """Test detectors built from the device profile."""

    def test_low_tier_uses_profile_confidences(self):
        """Test file defaults do not override the profile's confidences."""
        profile = TIER_PROFILES[DeviceTier.LOW]
        providers = build_default_providers(profile, PipelineConfig.load())

        mediapipe = providers["mediapipe"]
        assert mediapipe.model_complexity == 0
        assert mediapipe.min_detection_confidence == profile.min_detection_confidence
        assert mediapipe.min_tracking_confidence == profile.min_detection_confidence
        assert mediapipe.smooth_landmarks is True
        assert "yolo" not in providers


class TestLifecycle:
    """Test re-initialization and shutdown."""

    def test_reinitialize_shuts_down_previous_dispatcher(self, make_pipeline):
        """Test initializing twice does not leave the old worker pool running."""
        pipeline = make_pipeline({"mediapipe": mediapipe_fake()})
        pipeline.initialize()
        first = pipeline.dispatcher

        assert pipeline.initialize() == ["mediapipe"]
        assert first.closed
        assert pipeline.dispatcher is not first
        assert not pipeline.dispatcher.closed

    def test_close_skips_running_detector(self, make_pipeline, sample_frame):
        """Test a detector still running after a timeout is not closed under it."""
        fast = mediapipe_fake()
        slow = yolo_fake(delay=0.5)
        pipeline = make_pipeline({"mediapipe": fast, "yolo": slow}, detector_timeout_ms=50.0)
        pipeline.process_frame(sample_frame)

        pipeline.close()

        assert fast.model is None
        assert slow.model is not None


class TestRecovery:
    """Test the pipeline keeps running through detector failures."""

    def test_initialization_failure_continues(self, make_pipeline, sample_frame):
        """Test a detector that fails to load is dropped."""
        pipeline = make_pipeline({"mediapipe": mediapipe_fake(), "yolo": yolo_fake(fail_init=True)})

        assert pipeline.initialize() == ["mediapipe"]
        assert pipeline.counters.initialization_failures == 1
        assert not pipeline.reduced_mode

        result = pipeline.process_frame(sample_frame)
        assert result.providers == ["mediapipe"]
        assert result.score is not None

    def test_all_detectors_fail_reduced_mode(self, make_pipeline, sample_frame):
        """Test no detectors gives reduced mode, not an error."""
        pipeline = make_pipeline({"mediapipe": mediapipe_fake(fail_init=True)})
        pipeline.initialize()

        assert pipeline.reduced_mode
        result = pipeline.process_frame(sample_frame)
        assert result.pose is None
        assert result.score is None
        assert result.feedback == []

    def test_no_person_detected(self, make_pipeline, sample_frame):
        """Test an empty detection is counted but not degrading."""
        pipeline = make_pipeline({"mediapipe": FakeEstimator([None])})

        result = pipeline.process_frame(sample_frame)

        assert result.pose is None
        assert pipeline.counters.absent_detections == 1
        assert not pipeline.counters.degraded

    def test_detector_exception_counted(self, make_pipeline, sample_frame):
        """Test a raising detector is treated as absent for the frame."""
        failing = FakeEstimator([RuntimeError("inference failed")], KeypointFormat.COCO_17)
        pipeline = make_pipeline({"mediapipe": mediapipe_fake(), "yolo": failing})

        result = pipeline.process_frame(sample_frame)

        assert result.providers == ["mediapipe"]
        assert pipeline.counters.detector_errors == 1
        assert pipeline.counters.degraded

    def test_timeout_then_busy(self, make_pipeline, clock, sample_frame):
        """Test a hung detector times out and is skipped while running."""
        slow = yolo_fake(delay=0.5)
        pipeline = make_pipeline({"mediapipe": mediapipe_fake(), "yolo": slow}, detector_timeout_ms=50.0)

        first = pipeline.process_frame(sample_frame)
        assert first.providers == ["mediapipe"]
        assert pipeline.counters.detector_timeouts == 1

        second = next_frame(pipeline, clock, sample_frame)
        assert second.providers == ["mediapipe"]
        assert pipeline.counters.busy_skips == 1
        assert slow.calls == 1

    def test_stale_results_dropped(self, make_pipeline, sample_frame):
        """Test results from before an exercise switch are discarded."""
        detector = mediapipe_fake()
        pipeline = make_pipeline({"mediapipe": detector})

        def switch_exercise():
            detector.on_detect = None
            pipeline.start_exercise("squat")

        detector.on_detect = switch_exercise
        result = pipeline.process_frame(sample_frame)

        assert result.pose is None
        assert pipeline.counters.stale_results == 1

    def test_unknown_exercise_degrades(self, make_pipeline):
        """Test unknown exercises are reported in diagnostics."""
        pipeline = make_pipeline({"mediapipe": mediapipe_fake()})
        pipeline.start_exercise("handstand_pushup")

        recovery = pipeline.get_diagnostics()["recovery"]
        assert recovery["unknown_exercises"] == 1
        assert recovery["degraded"] is True


class TestDiagnostics:
    """Test the diagnostics snapshot."""

    def test_snapshot_keys(self, make_pipeline, sample_frame):
        """Test all sections are reported."""
        pipeline = make_pipeline({"mediapipe": mediapipe_fake()})
        pipeline.start_exercise("squat")
        pipeline.process_frame(sample_frame)

        diagnostics = pipeline.get_diagnostics()

        assert set(diagnostics) == {
            "profile", "exercise_id", "session_token", "providers", "reduced_mode",
            "scheduler", "recovery", "fusion", "performance",
        }
        assert diagnostics["profile"]["tier"] == "high"
        assert diagnostics["exercise_id"] == "squat"
        assert diagnostics["fusion"]["frames_fused"] == 1
        assert diagnostics["recovery"]["degraded"] is False
