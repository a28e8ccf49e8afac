"""
Motion-quality pipeline orchestrator.
Coordinates all components for real-time exercise scoring.

This module provides the capture-loop entry point that integrates:
- Device capability profiling (once per session)
- Adaptive frame scheduling
- Concurrent pose detection (MediaPipe, YOLO pose)
- Dual-model fusion
- Movement-quality scoring and feedback
"""

import logging
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Callable, Iterable, Iterator

import numpy as np

from motionquality.analysis.exercise_criteria import DEFAULT_CRITERIA, ExerciseCatalog
from motionquality.analysis.form_feedback import generate_feedback
from motionquality.analysis.motion_quality import AnalyzerConfig, FormScore, MotionQualityAnalyzer
from motionquality.pipeline.detector_dispatch import DetectorDispatcher, DispatchStatus
from motionquality.pose.base_estimator import BasePoseEstimator, InitializationError
from motionquality.pose.model_fusion import FusedPose, FusionConfig, PoseFusionEngine
from motionquality.utils.adaptive_tuning import (
    AdaptiveFrameScheduler,
    PerformanceMonitor,
    SchedulerConfig,
)
from motionquality.utils.config import load_pipeline_config
from motionquality.utils.device_utils import (
    DeviceCapabilityProfiler,
    DeviceProfile,
    ProfilerThresholds,
    detector_settings,
)

logger = logging.getLogger(__name__)


@dataclass
class PipelineConfig:
    """Configuration for the motion-quality pipeline."""

    fusion: FusionConfig = field(default_factory=FusionConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)
    profiler: ProfilerThresholds = field(default_factory=ProfilerThresholds)

    # Detector options
    mediapipe: dict[str, Any] = field(default_factory=dict)
    yolo: dict[str, Any] = field(default_factory=dict)

    # Per-call detector timeout; None uses the current frame interval
    detector_timeout_ms: float | None = None

    @classmethod
    def from_dict(cls, data: dict | None) -> "PipelineConfig":
        data = data or {}
        detectors = data.get("detectors") or {}
        return cls(
            fusion=FusionConfig.from_dict(data.get("fusion")),
            scheduler=SchedulerConfig.from_dict(data.get("scheduler")),
            analyzer=AnalyzerConfig.from_dict(data.get("analyzer")),
            profiler=ProfilerThresholds.from_dict(data.get("profiler")),
            mediapipe=dict(detectors.get("mediapipe") or {}),
            yolo=dict(detectors.get("yolo") or {}),
            detector_timeout_ms=(data.get("pipeline") or {}).get("detector_timeout_ms"),
        )

    @classmethod
    def load(cls) -> "PipelineConfig":
        """Build from ``config/pipeline_config.yaml``."""
        return cls.from_dict(load_pipeline_config())


@dataclass
class RecoveryCounters:
    """How often the pipeline recovered from a failure instead of stopping."""

    initialization_failures: int = 0
    absent_detections: int = 0
    detector_timeouts: int = 0
    detector_errors: int = 0
    busy_skips: int = 0
    stale_results: int = 0
    degenerate_angles: int = 0
    unknown_exercises: int = 0

    # Recoveries that reduce scoring accuracy
    ACCURACY_REDUCING = (
        "initialization_failures",
        "detector_timeouts",
        "detector_errors",
        "busy_skips",
        "degenerate_angles",
        "unknown_exercises",
    )

    @property
    def degraded(self) -> bool:
        return any(getattr(self, name) > 0 for name in self.ACCURACY_REDUCING)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["degraded"] = self.degraded
        return data


@dataclass
class FrameResult:
    """Results from processing a single frame."""

    frame_id: int
    timestamp: float
    session_token: int

    pose: FusedPose | None
    score: FormScore | None
    feedback: list[str]

    # Models whose output was fused
    providers: list[str]

    # Performance metrics (milliseconds)
    detection_time_ms: float
    processing_time_ms: float
    fps: float


def build_default_providers(profile: DeviceProfile, config: PipelineConfig) -> dict[str, BasePoseEstimator]:
    """
    Create the detectors a device profile calls for.

    MediaPipe always runs; YOLO pose is added when the profile enables the
    ensemble. Detectors are created but not initialized.
    """
    # Imported here so the pipeline can be used with injected providers only
    from motionquality.pose.mediapipe_estimator import MediaPipeEstimator
    from motionquality.pose.yolo_estimator import YOLOPoseEstimator

    # Profile-derived confidences win over file defaults
    mp_options = {**config.mediapipe, **detector_settings(profile)}
    providers: dict[str, BasePoseEstimator] = {"mediapipe": MediaPipeEstimator(**mp_options)}

    if profile.ensemble_enabled:
        providers["yolo"] = YOLOPoseEstimator(
            model_name=config.yolo.get("model"),
            confidence=config.yolo.get("confidence"),
        )

    return providers


class MotionQualityPipeline:
    """
    Main pipeline orchestrator.

    Example:
        pipeline = MotionQualityPipeline()
        pipeline.initialize()
        pipeline.start_exercise("squat")

        for frame in camera_frames:
            result = pipeline.process_frame(frame)
            if result and result.feedback:
                show(result.feedback)
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        providers: dict[str, BasePoseEstimator] | None = None,
        profiler: DeviceCapabilityProfiler | None = None,
        catalog: ExerciseCatalog | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        """
        Initialize pipeline with configuration.

        Args:
            config: Pipeline configuration (loaded from pipeline_config.yaml if None).
            providers: Provider name -> detector. Built from the device profile if None.
            profiler: Device profiler (a fresh one if None).
            catalog: Exercise catalog (loaded from exercise_config.yaml if None).
            clock: Monotonic clock returning seconds.
        """
        self.config = config or PipelineConfig.load()
        self.clock = clock

        self.profiler = profiler or DeviceCapabilityProfiler(self.config.profiler)
        self.profile = self.profiler.profile()

        self.scheduler = AdaptiveFrameScheduler.from_profile(
            self.profile, self.config.scheduler, clock=clock
        )
        self.fusion = PoseFusionEngine(
            replace(self.config.fusion, smoothing_factor=self.profile.smoothing_factor)
        )
        self.analyzer = MotionQualityAnalyzer(self.config.analyzer)
        self.catalog = catalog or ExerciseCatalog()
        self.monitor = PerformanceMonitor(clock=clock)

        if providers is None:
            providers = build_default_providers(self.profile, self.config)
        self.providers = dict(providers)
        self.dispatcher: DetectorDispatcher | None = None

        self.counters = RecoveryCounters()
        self.session_token = 0
        self.exercise_id: str | None = None
        self.criteria = DEFAULT_CRITERIA
        self.frame_count = 0

        logger.info(
            f"Pipeline created for {self.profile.tier.value} tier with "
            f"{len(self.providers)} detector(s): {list(self.providers)}"
        )

    @property
    def reduced_mode(self) -> bool:
        """True when no detector could be initialized."""
        return self.dispatcher is not None and not self.dispatcher.providers

    def initialize(self) -> list[str]:
        """
        Load all detectors.

        Detectors that fail to load are dropped; the pipeline keeps running
        with the rest.

        Returns:
            Names of the detectors that are ready.
        """
        if self.dispatcher is not None:
            self.dispatcher.shutdown()

        ready = {}
        for name, provider in self.providers.items():
            try:
                provider.initialize()
                ready[name] = provider
            except InitializationError as e:
                self.counters.initialization_failures += 1
                logger.warning(f"Detector {name} unavailable, continuing without it: {e}")

        if not ready:
            logger.warning("No pose detectors available, running in reduced mode")

        self.providers = ready
        self.dispatcher = DetectorDispatcher(ready)
        return list(ready)

    def start_exercise(self, exercise_id: str):
        """
        Switch to a new exercise.

        Retunes the frame rate for the exercise tempo and clears all
        per-exercise state. Results still in flight for the previous
        exercise are discarded.

        Args:
            exercise_id: Catalog id or display name.
        """
        self.session_token += 1

        self.criteria = self.catalog.criteria_for(exercise_id)
        self.exercise_id = self.criteria.exercise_id
        self.scheduler.set_exercise(self.catalog.tempo_class_for(exercise_id))
        self.fusion.reset_smoothing()
        self.analyzer.reset_history()

        logger.info(f"Started exercise '{exercise_id}' -> {self.criteria.name}")

    def reset(self):
        """Clear all session state and return to baseline settings."""
        self.session_token += 1

        self.exercise_id = None
        self.criteria = DEFAULT_CRITERIA
        self.scheduler.reset()
        self.fusion.reset_smoothing()
        self.analyzer.reset_history()
        self.monitor.reset()

        logger.info("Pipeline reset")

    def _detector_timeout(self) -> float:
        if self.config.detector_timeout_ms is not None:
            return self.config.detector_timeout_ms / 1000.0
        return self.scheduler.frame_interval

    def process_frame(self, frame: np.ndarray, timestamp: float | None = None) -> FrameResult | None:
        """
        Process a single camera frame.

        Args:
            frame: Input frame (BGR format).
            timestamp: Capture time in seconds (pipeline clock if None).

        Returns:
            FrameResult, or None when the scheduler skips the frame.
        """
        if self.dispatcher is None:
            self.initialize()

        if not self.scheduler.should_process_frame():
            self.monitor.record_dropped_frame()
            return None

        start = self.clock()
        if timestamp is None:
            timestamp = start

        token = self.session_token
        frame_id = self.frame_count
        self.frame_count += 1

        outcomes = self.dispatcher.dispatch(frame, token, self._detector_timeout())
        detection_ms = (self.clock() - start) * 1000.0

        results = []
        for outcome in outcomes:
            if outcome.status == DispatchStatus.BUSY:
                self.counters.busy_skips += 1
            elif outcome.status == DispatchStatus.TIMEOUT:
                self.counters.detector_timeouts += 1
            elif outcome.status == DispatchStatus.ERROR:
                self.counters.detector_errors += 1
            elif outcome.status == DispatchStatus.ABSENT:
                self.counters.absent_detections += 1
            elif outcome.session_token != self.session_token:
                self.counters.stale_results += 1
                logger.debug(f"Dropping stale {outcome.provider} result from session {outcome.session_token}")
            else:
                results.append(outcome.result)

        pose = self.fusion.fuse(results, timestamp=timestamp)

        score = None
        feedback: list[str] = []
        if pose is not None:
            score = self.analyzer.analyze(pose, self.criteria, timestamp=timestamp)
            feedback = generate_feedback(score)

        processing_ms = (self.clock() - start) * 1000.0
        self.scheduler.report_processing_time(processing_ms)
        self.monitor.record_frame(processing_ms)

        return FrameResult(
            frame_id=frame_id,
            timestamp=timestamp,
            session_token=token,
            pose=pose,
            score=score,
            feedback=feedback,
            providers=[r.model_name for r in results],
            detection_time_ms=detection_ms,
            processing_time_ms=processing_ms,
            fps=self.scheduler.current_fps,
        )

    def run(self, frames: Iterable[np.ndarray]) -> Iterator[FrameResult]:
        """
        Process a stream of frames, yielding results for admitted frames.

        Args:
            frames: Iterable of frames (BGR format).
        """
        for frame in frames:
            result = self.process_frame(frame)
            if result is not None:
                yield result

    def get_diagnostics(self) -> dict:
        """
        Get a snapshot of the pipeline's state.

        Returns:
            Dictionary with the device profile, scheduler state, recovery
            counters, fusion statistics and performance metrics.
        """
        self.counters.degenerate_angles = self.analyzer.degenerate_angles
        self.counters.unknown_exercises = self.catalog.unknown_exercises

        return {
            "profile": self.profile.to_dict(),
            "exercise_id": self.exercise_id,
            "session_token": self.session_token,
            "providers": list(self.providers),
            "reduced_mode": self.reduced_mode,
            "scheduler": asdict(self.scheduler.state),
            "recovery": self.counters.to_dict(),
            "fusion": self.fusion.get_performance_stats(),
            "performance": asdict(self.monitor.get_metrics()),
        }

    def close(self):
        """Release detectors and worker threads."""
        if self.dispatcher is not None:
            self.dispatcher.shutdown()
        for name, provider in self.providers.items():
            if self.dispatcher is not None and self.dispatcher.is_busy(name):
                logger.warning(f"Detector {name} still running, leaving it open")
                continue
            provider.close()
        logger.info("Pipeline closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
