"""Adaptive frame scheduling for real-time pose analysis.

Decides which camera frames are forwarded to the pose detectors and retunes
the processing rate based on:
- Measured per-frame processing latency
- The tempo of the current exercise
- The device's baseline frame rate
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

import numpy as np

logger = logging.getLogger(__name__)


class TempoClass(Enum):
    """How fast an exercise moves, which bounds the frame rate it needs."""

    SLOW = "slow"  # Holds, stretches, slow mobility work
    NORMAL = "normal"  # Squats, lunges, presses
    FAST = "fast"  # Jumps, plyometrics


@dataclass
class SchedulerConfig:
    """Frame scheduler parameters."""

    target_fps: float = 30.0  # Baseline rate (usually the device profile's)
    min_fps: float = 10.0
    max_fps: float = 30.0
    window_size: int = 10  # Processing-time samples kept
    min_samples: int = 5  # Samples needed before adapting
    pressure_threshold: float = 0.8  # Slow down above this share of the frame interval
    relax_threshold: float = 0.5  # Speed up below this share of the frame interval
    decay_factor: float = 0.85
    growth_factor: float = 1.1
    decrease_cooldown: int = 30  # Reports to wait after slowing down
    increase_cooldown: int = 60  # Reports to wait after speeding up
    tempo_fractions: Dict[str, float] = field(
        default_factory=lambda: {"slow": 0.5, "normal": 0.8, "fast": 1.0}
    )
    tempo_caps: Dict[str, float] = field(
        default_factory=lambda: {"slow": 15.0, "normal": 24.0, "fast": 30.0}
    )

    @classmethod
    def from_dict(cls, data: Optional[dict], **overrides) -> "SchedulerConfig":
        data = dict(data or {})
        data.update(overrides)
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class SchedulerState:
    """Snapshot of the scheduler for diagnostics."""

    current_fps: float
    frame_interval_ms: float
    ceiling_fps: float
    processing_times_ms: List[float]
    avg_processing_time_ms: float
    cooldown: int


class AdaptiveFrameScheduler:
    """Gate frames at a target rate and adapt that rate to processing load."""

    def __init__(
        self,
        config: Optional[SchedulerConfig] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        """Initialize frame scheduler.

        Args:
            config: Scheduler parameters (uses defaults if None).
            clock: Monotonic clock returning seconds.
        """
        self.config = config or SchedulerConfig()
        if self.config.min_fps > self.config.max_fps:
            raise ValueError(
                f"min_fps ({self.config.min_fps}) exceeds max_fps ({self.config.max_fps})"
            )
        self.clock = clock

        self.processing_times = deque(maxlen=self.config.window_size)
        self.cooldown = 0
        self._last_frame_time: Optional[float] = None

        self.ceiling_fps = self._clamp(self.config.target_fps)
        self.current_fps = self.ceiling_fps
        self.frame_interval_ms = 1000.0 / self.current_fps

    @classmethod
    def from_profile(cls, profile, config: Optional[SchedulerConfig] = None, **kwargs):
        """Create a scheduler whose baseline is a device profile's target FPS.

        Args:
            profile: DeviceProfile for the session.
            config: Base parameters; target_fps is replaced by the profile's.
            **kwargs: Forwarded to the constructor (e.g. clock).
        """
        base = config or SchedulerConfig()
        tuned = SchedulerConfig(**{**base.__dict__, "target_fps": float(profile.target_fps)})
        return cls(tuned, **kwargs)

    def _clamp(self, fps: float) -> float:
        return float(min(self.config.max_fps, max(self.config.min_fps, fps)))

    @property
    def frame_interval(self) -> float:
        """Current frame interval in seconds."""
        return self.frame_interval_ms / 1000.0

    def should_process_frame(self) -> bool:
        """Check whether the frame arriving now should be processed.

        The admission time advances in whole frame intervals so that the
        long-run rate does not drift with callback jitter.

        Returns:
            True if the frame should be sent to the detectors.
        """
        now = self.clock()
        if self._last_frame_time is None:
            self._last_frame_time = now
            return True

        elapsed_ms = (now - self._last_frame_time) * 1000.0
        if elapsed_ms >= self.frame_interval_ms:
            remainder_ms = elapsed_ms % self.frame_interval_ms
            self._last_frame_time = now - remainder_ms / 1000.0
            return True

        return False

    def report_processing_time(self, time_ms: float):
        """Record how long a processed frame took and adapt the rate.

        Args:
            time_ms: Detection + fusion + scoring time in milliseconds.
        """
        self.processing_times.append(float(time_ms))

        if self.cooldown <= 0:
            self._adapt_fps()
        else:
            self.cooldown -= 1

    def _adapt_fps(self):
        """Apply at most one rate change, then start a cooldown."""
        if len(self.processing_times) < self.config.min_samples:
            return

        avg_time = float(np.mean(self.processing_times))

        if avg_time > self.config.pressure_threshold * self.frame_interval_ms:
            new_fps = self._clamp(self.current_fps * self.config.decay_factor)
            if new_fps != self.current_fps:
                logger.info(
                    f"Reducing FPS: {self.current_fps:.1f} -> {new_fps:.1f} "
                    f"(avg processing: {avg_time:.1f}ms)"
                )
                self._set_fps(new_fps)
                self.cooldown = self.config.decrease_cooldown

        elif avg_time < self.config.relax_threshold * self.frame_interval_ms:
            new_fps = min(self.ceiling_fps, self._clamp(self.current_fps * self.config.growth_factor))
            if new_fps > self.current_fps:
                logger.info(f"Increasing FPS: {self.current_fps:.1f} -> {new_fps:.1f}")
                self._set_fps(new_fps)
                self.cooldown = self.config.increase_cooldown

    def _set_fps(self, fps: float):
        self.current_fps = self._clamp(fps)
        self.frame_interval_ms = 1000.0 / self.current_fps

    def set_fps(self, fps: float):
        """Manually set the processing rate (clamped to the allowed range)."""
        self._set_fps(fps)

    def set_exercise(self, tempo: TempoClass | str):
        """Retune the rate ceiling for an exercise's tempo.

        Args:
            tempo: Tempo class of the exercise.
        """
        tempo = TempoClass(tempo)
        fraction = self.config.tempo_fractions.get(tempo.value, 1.0)
        cap = self.config.tempo_caps.get(tempo.value, self.config.max_fps)

        self.ceiling_fps = self._clamp(min(self.config.target_fps * fraction, cap))
        self._set_fps(self.ceiling_fps)
        logger.info(f"Exercise tempo '{tempo.value}' -> {self.ceiling_fps:.1f} FPS")

    def reset(self):
        """Restore the baseline rate and clear measurements."""
        self.ceiling_fps = self._clamp(self.config.target_fps)
        self._set_fps(self.ceiling_fps)
        self.processing_times.clear()
        self.cooldown = 0
        self._last_frame_time = None

    @property
    def state(self) -> SchedulerState:
        """Current scheduler state."""
        times = list(self.processing_times)
        return SchedulerState(
            current_fps=self.current_fps,
            frame_interval_ms=self.frame_interval_ms,
            ceiling_fps=self.ceiling_fps,
            processing_times_ms=times,
            avg_processing_time_ms=float(np.mean(times)) if times else 0.0,
            cooldown=self.cooldown,
        )


@dataclass
class PerformanceMetrics:
    """Observed pipeline throughput."""

    average_fps: float = 0.0
    average_latency_ms: float = 0.0
    dropped_frames: int = 0
    cpu_pressure: str = "nominal"  # nominal, fair, serious, critical


class PerformanceMonitor:
    """Track achieved frame rate, latency and dropped frames."""

    def __init__(self, max_samples: int = 30, clock: Callable[[], float] = time.perf_counter):
        """Initialize performance monitor.

        Args:
            max_samples: Number of recent frames to keep.
            clock: Monotonic clock returning seconds.
        """
        self.clock = clock
        self.frame_timestamps = deque(maxlen=max_samples)
        self.latencies = deque(maxlen=max_samples)
        self.dropped_frames = 0

    def record_frame(self, processing_time_ms: float):
        self.frame_timestamps.append(self.clock())
        self.latencies.append(float(processing_time_ms))

    def record_dropped_frame(self):
        self.dropped_frames += 1

    def get_metrics(self) -> PerformanceMetrics:
        """Get current performance metrics.

        Returns:
            Metrics over the recorded window.
        """
        if len(self.frame_timestamps) < 2:
            return PerformanceMetrics(dropped_frames=self.dropped_frames)

        time_span = self.frame_timestamps[-1] - self.frame_timestamps[0]
        average_fps = (len(self.frame_timestamps) - 1) / time_span if time_span > 0 else 0.0
        average_latency = float(np.mean(self.latencies))

        if average_fps < 10:
            cpu_pressure = "critical"
        elif average_fps < 15:
            cpu_pressure = "serious"
        elif average_fps < 20:
            cpu_pressure = "fair"
        else:
            cpu_pressure = "nominal"

        return PerformanceMetrics(
            average_fps=average_fps,
            average_latency_ms=average_latency,
            dropped_frames=self.dropped_frames,
            cpu_pressure=cpu_pressure,
        )

    def reset(self):
        self.frame_timestamps.clear()
        self.latencies.clear()
        self.dropped_frames = 0
