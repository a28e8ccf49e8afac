"""
Motion-quality pipeline module.
Orchestrates profiling, scheduling, detection, fusion and scoring.
"""

from motionquality.pipeline.orchestrator import (
    FrameResult,
    MotionQualityPipeline,
    PipelineConfig,
    RecoveryCounters,
)

__all__ = ["MotionQualityPipeline", "PipelineConfig", "FrameResult", "RecoveryCounters"]
