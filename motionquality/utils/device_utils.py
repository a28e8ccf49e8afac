"""
Device Utilities
Hardware capability profiling and accelerator selection.

Classifies the host into a capability tier and derives the inference
settings for it:
- Camera resolution and target frame rate
- MediaPipe model complexity
- Whether both pose detectors run (ensemble) or only the primary one
- Temporal smoothing strength

Also picks the torch device (CUDA, Apple Silicon MPS, CPU) for the YOLO
pose detector.
"""

import logging
import os
import platform
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Callable, Literal, Optional

import cv2
import psutil

from motionquality.utils.config import ENV_PREFIX, get_config

logger = logging.getLogger(__name__)

try:
    import torch
    TORCH_AVAILABLE = True
except ImportError:
    TORCH_AVAILABLE = False
    logger.warning("PyTorch not available. Install with: pip install motionquality[detectors]")

DeviceType = Literal["cuda", "mps", "cpu"]

DEVICE_CLASS_ENV = f"{ENV_PREFIX}DEVICE_CLASS"
DEVICE_CLASSES = ("mobile", "tablet", "desktop")


class DeviceTier(Enum):
    """Coarse hardware capability classes."""

    LOW = "low"  # Phones, old laptops
    MEDIUM = "medium"  # Recent phones, tablets, basic laptops
    HIGH = "high"  # Desktops, gaming laptops


@dataclass
class HardwareSignals:
    """Raw hardware probes. Any field may be missing (None)."""

    cpu_cores: Optional[int] = None
    memory_gb: Optional[float] = None
    device_class: Optional[str] = None  # mobile, tablet or desktop


@dataclass
class DeviceProfile:
    """Inference settings selected for a device tier."""

    tier: DeviceTier
    resolution: tuple[int, int]  # (width, height)
    target_fps: int
    model_complexity: int  # 0=lite, 1=full, 2=heavy
    ensemble_enabled: bool  # Run both detectors and fuse
    smoothing_factor: float  # EMA weight of the previous pose, [0, 1)
    min_detection_confidence: float = 0.7

    def to_dict(self) -> dict:
        data = asdict(self)
        data["tier"] = self.tier.value
        return data


@dataclass
class ProfilerThresholds:
    """Tier decision thresholds (inclusive upper bounds)."""

    low_max_cores: int = 2
    low_max_memory_gb: float = 2.0
    low_mobile_max_cores: int = 4
    low_mobile_max_memory_gb: float = 3.0
    medium_max_cores: int = 4
    medium_max_memory_gb: float = 4.0

    # Conservative stand-ins for missing probes
    fallback_cores: int = 4
    fallback_memory_gb: float = 4.0
    fallback_device_class: str = "desktop"

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ProfilerThresholds":
        data = data or {}
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


TIER_PROFILES = {
    DeviceTier.LOW: DeviceProfile(
        tier=DeviceTier.LOW,
        resolution=(640, 480),
        target_fps=15,
        model_complexity=0,
        ensemble_enabled=False,
        smoothing_factor=0.5,
        min_detection_confidence=0.6,
    ),
    DeviceTier.MEDIUM: DeviceProfile(
        tier=DeviceTier.MEDIUM,
        resolution=(960, 720),
        target_fps=20,
        model_complexity=1,
        ensemble_enabled=False,
        smoothing_factor=0.6,
        min_detection_confidence=0.7,
    ),
    DeviceTier.HIGH: DeviceProfile(
        tier=DeviceTier.HIGH,
        resolution=(1280, 720),
        target_fps=30,
        model_complexity=2,
        ensemble_enabled=True,
        smoothing_factor=0.7,
        min_detection_confidence=0.7,
    ),
}


def detect_hardware_signals() -> HardwareSignals:
    """Probe the host for core count, memory and device class.

    Each probe that fails is reported as missing rather than raising.

    Returns:
        HardwareSignals with whatever could be measured.
    """
    signals = HardwareSignals()

    signals.cpu_cores = os.cpu_count()

    try:
        signals.memory_gb = psutil.virtual_memory().total / (1024 ** 3)
    except (OSError, RuntimeError) as e:
        logger.warning(f"Could not read system memory: {e}")

    hint = get_config().get_env(DEVICE_CLASS_ENV)
    if hint:
        hint = hint.strip().lower()
        if hint in DEVICE_CLASSES:
            signals.device_class = hint
        else:
            logger.warning(f"Ignoring unknown {DEVICE_CLASS_ENV}={hint!r}")
    elif "ANDROID_ROOT" in os.environ:
        signals.device_class = "mobile"

    logger.debug(f"Hardware signals: {signals}")
    return signals


def classify_device(
    signals: HardwareSignals,
    thresholds: Optional[ProfilerThresholds] = None,
) -> DeviceProfile:
    """Classify hardware signals into a device profile.

    Args:
        signals: Hardware probes (missing values use conservative fallbacks).
        thresholds: Tier decision thresholds.

    Returns:
        A copy of the matching tier's DeviceProfile.
    """
    t = thresholds or ProfilerThresholds()

    cores = signals.cpu_cores if signals.cpu_cores is not None else t.fallback_cores
    memory = signals.memory_gb if signals.memory_gb is not None else t.fallback_memory_gb
    device_class = signals.device_class or t.fallback_device_class

    is_mobile = device_class == "mobile"
    is_tablet = device_class == "tablet"
    is_low_end_mobile = is_mobile and (
        cores <= t.low_mobile_max_cores or memory <= t.low_mobile_max_memory_gb
    )

    if is_low_end_mobile or cores <= t.low_max_cores or memory <= t.low_max_memory_gb:
        tier = DeviceTier.LOW
    elif is_mobile or is_tablet or cores <= t.medium_max_cores or memory <= t.medium_max_memory_gb:
        tier = DeviceTier.MEDIUM
    else:
        tier = DeviceTier.HIGH

    template = TIER_PROFILES[tier]
    return replace(template)


class DeviceCapabilityProfiler:
    """
    Computes the session's DeviceProfile once and caches it.

    The profile stays fixed until ``reset()`` is called, so every component
    of a session sees the same tier.
    """

    def __init__(
        self,
        thresholds: Optional[ProfilerThresholds] = None,
        signal_provider: Callable[[], HardwareSignals] = detect_hardware_signals,
    ):
        """
        Initialize profiler.

        Args:
            thresholds: Tier decision thresholds.
            signal_provider: Callable returning the current hardware signals.
        """
        self.thresholds = thresholds or ProfilerThresholds()
        self.signal_provider = signal_provider
        self._profile: Optional[DeviceProfile] = None
        self._signals: Optional[HardwareSignals] = None

    def profile(self) -> DeviceProfile:
        """Return the cached profile, detecting it on first use."""
        if self._profile is None:
            self._signals = self.signal_provider()
            self._profile = classify_device(self._signals, self.thresholds)
            logger.info(
                f"Detected device tier: {self._profile.tier.value} "
                f"({self._profile.resolution[0]}x{self._profile.resolution[1]}, "
                f"{self._profile.target_fps} FPS, complexity {self._profile.model_complexity}, "
                f"ensemble {'on' if self._profile.ensemble_enabled else 'off'})"
            )
        return self._profile

    @property
    def signals(self) -> Optional[HardwareSignals]:
        """Signals the cached profile was computed from."""
        return self._signals

    def reset(self):
        """Force re-detection on the next ``profile()`` call."""
        self._profile = None
        self._signals = None


def detector_settings(profile: DeviceProfile) -> dict:
    """
    MediaPipe options matching a device profile.

    Args:
        profile: Device profile.

    Returns:
        Keyword arguments for MediaPipeEstimator.
    """
    return {
        "model_complexity": profile.model_complexity,
        "min_detection_confidence": profile.min_detection_confidence,
        "min_tracking_confidence": profile.min_detection_confidence,
    }


def camera_settings(profile: DeviceProfile) -> dict[int, float]:
    """OpenCV capture properties (resolution and frame rate) for a profile."""
    width, height = profile.resolution
    return {
        cv2.CAP_PROP_FRAME_WIDTH: width,
        cv2.CAP_PROP_FRAME_HEIGHT: height,
        cv2.CAP_PROP_FPS: profile.target_fps,
    }


def detect_accelerator() -> DeviceType:
    """
    Detect the best available torch device.

    Returns:
        Device type: "cuda", "mps", or "cpu"
    """
    if not TORCH_AVAILABLE:
        return "cpu"

    if torch.cuda.is_available():
        logger.info(f"CUDA available: {torch.cuda.get_device_name(0)}")
        return "cuda"

    if torch.backends.mps.is_available():
        logger.info(f"MPS available: {platform.system()} {platform.machine()}")
        return "mps"

    return "cpu"


def get_optimal_device(preferred: Optional[str] = None) -> str:
    """
    Get the torch device to use, with optional preference.

    Args:
        preferred: Preferred device ("cuda", "mps", "cpu", or None/"auto")

    Returns:
        Device string for PyTorch (e.g., "cuda:0", "mps", "cpu")
    """
    detected = detect_accelerator()

    if preferred is None or preferred == "auto":
        return "cuda:0" if detected == "cuda" else detected

    preferred_lower = preferred.lower()
    if preferred_lower == "cpu":
        return "cpu"
    if preferred_lower in ("cuda", "gpu") and detected == "cuda":
        return "cuda:0"
    if preferred_lower == "mps" and detected == "mps":
        return "mps"

    logger.warning(f"Device '{preferred}' requested but not available. Using {detected}.")
    return "cuda:0" if detected == "cuda" else detected


def get_device_info(profiler: Optional[DeviceCapabilityProfiler] = None) -> dict:
    """
    Get hardware signals, the selected profile and accelerator details.

    Args:
        profiler: Profiler to report on (a fresh one if None).

    Returns:
        Dictionary with device information
    """
    profiler = profiler or DeviceCapabilityProfiler()
    profile = profiler.profile()

    info = {
        "platform": platform.system(),
        "machine": platform.machine(),
        "python_version": platform.python_version(),
        "signals": asdict(profiler.signals) if profiler.signals else {},
        "profile": profile.to_dict(),
        "accelerator": detect_accelerator(),
    }
    if TORCH_AVAILABLE:
        info["pytorch_version"] = torch.__version__
    return info


def print_device_info():
    """Print formatted device information."""
    info = get_device_info()
    signals = info["signals"]
    profile = info["profile"]

    print("\n" + "=" * 60)
    print("DEVICE INFORMATION")
    print("=" * 60)
    print(f"Platform:          {info['platform']} ({info['machine']})")
    print(f"Python:            {info['python_version']}")
    print(f"CPU cores:         {signals.get('cpu_cores')}")
    memory = signals.get("memory_gb")
    print(f"Memory:            {f'{memory:.1f} GB' if memory is not None else 'unknown'}")
    print(f"Device class:      {signals.get('device_class') or 'unknown'}")
    print(f"Accelerator:       {info['accelerator'].upper()}")
    print()
    print(f"Tier:              {profile['tier'].upper()}")
    print(f"Resolution:        {profile['resolution'][0]}x{profile['resolution'][1]}")
    print(f"Target FPS:        {profile['target_fps']}")
    print(f"Model complexity:  {profile['model_complexity']}")
    print(f"Ensemble:          {'enabled' if profile['ensemble_enabled'] else 'disabled'}")
    print("=" * 60 + "\n")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    print_device_info()
