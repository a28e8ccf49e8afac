"""
Concurrent detector dispatch.

Runs every pose detector on the same frame in a thread pool and joins the
calls with a per-frame deadline, so one slow detector cannot stall the
capture loop.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum

import numpy as np

from motionquality.pose.base_estimator import BasePoseEstimator, ProviderResult

logger = logging.getLogger(__name__)


class DispatchStatus(str, Enum):
    OK = "ok"
    ABSENT = "absent"  # Detector ran but found nobody
    TIMEOUT = "timeout"
    ERROR = "error"
    BUSY = "busy"  # Previous call still running, provider skipped


@dataclass
class DispatchOutcome:
    """One detector's outcome for one frame."""

    provider: str
    status: DispatchStatus
    session_token: int
    result: ProviderResult | None = None
    elapsed_ms: float = 0.0
    error: str | None = None


class DetectorDispatcher:
    """
    Thread pool running pose detectors side by side.

    Features:
    - One worker per detector
    - Per-frame deadline; late calls are reported as timeouts
    - A detector with a call still running is skipped, never queued
    - Every outcome carries the session token it was dispatched under
    """

    def __init__(self, providers: dict[str, BasePoseEstimator], name: str = "detector"):
        """
        Initialize dispatcher.

        Args:
            providers: Provider name -> initialized detector.
            name: Thread name prefix.
        """
        self.providers = dict(providers)
        self.name = name

        self._executor = ThreadPoolExecutor(
            max_workers=max(1, len(self.providers)),
            thread_name_prefix=f"{name}_",
        )
        self._in_flight: dict[str, Future] = {}
        self._lock = threading.Lock()
        self.closed = False

        logger.info(f"DetectorDispatcher '{name}' initialized (providers: {list(self.providers)})")

    def is_busy(self, name: str) -> bool:
        """Check whether a detector still has a call running."""
        with self._lock:
            future = self._in_flight.get(name)
            if future is None:
                return False
            if future.done():
                del self._in_flight[name]
                return False
            return True

    def dispatch(self, frame: np.ndarray, session_token: int, timeout: float) -> list[DispatchOutcome]:
        """
        Run all free detectors on a frame and wait for them.

        Args:
            frame: Input image (BGR format).
            session_token: Token of the session the frame belongs to.
            timeout: Seconds to wait for the detectors.

        Returns:
            One outcome per provider, in provider order.
        """
        outcomes: dict[str, DispatchOutcome] = {}
        submitted: dict[str, Future] = {}

        for name, provider in list(self.providers.items()):
            if self.is_busy(name):
                logger.debug(f"Skipping {name}: previous call still running")
                outcomes[name] = DispatchOutcome(name, DispatchStatus.BUSY, session_token)
                continue

            future = self._executor.submit(self._timed_detect, provider, frame)
            with self._lock:
                self._in_flight[name] = future
            submitted[name] = future

        if submitted:
            wait(submitted.values(), timeout=max(0.0, timeout))

        for name, future in submitted.items():
            outcomes[name] = self._collect(name, future, session_token, timeout)

        return [outcomes[name] for name in self.providers if name in outcomes]

    def _collect(self, name: str, future: Future, session_token: int, timeout: float) -> DispatchOutcome:
        if not future.done():
            logger.warning(f"Detector {name} exceeded {timeout * 1000:.0f}ms, treating as absent")
            return DispatchOutcome(name, DispatchStatus.TIMEOUT, session_token)

        with self._lock:
            if self._in_flight.get(name) is future:
                del self._in_flight[name]

        try:
            result, elapsed_ms = future.result()
        except Exception as e:
            logger.warning(f"Detector {name} failed: {e}")
            return DispatchOutcome(name, DispatchStatus.ERROR, session_token, error=str(e))

        if result is None:
            return DispatchOutcome(name, DispatchStatus.ABSENT, session_token, elapsed_ms=elapsed_ms)
        return DispatchOutcome(name, DispatchStatus.OK, session_token, result, elapsed_ms)

    @staticmethod
    def _timed_detect(provider: BasePoseEstimator, frame: np.ndarray):
        start = time.perf_counter()
        result = provider.detect(frame)
        return result, (time.perf_counter() - start) * 1000.0

    def shutdown(self, wait_for_calls: bool = False):
        """Shutdown the pool without waiting for hung detectors by default."""
        self._executor.shutdown(wait=wait_for_calls, cancel_futures=True)
        self.closed = True
        logger.info(f"DetectorDispatcher '{self.name}' shutdown")
