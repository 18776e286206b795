import logging
import time
from datetime import datetime, timezone
from typing import Dict

logger = logging.getLogger(__name__)

class PerformanceLogger:
    """
    Logger for tracking the duration of processing phases.
    Phases are keyed by name, so concurrent workers must use distinct names.
    """

    def __init__(self):
        self._start_times: Dict[str, float] = {}

    def _get_utc_time(self) -> str:
        """Get current time in UTC formatted string."""
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    def start_phase(self, phase_name: str) -> None:
        """Start tracking a phase."""
        self._start_times[phase_name] = time.perf_counter()
        logger.info(f"[{self._get_utc_time()}] [START] {phase_name}")

    def end_phase(self, phase_name: str, extra_info: str = "") -> float:
        """
        End tracking a phase and log the duration.
        Returns the duration in seconds.
        """
        start_time = self._start_times.pop(phase_name, None)
        if start_time is None:
            logger.warning(f"Attempted to end phase '{phase_name}' without starting it.")
            return 0.0

        duration = time.perf_counter() - start_time
        info_str = f" - {extra_info}" if extra_info else ""

        logger.info(
            f"[{self._get_utc_time()}] [END]   {phase_name}{info_str} "
            f"(Duration: {duration:.3f}s)"
        )
        return duration

    @property
    def open_phases(self) -> int:
        """Number of phases started but not yet ended."""
        return len(self._start_times)

# Singleton instance
perf_logger = PerformanceLogger()
