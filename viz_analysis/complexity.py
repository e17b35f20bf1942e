"""
Adaptive rendering complexity.

Tracks a rolling frame-rate average and nudges a bounded complexity scalar:
back off fast (x0.95) when the average drops below 80% of the target,
recover slowly (x1.02) above 95% of the target, hold in between.
"""

import logging
import math
from typing import Optional

from viz_analysis.ringbuffer import BoundedHistory

logger = logging.getLogger(__name__)


class ComplexityController:
    """Feedback controller keeping the renderer inside its frame budget."""

    def __init__(
        self,
        window_size: int = 60,
        min_complexity: float = 0.3,
        max_complexity: float = 1.0,
        backoff_factor: float = 0.95,
        recovery_factor: float = 1.02,
        backoff_ratio: float = 0.8,
        recovery_ratio: float = 0.95,
    ):
        if not 0.0 < min_complexity <= max_complexity:
            raise ValueError(
                f"Invalid complexity bounds: [{min_complexity}, {max_complexity}]"
            )

        self.min_complexity = min_complexity
        self.max_complexity = max_complexity
        self.backoff_factor = backoff_factor
        self.recovery_factor = recovery_factor
        self.backoff_ratio = backoff_ratio
        self.recovery_ratio = recovery_ratio

        self._fps_history = BoundedHistory(window_size)
        self._complexity = max_complexity

    def record(self, measured_frame_rate: float) -> None:
        """Add one instantaneous frame rate to the window (non-finite or negative rates are dropped)."""
        if not math.isfinite(measured_frame_rate) or measured_frame_rate < 0:
            return
        self._fps_history.append(measured_frame_rate)

    def adjust(self, target_frame_rate: float) -> float:
        """Apply one adjustment step against the rolling average."""
        average = self._fps_history.mean()
        if average is None:
            return self._complexity

        previous = self._complexity
        if average < target_frame_rate * self.backoff_ratio:
            self._complexity = max(self.min_complexity, self._complexity * self.backoff_factor)
        elif average > target_frame_rate * self.recovery_ratio:
            self._complexity = min(self.max_complexity, self._complexity * self.recovery_factor)

        if self._complexity != previous:
            if self._complexity == self.min_complexity:
                logger.info(f"Render complexity at floor ({average:.1f} fps avg)")
            elif self._complexity == self.max_complexity:
                logger.info(f"Render complexity restored ({average:.1f} fps avg)")
        return self._complexity

    def tick(self, measured_frame_rate: float, target_frame_rate: float) -> float:
        """
        Record a frame rate and adjust complexity.

        Returns:
            Complexity after this tick
        """
        self.record(measured_frame_rate)
        return self.adjust(target_frame_rate)

    def reset(self):
        """Force complexity back to maximum (manual override)."""
        self._complexity = self.max_complexity
        logger.info("Render complexity reset to maximum")

    @property
    def complexity(self) -> float:
        return self._complexity

    @property
    def current_fps(self) -> Optional[float]:
        """Rolling average frame rate, None before the first sample."""
        return self._fps_history.mean()

    @property
    def fps_history(self) -> BoundedHistory:
        return self._fps_history
