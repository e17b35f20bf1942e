"""
Threshold beat detection with a refractory period.

A beat is accepted when the average volume rises above the configured
threshold and the detector is not refractory, i.e. more than the refractory
interval (100ms by default) has passed since the last accepted beat.

Detector states:
    IDLE        - no beat within the refractory interval, a beat may fire
    REFRACTORY  - a beat fired less than one interval ago, input is ignored

Accepted beats are pushed onto a bounded beat history and dispatched
synchronously to every subscribed observer. A failing observer is logged
and skipped; it never interrupts dispatch or corrupts detector state.
"""

import logging
from enum import Enum
from typing import Callable, List, Optional, Set, Tuple

import numpy as np

from viz_analysis.models import BeatEvent
from viz_analysis.ringbuffer import BoundedHistory

logger = logging.getLogger(__name__)

BeatObserver = Callable[[BeatEvent], None]


class BeatState(Enum):
    """Refractory state machine of the beat detector."""

    IDLE = "idle"
    REFRACTORY = "refractory"


class BeatDetector:
    """
    Volume-threshold beat detector with refractory gating and observer fan-out.

    Usage:
        detector = BeatDetector(threshold=0.7)
        detector.subscribe(lambda event: print(event.bpm))
        event = detector.evaluate(timestamp, volume, bpm=current_bpm)
    """

    def __init__(
        self,
        threshold: float = 0.7,
        refractory: float = 0.100,  # Seconds between accepted beats
        history_size: int = 20,
    ):
        """
        Initialize beat detector.

        Args:
            threshold: Volume (0-1) that must be exceeded for a beat
            refractory: Minimum seconds between two accepted beats
            history_size: Number of recent beat timestamps kept
        """
        self.threshold = threshold
        self.refractory = refractory

        # Single timer drives the IDLE/REFRACTORY state machine
        self._last_beat_time: Optional[float] = None
        self._history = BoundedHistory(history_size)
        self._last_event: Optional[BeatEvent] = None

        # Observers, plus (op, observer) changes requested mid-dispatch
        self._observers: Set[BeatObserver] = set()
        self._dispatching = False
        self._pending: List[Tuple[str, BeatObserver]] = []

    def state_at(self, timestamp: float) -> BeatState:
        """State of the refractory machine at the given time."""
        if self._last_beat_time is None:
            return BeatState.IDLE
        if timestamp - self._last_beat_time > self.refractory:
            return BeatState.IDLE
        return BeatState.REFRACTORY

    def evaluate(
        self,
        timestamp: float,
        volume: float,
        threshold: Optional[float] = None,
        bpm: float = 120.0,
    ) -> Optional[BeatEvent]:
        """
        Evaluate one frame's volume.

        Args:
            timestamp: Frame timestamp in seconds
            volume: Average volume (0-1)
            threshold: Override for the configured threshold
            bpm: Tempo reported with the event

        Returns:
            BeatEvent if a beat was accepted, otherwise None
        """
        if threshold is None:
            threshold = self.threshold

        if not np.isfinite(volume) or volume <= threshold:
            return None
        if self.state_at(timestamp) is BeatState.REFRACTORY:
            return None

        self._last_beat_time = timestamp
        self._history.append(timestamp)

        event = BeatEvent(timestamp=timestamp, volume=float(volume), bpm=float(bpm))
        self._last_event = event
        logger.debug(f"Beat detected! Volume: {volume * 100:.1f}% BPM: {bpm:.1f}")

        self._dispatch(event)
        return event

    def _dispatch(self, event: BeatEvent):
        """Invoke every observer, isolating failures."""
        self._dispatching = True
        try:
            for observer in list(self._observers):
                try:
                    observer(event)
                except Exception as e:
                    logger.error(f"Beat callback error in {observer!r}: {e}", exc_info=True)
        finally:
            self._dispatching = False
            self._apply_pending()

    def _apply_pending(self):
        pending, self._pending = self._pending, []
        for op, observer in pending:
            if op == "add":
                self._observers.add(observer)
            else:
                self._observers.discard(observer)

    def subscribe(self, observer: BeatObserver) -> BeatObserver:
        """
        Register an observer (idempotent).

        Returns the observer so it can be used as a decorator or handle.
        """
        if self._dispatching:
            self._pending.append(("add", observer))
        else:
            self._observers.add(observer)
        return observer

    def unsubscribe(self, observer: BeatObserver) -> None:
        """Remove an observer (no-op if it is not registered)."""
        if self._dispatching:
            self._pending.append(("remove", observer))
        else:
            self._observers.discard(observer)

    def clear_observers(self):
        """Remove every observer."""
        if self._dispatching:
            self._pending.extend(("remove", observer) for observer in list(self._observers))
        else:
            self._observers.clear()

    def reset(self):
        """Forget the last beat and the beat history (observers are kept)."""
        self._last_beat_time = None
        self._last_event = None
        self._history.clear()

    @property
    def history(self) -> BoundedHistory:
        """Recent beat timestamps, oldest first."""
        return self._history

    @property
    def last_beat_time(self) -> Optional[float]:
        return self._last_beat_time

    @property
    def last_event(self) -> Optional[BeatEvent]:
        return self._last_event

    @property
    def observer_count(self) -> int:
        return len(self._observers)
