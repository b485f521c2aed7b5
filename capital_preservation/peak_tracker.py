"""
Capital Preservation - Peak Tracker.

============================================================
PURPOSE
============================================================
Tracks the highest observed balance and derives drawdown.

- Current drawdown from peak
- Maximum drawdown since last reset
- Ticks (and clock time) spent in drawdown
- Recovery progress from the worst point
- Drawdown episodes for statistics

============================================================
CRITICAL INVARIANTS
============================================================
1. current_drawdown is always within [0, 100]
2. max_drawdown never decreases until reset()
3. A zero or negative peak yields 0% drawdown
4. Duration resets only when the peak is reached again

============================================================
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Optional
import logging

from .types import DrawdownEpisode


logger = logging.getLogger(__name__)


@dataclass
class PeakReading:
    """Drawdown figures derived from one balance update."""

    peak_balance: float
    current_drawdown: float
    max_drawdown: float
    drawdown_duration: int
    recovery_progress: float
    drawdown_elapsed_seconds: float = 0.0
    is_new_peak: bool = False


class PeakTracker:
    """
    Peak balance and drawdown tracker.

    State is created empty; the first update establishes the
    peak with zero drawdown.
    """

    def __init__(self, min_episode_drawdown: float = 0.1):
        """
        Initialize the tracker.

        Args:
            min_episode_drawdown: Drawdown (%) above which an episode is opened
        """
        self._min_episode_drawdown = min_episode_drawdown
        self._peak: Optional[float] = None
        self._max_drawdown = 0.0
        self._current_drawdown = 0.0
        self._duration = 0
        self._drawdown_started_at: Optional[datetime] = None
        self._episodes: List[DrawdownEpisode] = []
        self._open_episode: Optional[DrawdownEpisode] = None

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def peak_balance(self) -> Optional[float]:
        return self._peak

    @property
    def max_drawdown(self) -> float:
        return self._max_drawdown

    @property
    def current_drawdown(self) -> float:
        return self._current_drawdown

    @property
    def drawdown_duration(self) -> int:
        return self._duration

    @property
    def drawdown_started_at(self) -> Optional[datetime]:
        return self._drawdown_started_at

    @property
    def episodes(self) -> List[DrawdownEpisode]:
        """Copies of the recorded episodes."""
        return [replace(episode) for episode in self._episodes]

    @property
    def open_episode(self) -> Optional[DrawdownEpisode]:
        if self._open_episode is None:
            return None
        return replace(self._open_episode)

    def set_min_episode_drawdown(self, value: float) -> None:
        self._min_episode_drawdown = value

    # --------------------------------------------------------
    # UPDATES
    # --------------------------------------------------------

    def update(self, balance: float, now: datetime) -> PeakReading:
        """
        Process one balance observation.

        Args:
            balance: Current account balance
            now: Tick time from the guard's clock

        Returns:
            PeakReading with the derived drawdown figures
        """
        is_new_peak = False

        if self._peak is None or balance >= self._peak:
            is_new_peak = self._peak is None or balance > self._peak
            self._peak = balance
            self._duration = 0
            self._drawdown_started_at = None

        current = self._drawdown_from_peak(balance)

        if current > 0:
            self._duration += 1
            if self._drawdown_started_at is None:
                self._drawdown_started_at = now

        self._current_drawdown = current
        self._max_drawdown = max(self._max_drawdown, current)
        self._track_episode(balance, current, now)

        elapsed = 0.0
        if self._drawdown_started_at is not None:
            elapsed = (now - self._drawdown_started_at).total_seconds()

        return PeakReading(
            peak_balance=self._peak,
            current_drawdown=current,
            max_drawdown=self._max_drawdown,
            drawdown_duration=self._duration,
            recovery_progress=self.recovery_progress(current),
            drawdown_elapsed_seconds=elapsed,
            is_new_peak=is_new_peak,
        )

    def recovery_progress(self, current_drawdown: float) -> float:
        """How far the current drawdown has retraced from the worst (0-100)."""
        if self._max_drawdown <= 0:
            return 100.0
        progress = (self._max_drawdown - current_drawdown) / self._max_drawdown * 100
        return min(100.0, max(0.0, progress))

    def mark_emergency(self) -> None:
        """Flag the open drawdown episode as having triggered emergency measures."""
        if self._open_episode is not None:
            self._open_episode.emergency_activated = True

    def reset(self) -> None:
        """Forget the peak, max drawdown and episode history."""
        self._peak = None
        self._max_drawdown = 0.0
        self._current_drawdown = 0.0
        self._duration = 0
        self._drawdown_started_at = None
        self._episodes = []
        self._open_episode = None
        logger.info("Peak tracker reset")

    def restore(
        self,
        peak_balance: Optional[float],
        max_drawdown: float,
        drawdown_duration: int,
        drawdown_started_at: Optional[datetime],
        current_drawdown: float,
        episodes: List[DrawdownEpisode],
    ) -> None:
        """Load persisted tracker state."""
        self._peak = peak_balance
        self._max_drawdown = max_drawdown
        self._current_drawdown = current_drawdown
        self._duration = drawdown_duration
        self._drawdown_started_at = drawdown_started_at
        self._episodes = [replace(episode) for episode in episodes]
        open_episodes = [episode for episode in self._episodes if episode.is_open]
        self._open_episode = open_episodes[-1] if open_episodes else None

    # --------------------------------------------------------
    # INTERNAL HELPERS
    # --------------------------------------------------------

    def _drawdown_from_peak(self, balance: float) -> float:
        if self._peak is None or self._peak <= 0:
            return 0.0

        drawdown = (self._peak - balance) / self._peak * 100
        return min(100.0, max(0.0, drawdown))

    def _track_episode(self, balance: float, current: float, now: datetime) -> None:
        episode = self._open_episode

        if current > self._min_episode_drawdown:
            if episode is None:
                episode = DrawdownEpisode(
                    started_at=now,
                    peak_balance=self._peak,
                    trough_balance=balance,
                    max_drawdown=current,
                    duration_ticks=1,
                )
                self._episodes.append(episode)
                self._open_episode = episode
                logger.info(
                    f"Drawdown episode started | Peak: {self._peak:,.2f} | "
                    f"Drawdown: {current:.2f}%"
                )
            else:
                episode.trough_balance = min(episode.trough_balance, balance)
                episode.max_drawdown = max(episode.max_drawdown, current)
                episode.duration_ticks += 1
        elif episode is not None:
            episode.ended_at = now
            self._open_episode = None
            logger.info(
                f"Drawdown episode ended | Worst: {episode.max_drawdown:.2f}% | "
                f"Ticks: {episode.duration_ticks}"
            )
