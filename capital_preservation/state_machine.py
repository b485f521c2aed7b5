"""
Capital Preservation - Risk State Machine.

============================================================
PURPOSE
============================================================
Maps drawdown to a protection state and owns the sticky
emergency flag.

STATE RULES (drawdown dd):
- dd < warning             → NORMAL (or RECOVERING after resume)
- warning <= dd < max      → WARNING, no size cut
- max <= dd < critical     → HIGH_RISK, linear size cut
- dd >= critical           → EMERGENCY, sticky, trading blocked

- EMERGENCY → anything: MANUAL RESUME REQUIRED
- RECOVERING → NORMAL: Auto once dd < recovery_threshold

CRITICAL CONSTRAINT:
- The emergency flag is never cleared by a falling drawdown
- Activations are counted on the False → True edge only
- All transitions logged for audit

============================================================
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
import logging

from .config import ProtectionConfig
from .types import DrawdownStatus, ProtectionState, StateTransition


logger = logging.getLogger(__name__)


@dataclass
class StateEvaluation:
    """Outcome of evaluating one drawdown reading."""

    state: ProtectionState
    risk_reduction_level: float
    emergency_active: bool
    emergency_triggered: bool = False
    """True only on the tick that raised the emergency flag."""
    transition: Optional[StateTransition] = None


def linear_risk_reduction(
    current_drawdown: float,
    max_threshold: float,
    critical_threshold: float,
) -> float:
    """Size cut from 0 at the max threshold to 100 at the critical one."""
    span = critical_threshold - max_threshold
    if span <= 0:
        return 100.0
    level = (current_drawdown - max_threshold) / span * 100
    return min(100.0, max(0.0, level))


class RiskStateMachine:
    """
    Protection state machine.

    Rules:
    1. EMERGENCY is sticky until resume()
    2. The HIGH_RISK size cut never eases while HIGH_RISK lasts
    3. All transitions are recorded
    """

    def __init__(self, config: ProtectionConfig, max_history_size: int = 100):
        """
        Initialize state machine.

        Args:
            config: Protection thresholds
            max_history_size: Transitions kept in history
        """
        self._config = config
        self._max_history_size = max_history_size
        self._state = ProtectionState.NORMAL
        self._emergency_active = False
        self._risk_reduction_level = 0.0
        self._emergency_activations = 0
        self._emergency_activated_at: Optional[datetime] = None
        self._last_drawdown = 0.0
        self._history: List[StateTransition] = []

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def state(self) -> ProtectionState:
        return self._state

    @property
    def emergency_active(self) -> bool:
        return self._emergency_active

    @property
    def risk_reduction_level(self) -> float:
        return self._risk_reduction_level

    @property
    def emergency_activations(self) -> int:
        return self._emergency_activations

    @property
    def emergency_activated_at(self) -> Optional[datetime]:
        return self._emergency_activated_at

    @property
    def last_drawdown(self) -> float:
        return self._last_drawdown

    @property
    def transition_history(self) -> List[StateTransition]:
        """Get transition history."""
        return list(self._history)

    def set_config(self, config: ProtectionConfig) -> None:
        self._config = config

    # --------------------------------------------------------
    # EVALUATION
    # --------------------------------------------------------

    def evaluate(self, current_drawdown: float, now: datetime) -> StateEvaluation:
        """
        Evaluate one drawdown reading.

        Args:
            current_drawdown: Drawdown from peak (percentage)
            now: Tick time

        Returns:
            StateEvaluation
        """
        config = self._config
        self._last_drawdown = current_drawdown

        if self._emergency_active:
            self._risk_reduction_level = 100.0
            return StateEvaluation(
                state=self._state,
                risk_reduction_level=100.0,
                emergency_active=True,
            )

        triggered = False

        if current_drawdown >= config.critical_drawdown_threshold:
            target = ProtectionState.EMERGENCY
            level = 100.0
            triggered = True
            self._emergency_active = True
            self._emergency_activations += 1
            self._emergency_activated_at = now
            logger.warning(
                f"EMERGENCY measures activated | Drawdown: {current_drawdown:.2f}% | "
                f"Critical: {config.critical_drawdown_threshold:.2f}%"
            )
        elif current_drawdown >= config.max_drawdown_threshold:
            target = ProtectionState.HIGH_RISK
            level = linear_risk_reduction(
                current_drawdown,
                config.max_drawdown_threshold,
                config.critical_drawdown_threshold,
            )
            if self._state == ProtectionState.HIGH_RISK:
                level = max(self._risk_reduction_level, level)
        elif current_drawdown >= config.warning_drawdown_threshold:
            target = ProtectionState.WARNING
            level = 0.0
        else:
            level = 0.0
            if (
                self._state == ProtectionState.RECOVERING
                and current_drawdown >= config.recovery_threshold
            ):
                target = ProtectionState.RECOVERING
            else:
                target = ProtectionState.NORMAL

        self._risk_reduction_level = level

        transition = None
        if target != self._state:
            transition = self._transition_to(
                new_state=target,
                reason=f"Drawdown {current_drawdown:.2f}%",
                now=now,
                is_automatic=True,
                drawdown=current_drawdown,
            )

        return StateEvaluation(
            state=target,
            risk_reduction_level=level,
            emergency_active=self._emergency_active,
            emergency_triggered=triggered,
            transition=transition,
        )

    def check_recovery_conditions(self, status: DrawdownStatus) -> bool:
        """
        Advisory recovery predicate over the given status.

        Never changes state; only resume() clears the emergency flag.
        """
        if not status.emergency_measures_active:
            return True

        return (
            status.current_drawdown < self._config.recovery_threshold
            and status.recovery_progress >= self._config.recovery_progress_required
        )

    # --------------------------------------------------------
    # MANUAL RESUME
    # --------------------------------------------------------

    def resume(self, operator: str, now: datetime) -> Optional[StateTransition]:
        """
        Operator resume: clears the emergency flag and the size cut.

        Args:
            operator: Who resumed
            now: Resume time

        Returns:
            StateTransition if the state changed, None otherwise
        """
        was_active = self._emergency_active
        self._emergency_active = False
        self._risk_reduction_level = 0.0

        if self._last_drawdown < self._config.recovery_threshold:
            target = ProtectionState.NORMAL
        else:
            target = ProtectionState.RECOVERING

        if not was_active:
            logger.info(f"Resume requested by {operator} with no active emergency")
            return None

        return self._transition_to(
            new_state=target,
            reason=f"MANUAL RESUME by {operator}",
            now=now,
            is_automatic=False,
            drawdown=self._last_drawdown,
        )

    def restore(
        self,
        state: ProtectionState,
        emergency_active: bool,
        risk_reduction_level: float,
        emergency_activations: int,
        emergency_activated_at: Optional[datetime],
        last_drawdown: float,
    ) -> None:
        """Load persisted state. History is not restored."""
        self._state = state
        self._emergency_active = emergency_active
        self._risk_reduction_level = risk_reduction_level
        self._emergency_activations = emergency_activations
        self._emergency_activated_at = emergency_activated_at
        self._last_drawdown = last_drawdown
        self._history = []

    # --------------------------------------------------------
    # INTERNAL HELPERS
    # --------------------------------------------------------

    def _transition_to(
        self,
        new_state: ProtectionState,
        reason: str,
        now: datetime,
        is_automatic: bool,
        drawdown: float,
    ) -> StateTransition:
        old_state = self._state

        transition = StateTransition(
            from_state=old_state,
            to_state=new_state,
            timestamp=now,
            reason=reason,
            is_automatic=is_automatic,
            drawdown=drawdown,
        )

        self._state = new_state

        self._history.append(transition)
        if len(self._history) > self._max_history_size:
            self._history = self._history[-self._max_history_size:]

        logger.info(
            f"State transition: {old_state.value} -> {new_state.value} "
            f"(reason: {reason}, auto: {is_automatic})"
        )

        return transition
