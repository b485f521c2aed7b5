"""
Capital Preservation - Guard Engine.

============================================================
PURPOSE
============================================================
The CapitalPreservationGuard is called once per evaluation
tick, between the Account Monitor and the Execution Engine.

It turns a balance snapshot into a verdict:
- Keep trading at full size
- Keep trading at reduced size
- Stop opening new positions

============================================================
MONITORING FLOW (PSEUDOCODE)
============================================================

def monitor(balance, positions, daily, weekly, monthly):
    # STEP 1: Update peak and drawdown
    reading = peak_tracker.update(balance)

    # STEP 2: Escalate protection state
    state = state_machine.evaluate(reading.current_drawdown)
    if state is EMERGENCY:
        trading_allowed = False    # sticky until resume

    # STEP 3: Loss window budgets
    if daily budget exhausted:
        trading_allowed = False    # this tick only

    # STEP 4: Correlation check (advisory)

    # STEP 5: Record alerts, return verdict

============================================================
"""

from datetime import datetime
from typing import List, Optional
import threading
import logging

from .alert_log import AlertLog
from .clock import ClockProtocol, SystemClock
from .config import (
    AlertLogConfig,
    ConfigPatch,
    CorrelationConfig,
    ProtectionConfig,
    apply_patch,
    ensure_valid,
    validate_correlation_config,
)
from .correlation import CorrelationAnalyzer
from .loss_windows import LossWindowTracker
from .peak_tracker import PeakTracker, PeakReading
from .sizing import calculate_position_size_adjustment
from .state_machine import RiskStateMachine, StateEvaluation
from .types import (
    AlertSeverity,
    AlertType,
    CapitalProtectionAlert,
    DrawdownStatus,
    EmergencyAction,
    EmergencyActionType,
    GuardStateSnapshot,
    InvalidConfigurationError,
    MonitoringResult,
    Position,
    PreservationStats,
    ProtectionState,
    StateRestoreError,
    StateTransition,
)


logger = logging.getLogger(__name__)


class CapitalPreservationGuard:
    """
    Capital Preservation Guard - Per-Tick Trading Gate.

    ============================================================
    INTERFACE FOR EXECUTION ENGINE
    ============================================================

    Primary method: monitor(...) -> MonitoringResult

    - trading_allowed gates new orders
    - emergency_actions says what to do with open ones
    - calculate_position_size_adjustment() scales order sizes

    ============================================================
    INTERFACE FOR OPERATORS
    ============================================================

    resume_normal_operations() is the ONLY way out of an
    emergency. check_recovery_conditions() advises when it is
    reasonable to call it.

    ============================================================
    """

    def __init__(
        self,
        config: Optional[ProtectionConfig] = None,
        correlation_config: Optional[CorrelationConfig] = None,
        alert_log_config: Optional[AlertLogConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize the guard.

        Args:
            config: Protection thresholds (defaults if None)
            correlation_config: Correlation heuristics
            alert_log_config: Alert retention
            clock: Time source (system clock if None)

        Raises:
            InvalidConfigurationError: If any configuration is invalid
        """
        self._config = ensure_valid(config or ProtectionConfig())

        correlation_config = correlation_config or CorrelationConfig()
        errors = validate_correlation_config(correlation_config)
        if errors:
            raise InvalidConfigurationError(errors)

        self._clock = clock or SystemClock()
        self._lock = threading.RLock()

        self._peak_tracker = PeakTracker(self._config.min_episode_drawdown)
        self._state_machine = RiskStateMachine(self._config)
        self._loss_tracker = LossWindowTracker(self._config)
        self._correlation = CorrelationAnalyzer(correlation_config)
        self._alert_log = AlertLog(alert_log_config)

        logger.info(
            f"CapitalPreservationGuard initialized | "
            f"Warning: {self._config.warning_drawdown_threshold}% | "
            f"Max: {self._config.max_drawdown_threshold}% | "
            f"Critical: {self._config.critical_drawdown_threshold}% | "
            f"Daily limit: {self._config.daily_loss_limit}%"
        )

    # --------------------------------------------------------
    # MONITORING
    # --------------------------------------------------------

    def monitor(
        self,
        current_balance: float,
        positions: List[Position],
        daily_pnl: float,
        weekly_pnl: float,
        monthly_pnl: float,
    ) -> MonitoringResult:
        """
        Evaluate one tick.

        Args:
            current_balance: Account balance
            positions: Open positions (read only)
            daily_pnl: Realized P&L of the current day
            weekly_pnl: Realized P&L of the current week
            monthly_pnl: Realized P&L of the current month

        Returns:
            MonitoringResult with this tick's verdict
        """
        with self._lock:
            now = self._clock.now()

            # STEP 1: Peak and drawdown
            reading = self._peak_tracker.update(current_balance, now)

            # STEP 2: Protection state
            evaluation = self._state_machine.evaluate(reading.current_drawdown, now)
            if evaluation.emergency_triggered:
                self._peak_tracker.mark_emergency()

            status = self._build_status(reading, evaluation)
            alerts, actions = self._drawdown_alerts(evaluation, status, positions, now)

            # STEP 3: Loss windows
            windows = self._loss_tracker.evaluate(
                current_balance, daily_pnl, weekly_pnl, monthly_pnl, now
            )
            alerts.extend(windows.alerts)
            if windows.daily_halt and not evaluation.emergency_active:
                actions.append(EmergencyAction(
                    action_type=EmergencyActionType.HALT_TRADING,
                    description="Halt new trading until the daily loss window resets",
                    details={"reset_time": windows.limits.daily.reset_time.isoformat()},
                ))

            # STEP 4: Correlation
            report = self._correlation.analyze(positions)
            correlation_alert = self._correlation.build_alert(report, now)
            if correlation_alert is not None:
                alerts.append(correlation_alert)

            # STEP 5: Verdict
            trading_allowed = not evaluation.emergency_active and not windows.daily_halt
            self._alert_log.extend(alerts)

            logger.debug(
                f"Tick | Balance: {current_balance:,.2f} | "
                f"Drawdown: {status.current_drawdown:.2f}% | "
                f"State: {evaluation.state.value} | "
                f"Alerts: {len(alerts)} | Trading: {trading_allowed}"
            )

            return MonitoringResult(
                drawdown_status=status,
                loss_limits=windows.limits,
                alerts=alerts,
                emergency_actions=actions,
                trading_allowed=trading_allowed,
                protection_state=evaluation.state,
                correlation=report,
                timestamp=now,
                emergency_triggered=evaluation.emergency_triggered,
                balance=current_balance,
            )

    # --------------------------------------------------------
    # SIZING AND RECOVERY
    # --------------------------------------------------------

    def calculate_position_size_adjustment(
        self,
        base_size: float,
        drawdown_status: DrawdownStatus,
    ) -> float:
        """Scale base_size by the status' risk reduction level."""
        return calculate_position_size_adjustment(base_size, drawdown_status)

    def check_recovery_conditions(self, drawdown_status: DrawdownStatus) -> bool:
        """Advisory: True when resuming normal operations is reasonable."""
        return self._state_machine.check_recovery_conditions(drawdown_status)

    def resume_normal_operations(self, operator: str = "operator") -> CapitalProtectionAlert:
        """
        Clear the sticky emergency state.

        This is the ONLY way to leave EMERGENCY.

        Args:
            operator: Who is resuming (for the audit trail)

        Returns:
            The informational alert appended to the log
        """
        with self._lock:
            now = self._clock.now()
            self._state_machine.resume(operator, now)

            alert = CapitalProtectionAlert(
                alert_type=AlertType.DRAWDOWN_WARNING,
                severity=AlertSeverity.LOW,
                message=(
                    f"Capital preservation: Emergency measures deactivated by {operator}. "
                    f"Normal operations resumed."
                ),
                timestamp=now,
            )
            self._alert_log.append(alert)

            logger.info(
                f"Normal operations resumed by {operator} | "
                f"State: {self._state_machine.state.value}"
            )
            return alert

    # --------------------------------------------------------
    # ALERTS AND STATISTICS
    # --------------------------------------------------------

    def get_recent_alerts(self, n: int = 10) -> List[CapitalProtectionAlert]:
        """Last n alerts in chronological order."""
        with self._lock:
            return self._alert_log.get_recent(n)

    def clear_old_alerts(self, max_age_seconds: float) -> int:
        """Evict alerts older than max_age_seconds. Returns the count evicted."""
        with self._lock:
            return self._alert_log.clear_old(max_age_seconds, self._clock.now())

    def get_capital_preservation_stats(self) -> PreservationStats:
        """Aggregate statistics over drawdown episodes and emergencies."""
        with self._lock:
            episodes = self._peak_tracker.episodes
            closed = [episode for episode in episodes if not episode.is_open]

            average_duration = 0.0
            if closed:
                average_duration = sum(e.duration_seconds for e in closed) / len(closed)

            recovery_rate = 100.0
            if episodes:
                recovery_rate = len(closed) / len(episodes) * 100

            state = self._state_machine.state
            if self._state_machine.emergency_active:
                current_status = ProtectionState.EMERGENCY.value
            elif state == ProtectionState.RECOVERING:
                current_status = ProtectionState.NORMAL.value
            else:
                current_status = state.value

            return PreservationStats(
                total_drawdown_periods=len(episodes),
                max_historical_drawdown=self._peak_tracker.max_drawdown,
                emergency_activations=self._state_machine.emergency_activations,
                current_status=current_status,
                average_drawdown_duration_seconds=average_duration,
                recovery_rate=recovery_rate,
            )

    def get_drawdown_status(self) -> DrawdownStatus:
        """Drawdown status as of the last tick."""
        with self._lock:
            tracker = self._peak_tracker
            elapsed = 0.0
            if tracker.drawdown_started_at is not None:
                elapsed = (self._clock.now() - tracker.drawdown_started_at).total_seconds()

            return DrawdownStatus(
                current_drawdown=tracker.current_drawdown,
                max_drawdown=tracker.max_drawdown,
                drawdown_duration=tracker.drawdown_duration,
                recovery_progress=tracker.recovery_progress(tracker.current_drawdown),
                emergency_measures_active=self._state_machine.emergency_active,
                risk_reduction_level=self._state_machine.risk_reduction_level,
                peak_balance=tracker.peak_balance,
                drawdown_elapsed_seconds=elapsed,
            )

    def get_transition_history(self) -> List[StateTransition]:
        with self._lock:
            return self._state_machine.transition_history

    @property
    def protection_state(self) -> ProtectionState:
        return self._state_machine.state

    @property
    def emergency_active(self) -> bool:
        return self._state_machine.emergency_active

    # --------------------------------------------------------
    # CONFIGURATION
    # --------------------------------------------------------

    def get_config(self) -> ProtectionConfig:
        return self._config

    def update_config(self, patch: ConfigPatch) -> ProtectionConfig:
        """
        Merge a partial update into the configuration.

        Raises:
            InvalidConfigurationError: If the merged config is invalid
                (the current config is left unchanged)
        """
        with self._lock:
            new_config = apply_patch(self._config, patch)

            self._config = new_config
            self._state_machine.set_config(new_config)
            self._loss_tracker.set_config(new_config)
            self._peak_tracker.set_min_episode_drawdown(new_config.min_episode_drawdown)

            logger.info(f"Protection config updated: {patch.changes()}")
            return new_config

    def reset_peak(self) -> None:
        """
        Manual reset of the peak, max drawdown and episode history.

        Does not clear the emergency flag.
        """
        with self._lock:
            self._peak_tracker.reset()
            logger.info("Peak balance and drawdown history reset")

    # --------------------------------------------------------
    # STATE PERSISTENCE
    # --------------------------------------------------------

    def export_state(self) -> GuardStateSnapshot:
        """Snapshot of everything needed to rebuild the sticky state."""
        with self._lock:
            tracker = self._peak_tracker
            machine = self._state_machine
            return GuardStateSnapshot(
                peak_balance=tracker.peak_balance,
                max_drawdown=tracker.max_drawdown,
                drawdown_duration=tracker.drawdown_duration,
                protection_state=machine.state,
                emergency_active=machine.emergency_active,
                risk_reduction_level=machine.risk_reduction_level,
                emergency_activations=machine.emergency_activations,
                drawdown_started_at=tracker.drawdown_started_at,
                emergency_activated_at=machine.emergency_activated_at,
                last_drawdown=tracker.current_drawdown,
                episodes=tracker.episodes,
                captured_at=self._clock.now(),
            )

    def restore_state(self, snapshot: GuardStateSnapshot) -> None:
        """
        Rebuild state from a snapshot.

        Raises:
            StateRestoreError: If the snapshot is inconsistent
        """
        errors = _snapshot_errors(snapshot)
        if errors:
            raise StateRestoreError("Cannot restore guard state: " + "; ".join(errors))

        with self._lock:
            self._peak_tracker.restore(
                peak_balance=snapshot.peak_balance,
                max_drawdown=snapshot.max_drawdown,
                drawdown_duration=snapshot.drawdown_duration,
                drawdown_started_at=snapshot.drawdown_started_at,
                current_drawdown=snapshot.last_drawdown,
                episodes=snapshot.episodes,
            )
            self._state_machine.restore(
                state=snapshot.protection_state,
                emergency_active=snapshot.emergency_active,
                risk_reduction_level=snapshot.risk_reduction_level,
                emergency_activations=snapshot.emergency_activations,
                emergency_activated_at=snapshot.emergency_activated_at,
                last_drawdown=snapshot.last_drawdown,
            )

            logger.info(
                f"Guard state restored | State: {snapshot.protection_state.value} | "
                f"Emergency: {snapshot.emergency_active} | "
                f"Peak: {snapshot.peak_balance}"
            )

    # --------------------------------------------------------
    # INTERNAL HELPERS
    # --------------------------------------------------------

    def _build_status(self, reading: PeakReading, evaluation: StateEvaluation) -> DrawdownStatus:
        return DrawdownStatus(
            current_drawdown=reading.current_drawdown,
            max_drawdown=reading.max_drawdown,
            drawdown_duration=reading.drawdown_duration,
            recovery_progress=reading.recovery_progress,
            emergency_measures_active=evaluation.emergency_active,
            risk_reduction_level=evaluation.risk_reduction_level,
            peak_balance=reading.peak_balance,
            drawdown_elapsed_seconds=reading.drawdown_elapsed_seconds,
        )

    def _drawdown_alerts(
        self,
        evaluation: StateEvaluation,
        status: DrawdownStatus,
        positions: List[Position],
        now: datetime,
    ):
        alerts: List[CapitalProtectionAlert] = []
        actions: List[EmergencyAction] = []
        config = self._config
        drawdown = status.current_drawdown
        position_ids = [position.position_id for position in positions]

        if evaluation.emergency_active:
            actions.append(EmergencyAction(
                action_type=EmergencyActionType.HALT_TRADING,
                description="Halt all new trading",
                details={"drawdown": drawdown},
            ))
            if evaluation.emergency_triggered:
                actions.append(EmergencyAction(
                    action_type=EmergencyActionType.CLOSE_ALL_POSITIONS,
                    description="Close all open positions",
                    affected_positions=position_ids,
                ))
                alerts.append(CapitalProtectionAlert(
                    alert_type=AlertType.EMERGENCY_STOP,
                    severity=AlertSeverity.CRITICAL,
                    message=(
                        f"EMERGENCY STOP: Drawdown {drawdown:.2f}% exceeds critical "
                        f"threshold {config.critical_drawdown_threshold:.2f}%"
                    ),
                    timestamp=now,
                    recommended_actions=[
                        "Halt all new trading",
                        "Close all positions",
                        "Manual review required before resuming",
                    ],
                ))
            return alerts, actions

        if evaluation.state == ProtectionState.HIGH_RISK:
            actions.append(EmergencyAction(
                action_type=EmergencyActionType.REDUCE_POSITION_SIZES,
                description=f"Reduce position sizes by {status.risk_reduction_level:.0f}%",
                affected_positions=position_ids,
                details={"risk_reduction_level": status.risk_reduction_level},
            ))
            actions.append(EmergencyAction(
                action_type=EmergencyActionType.INCREASE_STOP_LOSSES,
                description="Tighten stop losses on open positions",
                affected_positions=position_ids,
            ))
            alerts.append(CapitalProtectionAlert(
                alert_type=AlertType.DRAWDOWN_HIGH,
                severity=AlertSeverity.HIGH,
                message=(
                    f"High drawdown: {drawdown:.2f}% exceeds max threshold "
                    f"{config.max_drawdown_threshold:.2f}%. Position sizes reduced by "
                    f"{status.risk_reduction_level:.0f}%"
                ),
                timestamp=now,
                recommended_actions=[
                    "Reduce position sizes",
                    "Tighten stop losses",
                ],
            ))
        elif evaluation.state == ProtectionState.WARNING:
            alerts.append(CapitalProtectionAlert(
                alert_type=AlertType.DRAWDOWN_WARNING,
                severity=AlertSeverity.MEDIUM,
                message=(
                    f"Drawdown warning: {drawdown:.2f}% exceeds warning threshold "
                    f"{config.warning_drawdown_threshold:.2f}%"
                ),
                timestamp=now,
                recommended_actions=["Review open positions"],
            ))

        return alerts, actions


def _snapshot_errors(snapshot: GuardStateSnapshot) -> List[str]:
    errors = []

    if snapshot.emergency_active and snapshot.protection_state != ProtectionState.EMERGENCY:
        errors.append(
            f"emergency flag set but state is {snapshot.protection_state.value}"
        )
    if not snapshot.emergency_active and snapshot.protection_state == ProtectionState.EMERGENCY:
        errors.append("state is EMERGENCY but emergency flag is not set")
    if not 0 <= snapshot.risk_reduction_level <= 100:
        errors.append(f"risk_reduction_level out of range: {snapshot.risk_reduction_level}")
    if snapshot.max_drawdown < 0 or snapshot.last_drawdown < 0:
        errors.append("drawdown values must be non-negative")
    if snapshot.last_drawdown > snapshot.max_drawdown:
        errors.append("last_drawdown exceeds max_drawdown")
    if snapshot.emergency_activations < 0:
        errors.append("emergency_activations must be non-negative")
    if snapshot.drawdown_duration < 0:
        errors.append("drawdown_duration must be non-negative")

    return errors
