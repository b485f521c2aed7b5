"""
Tests for the Capital Preservation Guard.

============================================================
TEST SCENARIOS
============================================================
1. 6% drawdown → one DRAWDOWN_WARNING, trading allowed
2. 12% drawdown → size cut, HIGH alert, trading allowed
3. 16% drawdown → EMERGENCY, trading blocked, sticky
4. Resume → trading allowed, informational alert
5. Daily loss limit exhausted → tick halted, not sticky
6. Config updates are atomic
7. Statistics and state export / restore

============================================================
"""

import pytest

from capital_preservation import (
    AlertSeverity,
    AlertType,
    CapitalPreservationGuard,
    ConfigPatch,
    DrawdownStatus,
    EmergencyActionType,
    GuardStateSnapshot,
    InvalidConfigurationError,
    Position,
    ProtectionConfig,
    ProtectionState,
    StateRestoreError,
)


def tick(guard, balance, positions=None, daily=0.0, weekly=0.0, monthly=0.0):
    return guard.monitor(balance, positions or [], daily, weekly, monthly)


def alerts_of(result, alert_type):
    return [alert for alert in result.alerts if alert.alert_type == alert_type]


def action_types(result):
    return [action.action_type for action in result.emergency_actions]


# ============================================================
# TEST: CONSTRUCTION
# ============================================================

class TestConstruction:
    """Guard construction."""

    def test_defaults(self):
        guard = CapitalPreservationGuard()

        assert guard.get_config() == ProtectionConfig()
        assert guard.protection_state == ProtectionState.NORMAL

    def test_invalid_config_rejected(self, clock):
        with pytest.raises(InvalidConfigurationError):
            CapitalPreservationGuard(
                config=ProtectionConfig(warning_drawdown_threshold=12.0),
                clock=clock,
            )

    def test_first_tick_sets_peak(self, guard, positions):
        result = tick(guard, 10000.0, positions)

        assert result.drawdown_status.peak_balance == 10000.0
        assert result.drawdown_status.current_drawdown == 0.0
        assert result.trading_allowed
        assert result.alerts == []
        assert result.emergency_actions == []


# ============================================================
# TEST: DRAWDOWN ESCALATION
# ============================================================

class TestDrawdownEscalation:
    """Drawdown bands through the guard."""

    def test_warning_band(self, guard, positions):
        tick(guard, 10000.0, positions)

        result = tick(guard, 9400.0, positions, daily=-180.0)

        warnings = alerts_of(result, AlertType.DRAWDOWN_WARNING)
        assert len(warnings) == 1
        assert warnings[0].severity == AlertSeverity.MEDIUM
        assert result.trading_allowed
        assert result.protection_state == ProtectionState.WARNING
        assert result.drawdown_status.risk_reduction_level == 0.0

    def test_high_risk_band(self, guard, positions):
        tick(guard, 10000.0, positions)

        result = tick(guard, 8800.0, positions)

        assert result.drawdown_status.risk_reduction_level > 0
        assert any(alert.severity == AlertSeverity.HIGH for alert in result.alerts)
        assert result.trading_allowed
        assert EmergencyActionType.REDUCE_POSITION_SIZES in action_types(result)
        assert EmergencyActionType.INCREASE_STOP_LOSSES in action_types(result)

    def test_emergency_band(self, guard, positions):
        tick(guard, 10000.0, positions)

        result = tick(guard, 8400.0, positions)

        assert result.drawdown_status.emergency_measures_active
        stops = alerts_of(result, AlertType.EMERGENCY_STOP)
        assert len(stops) == 1
        assert stops[0].severity == AlertSeverity.CRITICAL
        assert not result.trading_allowed
        assert result.drawdown_status.risk_reduction_level == 100.0

        close_all = [
            action for action in result.emergency_actions
            if action.action_type == EmergencyActionType.CLOSE_ALL_POSITIONS
        ]
        assert close_all[0].affected_positions == ["pos-btc", "pos-eth"]
        assert EmergencyActionType.HALT_TRADING in action_types(result)

    def test_emergency_is_sticky(self, guard, positions):
        tick(guard, 10000.0, positions)
        tick(guard, 8400.0, positions)

        result = tick(guard, 9900.0, positions)

        assert result.drawdown_status.emergency_measures_active
        assert not result.trading_allowed
        assert result.protection_state == ProtectionState.EMERGENCY
        assert alerts_of(result, AlertType.EMERGENCY_STOP) == []
        assert action_types(result) == [EmergencyActionType.HALT_TRADING]

    def test_emergency_triggered_only_on_activation_tick(self, guard, positions):
        tick(guard, 10000.0, positions)

        activation = tick(guard, 8400.0, positions)
        sticky = tick(guard, 9900.0, positions)

        assert activation.emergency_triggered
        assert activation.balance == 8400.0
        assert not sticky.emergency_triggered
        assert sticky.balance == 9900.0

    def test_reduced_size_from_status(self, guard):
        tick(guard, 10000.0)
        result = tick(guard, 8800.0)

        adjusted = guard.calculate_position_size_adjustment(1000.0, result.drawdown_status)

        assert adjusted == pytest.approx(600.0)


# ============================================================
# TEST: RESUME
# ============================================================

class TestResume:
    """Operator resume out of emergency."""

    def test_resume_allows_trading(self, guard, positions):
        tick(guard, 10000.0, positions)
        tick(guard, 8400.0, positions)
        tick(guard, 9900.0, positions)

        alert = guard.resume_normal_operations(operator="alice")
        assert guard.get_recent_alerts(1) == [alert]

        result = tick(guard, 9900.0, positions)

        assert alert.severity == AlertSeverity.LOW
        assert alert.alert_type == AlertType.DRAWDOWN_WARNING
        assert "Normal operations resumed" in alert.message
        assert result.trading_allowed
        assert not result.drawdown_status.emergency_measures_active
        assert result.drawdown_status.risk_reduction_level == 0.0
        assert result.protection_state == ProtectionState.NORMAL

    def test_resume_while_deep_is_recovering(self, guard):
        tick(guard, 10000.0)
        tick(guard, 8400.0)
        tick(guard, 9600.0)

        guard.resume_normal_operations()

        assert guard.protection_state == ProtectionState.RECOVERING
        result = tick(guard, 9600.0)
        assert result.trading_allowed

    def test_resume_recorded_in_history(self, guard):
        tick(guard, 10000.0)
        tick(guard, 8400.0)
        tick(guard, 9900.0)

        guard.resume_normal_operations(operator="alice")

        last = guard.get_transition_history()[-1]
        assert last.from_state == ProtectionState.EMERGENCY
        assert not last.is_automatic

    def test_recovery_conditions(self, guard):
        status = DrawdownStatus(
            current_drawdown=8.0,
            recovery_progress=50.0,
            emergency_measures_active=True,
        )

        assert not guard.check_recovery_conditions(status)

    def test_recovery_conditions_from_live_status(self, guard):
        tick(guard, 10000.0)
        tick(guard, 8400.0)
        tick(guard, 9900.0)

        status = guard.get_drawdown_status()

        # 1% now against a 16% worst: 93.75% recovered
        assert status.recovery_progress == pytest.approx(93.75)
        assert guard.check_recovery_conditions(status)
        assert guard.emergency_active


# ============================================================
# TEST: LOSS LIMITS
# ============================================================

class TestLossLimits:
    """Loss window halts."""

    def test_daily_limit_halts_tick(self, guard, positions):
        tick(guard, 9700.0, positions)

        result = tick(guard, 9700.0, positions, daily=-300.0)

        assert not result.trading_allowed
        assert result.loss_limits.daily.limit == pytest.approx(194.0)
        assert result.loss_limits.daily.remaining == 0.0
        stops = alerts_of(result, AlertType.EMERGENCY_STOP)
        assert stops[0].severity == AlertSeverity.CRITICAL
        assert not result.drawdown_status.emergency_measures_active
        assert EmergencyActionType.HALT_TRADING in action_types(result)

    def test_daily_halt_is_not_sticky(self, guard):
        tick(guard, 9700.0)
        tick(guard, 9700.0, daily=-300.0)

        result = tick(guard, 9700.0, daily=0.0)

        assert result.trading_allowed

    def test_daily_halt_alongside_warning_drawdown(self, guard):
        tick(guard, 10000.0)

        result = tick(guard, 9400.0, daily=-300.0)

        assert not result.trading_allowed
        assert len(alerts_of(result, AlertType.DRAWDOWN_WARNING)) == 1
        assert len(alerts_of(result, AlertType.EMERGENCY_STOP)) == 1

    def test_weekly_warning(self, guard):
        tick(guard, 10000.0)

        result = tick(guard, 10000.0, weekly=-450.0)

        warnings = alerts_of(result, AlertType.LIMIT_WARNING)
        assert len(warnings) == 1
        assert "Weekly loss limit approaching" in warnings[0].message
        assert result.trading_allowed


# ============================================================
# TEST: CORRELATION
# ============================================================

class TestCorrelation:
    """Advisory correlation alerts."""

    def test_base_positions_no_alert(self, guard, positions):
        result = tick(guard, 10000.0, positions)

        assert alerts_of(result, AlertType.CORRELATION_RISK) == []
        assert result.correlation.total_exposure == pytest.approx(8200.0)

    def test_duplicate_positions_alert_but_trade(self, guard, positions):
        duplicated = positions + [Position(
            position_id="pos-btc-2",
            symbol="BTC",
            size=0.05,
            entry_price=51000.0,
            current_price=51000.0,
        )]

        result = tick(guard, 10000.0, duplicated)

        assert len(alerts_of(result, AlertType.CORRELATION_RISK)) == 1
        assert result.trading_allowed


# ============================================================
# TEST: ALERT LOG
# ============================================================

class TestAlertLog:
    """Alert retention through the guard."""

    def test_alerts_logged_in_order(self, guard):
        tick(guard, 10000.0)
        tick(guard, 9400.0)
        tick(guard, 8800.0)

        recent = guard.get_recent_alerts(10)

        assert [a.alert_type for a in recent] == [
            AlertType.DRAWDOWN_WARNING,
            AlertType.DRAWDOWN_HIGH,
        ]

    def test_clear_old_alerts(self, guard, clock):
        tick(guard, 10000.0)
        tick(guard, 9400.0)
        clock.advance(hours=2)
        tick(guard, 9400.0)

        evicted = guard.clear_old_alerts(3600)

        assert evicted == 1
        assert len(guard.get_recent_alerts(10)) == 1

    def test_clear_all_alerts(self, guard):
        tick(guard, 10000.0)
        tick(guard, 9400.0)

        assert guard.clear_old_alerts(0) == 1
        assert guard.get_recent_alerts() == []


# ============================================================
# TEST: CONFIGURATION UPDATES
# ============================================================

class TestConfigUpdates:
    """update_config / get_config."""

    def test_update_applies(self, guard):
        tick(guard, 10000.0)

        guard.update_config(ConfigPatch(warning_drawdown_threshold=7.0))
        result = tick(guard, 9400.0)

        assert guard.get_config().warning_drawdown_threshold == 7.0
        assert result.protection_state == ProtectionState.NORMAL

    def test_invalid_update_leaves_config(self, guard):
        before = guard.get_config()

        with pytest.raises(InvalidConfigurationError):
            guard.update_config(ConfigPatch(max_drawdown_threshold=20.0))

        assert guard.get_config() == before

    def test_loss_limit_update_reaches_tracker(self, guard):
        guard.update_config(ConfigPatch(daily_loss_limit=1.0))

        result = tick(guard, 10000.0, daily=-150.0)

        assert not result.trading_allowed


# ============================================================
# TEST: STATISTICS
# ============================================================

class TestStatistics:
    """get_capital_preservation_stats."""

    def test_initial_stats(self, guard):
        stats = guard.get_capital_preservation_stats()

        assert stats.total_drawdown_periods == 0
        assert stats.emergency_activations == 0
        assert stats.current_status == "NORMAL"
        assert stats.recovery_rate == 100.0

    def test_stats_after_emergency(self, guard, clock):
        tick(guard, 10000.0)
        tick(guard, 8400.0)
        tick(guard, 8000.0)

        stats = guard.get_capital_preservation_stats()

        assert stats.total_drawdown_periods == 1
        assert stats.max_historical_drawdown == pytest.approx(20.0)
        assert stats.emergency_activations == 1
        assert stats.current_status == "EMERGENCY"
        assert guard.export_state().episodes[0].emergency_activated

    def test_recovering_reports_as_normal(self, guard):
        tick(guard, 10000.0)
        tick(guard, 8400.0)
        tick(guard, 9600.0)

        guard.resume_normal_operations("alice")

        assert guard.protection_state == ProtectionState.RECOVERING
        assert guard.get_capital_preservation_stats().current_status == "NORMAL"

    def test_closed_episode_duration(self, guard, clock):
        tick(guard, 10000.0)
        tick(guard, 9500.0)
        clock.advance(minutes=30)
        tick(guard, 10200.0)

        stats = guard.get_capital_preservation_stats()

        assert stats.total_drawdown_periods == 1
        assert stats.average_drawdown_duration_seconds == 1800.0
        assert stats.recovery_rate == 100.0

    def test_reset_peak(self, guard):
        tick(guard, 10000.0)
        tick(guard, 8800.0)

        guard.reset_peak()
        result = tick(guard, 8800.0)

        assert result.drawdown_status.max_drawdown == 0.0
        assert result.drawdown_status.peak_balance == 8800.0
        assert guard.get_capital_preservation_stats().total_drawdown_periods == 0


# ============================================================
# TEST: STATE EXPORT / RESTORE
# ============================================================

class TestStateRestore:
    """Sticky state across guard instances."""

    def test_restore_keeps_emergency(self, guard, config, clock):
        tick(guard, 10000.0)
        tick(guard, 8400.0)
        snapshot = guard.export_state()

        fresh = CapitalPreservationGuard(config=config, clock=clock)
        fresh.restore_state(snapshot)
        result = tick(fresh, 9900.0)

        assert result.drawdown_status.emergency_measures_active
        assert not result.trading_allowed
        assert result.drawdown_status.peak_balance == 10000.0
        assert fresh.get_capital_preservation_stats().emergency_activations == 1

    def test_elapsed_time_survives_restore(self, guard, config, clock):
        tick(guard, 10000.0)
        tick(guard, 9000.0)
        snapshot = guard.export_state()

        clock.advance(minutes=10)
        fresh = CapitalPreservationGuard(config=config, clock=clock)
        fresh.restore_state(snapshot)
        result = tick(fresh, 9000.0)

        assert result.drawdown_status.drawdown_elapsed_seconds == 600.0
        assert result.drawdown_status.drawdown_duration == 2

    def test_snapshot_is_frozen_at_export(self, guard):
        tick(guard, 10000.0)
        tick(guard, 9000.0)
        snapshot = guard.export_state()

        tick(guard, 8000.0)

        assert snapshot.episodes[0].trough_balance == 9000.0
        assert snapshot.episodes[0].duration_ticks == 1

    def test_restored_guard_does_not_share_episodes(self, guard, config, clock):
        tick(guard, 10000.0)
        tick(guard, 9000.0)
        snapshot = guard.export_state()

        fresh = CapitalPreservationGuard(config=config, clock=clock)
        fresh.restore_state(snapshot)
        tick(fresh, 10500.0)

        assert not fresh.export_state().episodes[0].is_open
        assert guard.export_state().episodes[0].is_open
        assert snapshot.episodes[0].is_open

    def test_inconsistent_snapshot_rejected(self, guard):
        snapshot = GuardStateSnapshot(
            peak_balance=10000.0,
            max_drawdown=16.0,
            drawdown_duration=1,
            protection_state=ProtectionState.NORMAL,
            emergency_active=True,
            risk_reduction_level=100.0,
            emergency_activations=1,
        )

        with pytest.raises(StateRestoreError):
            guard.restore_state(snapshot)

        assert not guard.emergency_active

    def test_elapsed_uses_clock(self, guard, clock):
        tick(guard, 10000.0)
        tick(guard, 9000.0)
        clock.advance(minutes=5)

        assert guard.get_drawdown_status().drawdown_elapsed_seconds == 300.0
