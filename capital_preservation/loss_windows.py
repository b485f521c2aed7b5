"""
Capital Preservation - Loss Window Tracker.

============================================================
PURPOSE
============================================================
Per-window realized loss budgets (daily / weekly / monthly).

    limit     = window_pct / 100 x current_balance
    current   = max(0, -window_pnl)
    remaining = max(0, limit - current)

An exhausted DAILY budget halts trading for the current tick
only. It never sets the sticky emergency flag.

============================================================
WINDOW BOUNDARIES (UTC)
============================================================
- DAILY: next midnight
- WEEKLY: next Monday 00:00
- MONTHLY: first day of next month 00:00

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List
import logging

from .config import ProtectionConfig
from .types import (
    AlertSeverity,
    AlertType,
    CapitalProtectionAlert,
    LossLimits,
    LossLimitStatus,
    LossWindow,
)


logger = logging.getLogger(__name__)


@dataclass
class LossWindowEvaluation:
    """Loss budgets of one tick plus the alerts they raised."""

    limits: LossLimits
    alerts: List[CapitalProtectionAlert] = field(default_factory=list)
    daily_halt: bool = False
    """True when the daily budget is exhausted; blocks this tick."""


# ============================================================
# WINDOW BOUNDARIES
# ============================================================

def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def next_reset_time(window: LossWindow, now: datetime) -> datetime:
    """Start of the window following the one containing `now`."""
    midnight = _start_of_day(now)

    if window == LossWindow.DAILY:
        return midnight + timedelta(days=1)

    if window == LossWindow.WEEKLY:
        days_until_monday = 7 - midnight.weekday()
        return midnight + timedelta(days=days_until_monday)

    if midnight.month == 12:
        return midnight.replace(year=midnight.year + 1, month=1, day=1)
    return midnight.replace(month=midnight.month + 1, day=1)


# ============================================================
# TRACKER
# ============================================================

class LossWindowTracker:
    """
    Computes loss budgets from the P&L figures supplied each tick.

    Stateless across ticks: the caller owns window accounting and
    passes realized P&L for each window.
    """

    def __init__(self, config: ProtectionConfig):
        self._config = config

    def set_config(self, config: ProtectionConfig) -> None:
        self._config = config

    def evaluate(
        self,
        current_balance: float,
        daily_pnl: float,
        weekly_pnl: float,
        monthly_pnl: float,
        now: datetime,
    ) -> LossWindowEvaluation:
        """
        Compute all three budgets and their alerts.

        Args:
            current_balance: Account balance this tick
            daily_pnl: Realized P&L of the current day
            weekly_pnl: Realized P&L of the current week
            monthly_pnl: Realized P&L of the current month
            now: Tick time

        Returns:
            LossWindowEvaluation
        """
        limits = LossLimits(
            daily=self._status(LossWindow.DAILY, self._config.daily_loss_limit,
                               current_balance, daily_pnl, now),
            weekly=self._status(LossWindow.WEEKLY, self._config.weekly_loss_limit,
                                current_balance, weekly_pnl, now),
            monthly=self._status(LossWindow.MONTHLY, self._config.monthly_loss_limit,
                                 current_balance, monthly_pnl, now),
        )

        evaluation = LossWindowEvaluation(limits=limits)

        if limits.daily.exhausted:
            evaluation.daily_halt = True
            evaluation.alerts.append(CapitalProtectionAlert(
                alert_type=AlertType.EMERGENCY_STOP,
                severity=AlertSeverity.CRITICAL,
                message=(
                    f"Daily loss limit reached: {limits.daily.current:,.2f} lost "
                    f"against a limit of {limits.daily.limit:,.2f}. Trading halted."
                ),
                timestamp=now,
                recommended_actions=[
                    "Halt all new trading until the daily window resets",
                    "Review today's losing trades",
                ],
            ))
            logger.warning(
                f"Daily loss limit exhausted | Lost: {limits.daily.current:,.2f} | "
                f"Limit: {limits.daily.limit:,.2f}"
            )

        for status in limits.windows():
            if status.window == LossWindow.DAILY and evaluation.daily_halt:
                continue
            if status.remaining < self._config.limit_warning_ratio * status.limit:
                evaluation.alerts.append(self._limit_warning(status, now))

        return evaluation

    # --------------------------------------------------------
    # INTERNAL HELPERS
    # --------------------------------------------------------

    def _status(
        self,
        window: LossWindow,
        limit_pct: float,
        balance: float,
        pnl: float,
        now: datetime,
    ) -> LossLimitStatus:
        limit = max(0.0, limit_pct / 100 * balance)
        current = max(0.0, -pnl)
        remaining = max(0.0, limit - current)

        return LossLimitStatus(
            window=window,
            limit=limit,
            current=current,
            remaining=remaining,
            reset_time=next_reset_time(window, now),
        )

    def _limit_warning(self, status: LossLimitStatus, now: datetime) -> CapitalProtectionAlert:
        logger.info(
            f"{status.window.label} loss limit approaching | "
            f"Remaining: {status.remaining:,.2f} of {status.limit:,.2f}"
        )
        return CapitalProtectionAlert(
            alert_type=AlertType.LIMIT_WARNING,
            severity=AlertSeverity.HIGH,
            message=(
                f"{status.window.label} loss limit approaching: "
                f"{status.remaining:,.2f} remaining of {status.limit:,.2f} "
                f"({status.utilization_pct:.1f}% used)"
            ),
            timestamp=now,
            recommended_actions=[
                f"Reduce trading activity for the rest of the {status.window.value.lower()} window",
            ],
        )
