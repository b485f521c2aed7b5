"""
Capital Preservation - Type Definitions.

============================================================
PURPOSE
============================================================
Type definitions for the Capital Preservation Guard.

The guard sits between the account monitor and the order
execution engine. Once per tick it turns a balance snapshot
into a verdict: trade, trade smaller, or stop trading.

============================================================
DESIGN PRINCIPLES
============================================================
1. Drawdown and loss limits are percentages of balance
2. Positions are owned by the caller and never mutated
3. Alerts are produced here, delivered elsewhere
4. Emergency state is sticky until an operator resumes

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, List, Any
from uuid import uuid4


# ============================================================
# ENUMERATIONS
# ============================================================

class PositionDirection(str, Enum):
    """Direction of an open position."""

    LONG = "LONG"
    SHORT = "SHORT"


class ProtectionState(str, Enum):
    """
    Protection state of the guard.

    Only EMERGENCY blocks trading. RECOVERING is an advisory
    label used after an operator resume while the account is
    still below the recovery threshold.
    """

    NORMAL = "NORMAL"
    """Drawdown below warning threshold."""

    WARNING = "WARNING"
    """Drawdown between warning and max thresholds."""

    HIGH_RISK = "HIGH_RISK"
    """Drawdown between max and critical thresholds."""

    EMERGENCY = "EMERGENCY"
    """Critical drawdown reached - sticky until manual resume."""

    RECOVERING = "RECOVERING"
    """Resumed by operator, drawdown not yet back under recovery threshold."""


class AlertType(str, Enum):
    """Category of a capital protection alert."""

    DRAWDOWN_WARNING = "DRAWDOWN_WARNING"
    DRAWDOWN_HIGH = "DRAWDOWN_HIGH"
    EMERGENCY_STOP = "EMERGENCY_STOP"
    CORRELATION_RISK = "CORRELATION_RISK"
    LIMIT_WARNING = "LIMIT_WARNING"


class AlertSeverity(str, Enum):
    """Alert severity levels."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class EmergencyActionType(str, Enum):
    """Recommended actions handed to the execution engine."""

    HALT_TRADING = "HALT_TRADING"
    REDUCE_POSITION_SIZES = "REDUCE_POSITION_SIZES"
    CLOSE_ALL_POSITIONS = "CLOSE_ALL_POSITIONS"
    INCREASE_STOP_LOSSES = "INCREASE_STOP_LOSSES"


class LossWindow(str, Enum):
    """Accounting windows with their own loss budget."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"

    @property
    def label(self) -> str:
        """Human-readable window name ('Daily', 'Weekly', ...)."""
        return self.value.capitalize()


# ============================================================
# INPUT TYPES
# ============================================================

@dataclass
class Position:
    """
    Open position as supplied by the caller each tick.

    The guard only reads positions.
    """

    position_id: str
    """Unique position identifier."""

    symbol: str
    """Instrument symbol (e.g. 'BTC')."""

    size: float
    """Position size in base units."""

    entry_price: float
    """Entry price."""

    current_price: float
    """Latest mark price."""

    direction: PositionDirection = PositionDirection.LONG
    """LONG or SHORT."""

    unrealized_pnl: float = 0.0
    """Unrealized P&L in account currency."""

    stop_loss: Optional[float] = None
    """Stop loss price."""

    take_profit: Optional[float] = None
    """Take profit price."""

    opened_at: Optional[datetime] = None
    """When the position was opened."""

    @property
    def exposure(self) -> float:
        """Gross notional exposure in account currency."""
        return abs(self.size * self.current_price)


# ============================================================
# STATUS TYPES
# ============================================================

@dataclass
class DrawdownStatus:
    """
    Drawdown state reported every tick.

    Also accepted as input by the size adjuster and the
    recovery predicate, so callers can build one by hand.
    """

    current_drawdown: float = 0.0
    """Current drawdown from peak (percentage, 0-100)."""

    max_drawdown: float = 0.0
    """Worst drawdown since last reset (percentage)."""

    drawdown_duration: int = 0
    """Ticks spent in drawdown since the last peak."""

    recovery_progress: float = 100.0
    """How far current drawdown has retraced from the worst point (0-100)."""

    emergency_measures_active: bool = False
    """Sticky emergency flag."""

    risk_reduction_level: float = 0.0
    """How much new position sizes are shrunk (0-100)."""

    peak_balance: Optional[float] = None
    """Peak balance used for the calculation."""

    drawdown_elapsed_seconds: float = 0.0
    """Clock time since the drawdown began."""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "current_drawdown": self.current_drawdown,
            "max_drawdown": self.max_drawdown,
            "drawdown_duration": self.drawdown_duration,
            "recovery_progress": self.recovery_progress,
            "emergency_measures_active": self.emergency_measures_active,
            "risk_reduction_level": self.risk_reduction_level,
            "peak_balance": self.peak_balance,
            "drawdown_elapsed_seconds": self.drawdown_elapsed_seconds,
        }


@dataclass
class LossLimitStatus:
    """Loss budget of a single accounting window."""

    window: LossWindow
    """Which window."""

    limit: float
    """Window percentage × current balance."""

    current: float
    """Realized loss so far (never negative)."""

    remaining: float
    """max(0, limit - current)."""

    reset_time: Optional[datetime] = None
    """Start of the next window."""

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0

    @property
    def utilization_pct(self) -> float:
        """Budget utilization percentage."""
        if self.limit <= 0:
            return 100.0 if self.current > 0 else 0.0
        return (self.current / self.limit) * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window": self.window.value,
            "limit": self.limit,
            "current": self.current,
            "remaining": self.remaining,
            "reset_time": self.reset_time.isoformat() if self.reset_time else None,
        }


@dataclass
class LossLimits:
    """Loss budgets for all three windows."""

    daily: LossLimitStatus
    weekly: LossLimitStatus
    monthly: LossLimitStatus

    def windows(self) -> List[LossLimitStatus]:
        """All windows, shortest first."""
        return [self.daily, self.weekly, self.monthly]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "daily": self.daily.to_dict(),
            "weekly": self.weekly.to_dict(),
            "monthly": self.monthly.to_dict(),
        }


@dataclass
class CorrelationReport:
    """Outcome of the correlation check over open positions."""

    exposure_by_symbol: Dict[str, float] = field(default_factory=dict)
    """Gross exposure per symbol."""

    exposure_by_group: Dict[str, float] = field(default_factory=dict)
    """Gross exposure per configured asset group."""

    duplicated_symbols: List[str] = field(default_factory=list)
    """Symbols with more than one open position."""

    concentrated_symbol: Optional[str] = None
    """Symbol or group whose share exceeds the concentration threshold."""

    max_concentration: float = 0.0
    """Largest share of gross exposure held by one symbol or group (0-1)."""

    total_exposure: float = 0.0
    """Gross exposure across all positions."""

    @property
    def at_risk(self) -> bool:
        return bool(self.duplicated_symbols) or self.concentrated_symbol is not None


# ============================================================
# OUTPUT TYPES
# ============================================================

@dataclass
class CapitalProtectionAlert:
    """
    Alert raised by the guard.

    Consumed read-only by the notification pipeline, which owns
    deduplication and delivery.
    """

    alert_type: AlertType
    severity: AlertSeverity
    message: str
    timestamp: datetime
    recommended_actions: List[str] = field(default_factory=list)
    alert_id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "alert_type": self.alert_type.value,
            "severity": self.severity.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "recommended_actions": list(self.recommended_actions),
        }


@dataclass
class EmergencyAction:
    """
    Action recommended to the execution engine.

    The guard does not execute anything itself.
    """

    action_type: EmergencyActionType
    description: str
    affected_positions: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_type": self.action_type.value,
            "description": self.description,
            "affected_positions": list(self.affected_positions),
            "details": dict(self.details),
        }


@dataclass
class MonitoringResult:
    """
    Verdict returned by a single monitoring tick.

    The execution engine gates new orders on trading_allowed and
    reads emergency_actions for what to do with open ones.
    """

    drawdown_status: DrawdownStatus
    loss_limits: LossLimits
    alerts: List[CapitalProtectionAlert]
    emergency_actions: List[EmergencyAction]
    trading_allowed: bool
    protection_state: ProtectionState = ProtectionState.NORMAL
    correlation: Optional[CorrelationReport] = None
    timestamp: Optional[datetime] = None
    emergency_triggered: bool = False
    """True only on the tick that activated emergency measures."""
    balance: Optional[float] = None
    """Balance evaluated this tick."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "drawdown_status": self.drawdown_status.to_dict(),
            "loss_limits": self.loss_limits.to_dict(),
            "alerts": [alert.to_dict() for alert in self.alerts],
            "emergency_actions": [action.to_dict() for action in self.emergency_actions],
            "trading_allowed": self.trading_allowed,
            "protection_state": self.protection_state.value,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "emergency_triggered": self.emergency_triggered,
            "balance": self.balance,
        }


# ============================================================
# HISTORY TYPES
# ============================================================

@dataclass
class DrawdownEpisode:
    """One peak-to-recovery drawdown period."""

    started_at: datetime
    peak_balance: float
    trough_balance: float
    max_drawdown: float
    ended_at: Optional[datetime] = None
    duration_ticks: int = 0
    emergency_activated: bool = False
    episode_id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    @property
    def duration_seconds(self) -> float:
        if self.ended_at is None:
            return 0.0
        return (self.ended_at - self.started_at).total_seconds()


@dataclass
class StateTransition:
    """Record of a protection state change."""

    from_state: ProtectionState
    to_state: ProtectionState
    timestamp: datetime
    reason: str
    is_automatic: bool = True
    drawdown: float = 0.0


@dataclass
class PreservationStats:
    """Aggregate statistics of the guard."""

    total_drawdown_periods: int
    max_historical_drawdown: float
    emergency_activations: int
    current_status: str
    """NORMAL, WARNING, HIGH_RISK or EMERGENCY (RECOVERING reports as NORMAL)."""

    average_drawdown_duration_seconds: float = 0.0
    recovery_rate: float = 100.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_drawdown_periods": self.total_drawdown_periods,
            "max_historical_drawdown": self.max_historical_drawdown,
            "emergency_activations": self.emergency_activations,
            "current_status": self.current_status,
            "average_drawdown_duration_seconds": self.average_drawdown_duration_seconds,
            "recovery_rate": self.recovery_rate,
        }


@dataclass
class GuardStateSnapshot:
    """
    Everything needed to rebuild the guard's sticky state.

    Produced by export_state(), consumed by restore_state() and
    by the repository.
    """

    peak_balance: Optional[float]
    max_drawdown: float
    drawdown_duration: int
    protection_state: ProtectionState
    emergency_active: bool
    risk_reduction_level: float
    emergency_activations: int
    drawdown_started_at: Optional[datetime] = None
    emergency_activated_at: Optional[datetime] = None
    last_drawdown: float = 0.0
    episodes: List[DrawdownEpisode] = field(default_factory=list)
    captured_at: Optional[datetime] = None


# ============================================================
# ERROR TYPES
# ============================================================

class CapitalPreservationError(Exception):
    """Base exception for Capital Preservation errors."""
    pass


class InvalidConfigurationError(CapitalPreservationError):
    """Raised when a protection configuration is rejected."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Invalid capital protection configuration: " + "; ".join(self.errors))


class StateRestoreError(CapitalPreservationError):
    """Raised when a persisted snapshot cannot be restored."""
    pass
