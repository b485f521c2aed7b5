"""
Capital Preservation Module.

============================================================
CRYPTO TRADING SYSTEM
Capital Preservation Guard - Per-Tick Trading Gate
============================================================

PURPOSE
-------
Protect account capital during adverse conditions.
Called once per evaluation tick between the Account Monitor
and the Execution Engine.

The module decides WHETHER and HOW MUCH to trade. It does NOT
deliver alerts, cancel orders or price positions.

DESIGN PHILOSOPHY
-----------------
1. Drawdown measured from peak balance, in percent
2. Loss limits expressed as percentage of current balance
3. Emergency stop is sticky: only an operator resumes
4. Deterministic: injectable clock, no I/O in the core

PROTECTION LADDER (DEFAULTS)
----------------------------
- Below 5% drawdown: NORMAL
- 5% - 10%: WARNING (alert only)
- 10% - 15%: HIGH_RISK (sizes shrink linearly to zero)
- 15% and above: EMERGENCY (trading halted until resume)

LOSS WINDOWS (DEFAULTS)
-----------------------
- Daily: 2% (exhausted budget halts the current tick)
- Weekly: 5%
- Monthly: 10%

============================================================
USAGE EXAMPLE
============================================================

```python
from capital_preservation import (
    CapitalPreservationGuard,
    Position,
    get_default_config,
)

guard = CapitalPreservationGuard(get_default_config())

result = guard.monitor(
    current_balance=9400.0,
    positions=[Position("p1", "BTC", 0.1, 50000.0, 51000.0)],
    daily_pnl=-180.0,
    weekly_pnl=-180.0,
    monthly_pnl=-600.0,
)

if not result.trading_allowed:
    halt_new_orders(result.emergency_actions)
else:
    size = guard.calculate_position_size_adjustment(1000.0, result.drawdown_status)

# After an emergency, an operator decides when to resume
if guard.check_recovery_conditions(guard.get_drawdown_status()):
    guard.resume_normal_operations(operator="alice")
```

============================================================
COMPONENTS
============================================================

Types (types.py), Configuration (config.py), Clock (clock.py)

Core (peak_tracker.py, state_machine.py, loss_windows.py,
correlation.py, sizing.py, alert_log.py)

Engine (engine.py)
------------------
- CapitalPreservationGuard: Main gate

Persistence (models.py, repository.py)
--------------------------------------
- GuardStateRecord: Sticky state across restarts
- DrawdownEpisodeRecord: Drawdown history
- ProtectionAlertRecord: Alert audit trail
- EmergencyHaltRecord: Halts and manual resumes
- CapitalPreservationRepository: Database operations

============================================================
"""

# ============================================================
# TYPE EXPORTS
# ============================================================

from .types import (
    # Enums
    PositionDirection,
    ProtectionState,
    AlertType,
    AlertSeverity,
    EmergencyActionType,
    LossWindow,

    # Input Types
    Position,

    # Status Types
    DrawdownStatus,
    LossLimitStatus,
    LossLimits,
    CorrelationReport,

    # Output Types
    CapitalProtectionAlert,
    EmergencyAction,
    MonitoringResult,

    # History Types
    DrawdownEpisode,
    StateTransition,
    PreservationStats,
    GuardStateSnapshot,

    # Errors
    CapitalPreservationError,
    InvalidConfigurationError,
    StateRestoreError,
)

# ============================================================
# CONFIGURATION EXPORTS
# ============================================================

from .config import (
    ProtectionConfig,
    ConfigPatch,
    CorrelationConfig,
    AlertLogConfig,
    validate_config,
    get_default_config,
    get_conservative_config,
    get_aggressive_config,
    get_crypto_majors_correlation_config,
    load_config_from_dict,
    load_correlation_config_from_dict,
)

# ============================================================
# CORE EXPORTS
# ============================================================

from .clock import ClockProtocol, SystemClock, MockClock
from .peak_tracker import PeakTracker, PeakReading
from .state_machine import RiskStateMachine, StateEvaluation
from .loss_windows import LossWindowTracker, LossWindowEvaluation, next_reset_time
from .correlation import CorrelationAnalyzer
from .sizing import calculate_position_size_adjustment
from .alert_log import AlertLog

# ============================================================
# ENGINE EXPORTS
# ============================================================

from .engine import (
    CapitalPreservationGuard,
)

# ============================================================
# PERSISTENCE EXPORTS
# ============================================================

from .models import (
    GuardStateRecord,
    DrawdownEpisodeRecord,
    ProtectionAlertRecord,
    EmergencyHaltRecord,
)
from .repository import (
    CapitalPreservationRepository,
)


# ============================================================
# ALL EXPORTS
# ============================================================

__all__ = [
    # Types - Enums
    "PositionDirection",
    "ProtectionState",
    "AlertType",
    "AlertSeverity",
    "EmergencyActionType",
    "LossWindow",

    # Types - Data
    "Position",
    "DrawdownStatus",
    "LossLimitStatus",
    "LossLimits",
    "CorrelationReport",
    "CapitalProtectionAlert",
    "EmergencyAction",
    "MonitoringResult",
    "DrawdownEpisode",
    "StateTransition",
    "PreservationStats",
    "GuardStateSnapshot",

    # Types - Errors
    "CapitalPreservationError",
    "InvalidConfigurationError",
    "StateRestoreError",

    # Config
    "ProtectionConfig",
    "ConfigPatch",
    "CorrelationConfig",
    "AlertLogConfig",
    "validate_config",
    "get_default_config",
    "get_conservative_config",
    "get_aggressive_config",
    "get_crypto_majors_correlation_config",
    "load_config_from_dict",
    "load_correlation_config_from_dict",

    # Core
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "PeakTracker",
    "PeakReading",
    "RiskStateMachine",
    "StateEvaluation",
    "LossWindowTracker",
    "LossWindowEvaluation",
    "next_reset_time",
    "CorrelationAnalyzer",
    "calculate_position_size_adjustment",
    "AlertLog",

    # Engine
    "CapitalPreservationGuard",

    # Persistence
    "GuardStateRecord",
    "DrawdownEpisodeRecord",
    "ProtectionAlertRecord",
    "EmergencyHaltRecord",
    "CapitalPreservationRepository",
]

__version__ = "1.0.0"
