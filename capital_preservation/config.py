"""
Capital Preservation - Configuration.

============================================================
PURPOSE
============================================================
Thresholds and limits for the Capital Preservation Guard.

All thresholds are PERCENTAGES:
- Drawdown thresholds are percent below peak balance
- Loss limits are percent of CURRENT balance

============================================================
THRESHOLD LADDER
============================================================
    0% ── warning ── max ── critical ──> drawdown
     NORMAL  WARNING  HIGH_RISK  EMERGENCY

warning < max < critical is enforced at construction and on
every update. Invalid configurations are rejected, never clamped.

============================================================
DEFAULT CONFIGURATION
============================================================
- Warning drawdown: 5%
- Max drawdown (risk reduction starts): 10%
- Critical drawdown (emergency stop): 15%
- Recovery threshold: 3%
- Loss limits: 2% daily / 5% weekly / 10% monthly

============================================================
"""

from dataclasses import dataclass, field, fields, replace
from typing import Dict, List, Optional, Any
import logging

from .types import InvalidConfigurationError


logger = logging.getLogger(__name__)


# ============================================================
# PROTECTION CONFIGURATION
# ============================================================

@dataclass(frozen=True)
class ProtectionConfig:
    """
    Core protection thresholds.

    Frozen: changes go through ConfigPatch and
    CapitalPreservationGuard.update_config().
    """

    max_drawdown_threshold: float = 10.0
    """Drawdown where HIGH_RISK starts and sizes begin to shrink."""

    warning_drawdown_threshold: float = 5.0
    """Drawdown that raises a warning (no size cut yet)."""

    critical_drawdown_threshold: float = 15.0
    """Drawdown that triggers the sticky emergency stop."""

    consecutive_loss_limit: int = 3
    """
    Consecutive losing trades tolerated.
    Stored and reported only; no escalation rule consumes it.
    """

    position_size_reduction_factor: float = 0.5
    """
    Size reduction factor for adverse conditions.
    Stored and reported only; sizing follows risk_reduction_level.
    """

    recovery_threshold: float = 3.0
    """Drawdown below which recovery from emergency is considered."""

    daily_loss_limit: float = 2.0
    """Daily realized loss limit (% of current balance)."""

    weekly_loss_limit: float = 5.0
    """Weekly realized loss limit (% of current balance)."""

    monthly_loss_limit: float = 10.0
    """Monthly realized loss limit (% of current balance)."""

    recovery_progress_required: float = 80.0
    """Recovery progress (0-100) needed before resume is advised."""

    limit_warning_ratio: float = 0.2
    """Warn when remaining window budget drops below this share of the limit."""

    min_episode_drawdown: float = 0.1
    """Drawdown (%) above which a drawdown episode is counted."""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class ConfigPatch:
    """
    Partial update for ProtectionConfig.

    Every field left as None keeps its current value.
    """

    max_drawdown_threshold: Optional[float] = None
    warning_drawdown_threshold: Optional[float] = None
    critical_drawdown_threshold: Optional[float] = None
    consecutive_loss_limit: Optional[int] = None
    position_size_reduction_factor: Optional[float] = None
    recovery_threshold: Optional[float] = None
    daily_loss_limit: Optional[float] = None
    weekly_loss_limit: Optional[float] = None
    monthly_loss_limit: Optional[float] = None
    recovery_progress_required: Optional[float] = None
    limit_warning_ratio: Optional[float] = None
    min_episode_drawdown: Optional[float] = None

    def changes(self) -> Dict[str, Any]:
        """Fields that carry a value."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }

    def is_empty(self) -> bool:
        return not self.changes()


# ============================================================
# SUPPORTING CONFIGURATION
# ============================================================

@dataclass
class CorrelationConfig:
    """
    Correlation risk heuristics over open positions.

    No asset groups by default, so BTC and ETH count as separate
    symbols. get_crypto_majors_correlation_config() groups them so
    their combined exposure is checked against the threshold.
    """

    concentration_threshold: float = 0.8
    """
    Share of gross exposure (0-1) a single symbol or asset group
    may hold before CORRELATION_RISK is raised.
    """

    min_positions: int = 2
    """Concentration is only meaningful with at least this many positions."""

    asset_groups: Dict[str, str] = field(default_factory=dict)
    """
    Optional symbol -> group mapping for correlated assets.
    Example: {"BTC": "CRYPTO_MAJORS", "ETH": "CRYPTO_MAJORS"}
    """


@dataclass
class AlertLogConfig:
    """
    Alert history retention.
    """

    max_alerts: int = 1000
    """Ring buffer capacity; oldest alerts fall off first."""


# ============================================================
# VALIDATION
# ============================================================

def validate_config(config: ProtectionConfig) -> List[str]:
    """
    Validate a protection configuration.

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    non_negative = (
        "max_drawdown_threshold",
        "warning_drawdown_threshold",
        "critical_drawdown_threshold",
        "consecutive_loss_limit",
        "position_size_reduction_factor",
        "recovery_threshold",
        "daily_loss_limit",
        "weekly_loss_limit",
        "monthly_loss_limit",
        "min_episode_drawdown",
    )
    for name in non_negative:
        if getattr(config, name) < 0:
            errors.append(f"{name} must be non-negative (got {getattr(config, name)})")

    if config.warning_drawdown_threshold >= config.max_drawdown_threshold:
        errors.append(
            f"warning_drawdown_threshold ({config.warning_drawdown_threshold}) "
            f"must be below max_drawdown_threshold ({config.max_drawdown_threshold})"
        )

    if config.max_drawdown_threshold >= config.critical_drawdown_threshold:
        errors.append(
            f"max_drawdown_threshold ({config.max_drawdown_threshold}) "
            f"must be below critical_drawdown_threshold ({config.critical_drawdown_threshold})"
        )

    if not 0 <= config.recovery_progress_required <= 100:
        errors.append("recovery_progress_required must be within [0, 100]")

    if not 0 <= config.limit_warning_ratio <= 1:
        errors.append("limit_warning_ratio must be within [0, 1]")

    return errors


def ensure_valid(config: ProtectionConfig) -> ProtectionConfig:
    """
    Fail fast on an invalid configuration.

    Raises:
        InvalidConfigurationError: Listing every violation
    """
    errors = validate_config(config)
    if errors:
        raise InvalidConfigurationError(errors)
    return config


def validate_correlation_config(config: CorrelationConfig) -> List[str]:
    """Validate correlation heuristics."""
    errors = []
    if not 0 < config.concentration_threshold <= 1:
        errors.append("concentration_threshold must be within (0, 1]")
    if config.min_positions < 1:
        errors.append("min_positions must be at least 1")
    return errors


def apply_patch(config: ProtectionConfig, patch: ConfigPatch) -> ProtectionConfig:
    """
    Merge a patch into a configuration field by field.

    Returns:
        New validated ProtectionConfig (the input is untouched)

    Raises:
        InvalidConfigurationError: If the merged config is invalid
    """
    merged = replace(config, **patch.changes())
    return ensure_valid(merged)


# ============================================================
# PRESET FACTORIES
# ============================================================

def get_default_config() -> ProtectionConfig:
    """
    Get default protection configuration.

    - Warning / Max / Critical: 5% / 10% / 15%
    - Daily / Weekly / Monthly: 2% / 5% / 10%
    """
    return ProtectionConfig()


def get_conservative_config() -> ProtectionConfig:
    """
    Get conservative configuration with tighter limits.

    Suitable for:
    - New systems in testing
    - High volatility periods
    """
    return ProtectionConfig(
        max_drawdown_threshold=7.0,
        warning_drawdown_threshold=3.0,
        critical_drawdown_threshold=10.0,
        consecutive_loss_limit=2,
        position_size_reduction_factor=0.5,
        recovery_threshold=2.0,
        daily_loss_limit=1.0,
        weekly_loss_limit=3.0,
        monthly_loss_limit=6.0,
    )


def get_aggressive_config() -> ProtectionConfig:
    """
    Get aggressive configuration with wider limits.

    WARNING: Only for proven systems with track record.
    """
    return ProtectionConfig(
        max_drawdown_threshold=15.0,
        warning_drawdown_threshold=8.0,
        critical_drawdown_threshold=22.0,
        consecutive_loss_limit=5,
        position_size_reduction_factor=0.5,
        recovery_threshold=5.0,
        daily_loss_limit=3.0,
        weekly_loss_limit=8.0,
        monthly_loss_limit=15.0,
    )


CRYPTO_MAJORS_GROUP = "CRYPTO_MAJORS"


def get_crypto_majors_correlation_config() -> CorrelationConfig:
    """
    Get correlation heuristics treating BTC and ETH as one exposure.

    Alerts when BTC and ETH together hold more than 80% of gross
    exposure.
    """
    return CorrelationConfig(
        asset_groups={"BTC": CRYPTO_MAJORS_GROUP, "ETH": CRYPTO_MAJORS_GROUP},
    )


# ============================================================
# CONFIGURATION LOADING
# ============================================================

def load_config_from_dict(data: Dict[str, Any]) -> ProtectionConfig:
    """
    Load protection configuration from a dictionary.

    Missing keys fall back to defaults. Unknown keys are ignored
    with a warning.

    Args:
        data: Configuration dictionary (e.g. parsed JSON/YAML)

    Returns:
        Validated ProtectionConfig

    Raises:
        InvalidConfigurationError: If the resulting config is invalid
    """
    known = {f.name for f in fields(ProtectionConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning(f"Ignoring unknown protection config keys: {unknown}")

    config = replace(
        get_default_config(),
        **{key: value for key, value in data.items() if key in known},
    )
    return ensure_valid(config)


def load_correlation_config_from_dict(data: Dict[str, Any]) -> CorrelationConfig:
    """Load correlation heuristics from a dictionary."""
    config = CorrelationConfig(
        concentration_threshold=data.get("concentration_threshold", 0.8),
        min_positions=data.get("min_positions", 2),
        asset_groups=dict(data.get("asset_groups", {})),
    )
    errors = validate_correlation_config(config)
    if errors:
        raise InvalidConfigurationError(errors)
    return config
