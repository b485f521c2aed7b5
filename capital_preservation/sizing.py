"""
Capital Preservation - Position Size Adjustment.

    adjusted = base_size x (100 - level) / 100

with the risk reduction level clamped to [0, 100]. Pure.
"""

from .types import DrawdownStatus


def clamp_level(level: float) -> float:
    return min(100.0, max(0.0, level))


def calculate_position_size_adjustment(base_size: float, drawdown_status: DrawdownStatus) -> float:
    """
    Scale an intended position size by the current risk reduction level.

    Args:
        base_size: Size the strategy wants to trade
        drawdown_status: Status carrying risk_reduction_level

    Returns:
        Adjusted size (0 at level 100)
    """
    level = clamp_level(drawdown_status.risk_reduction_level)
    return base_size * (100.0 - level) / 100.0
