"""
Shared fixtures for Capital Preservation tests.
"""

from datetime import datetime, timezone

import pytest

from capital_preservation import (
    CapitalPreservationGuard,
    MockClock,
    Position,
    PositionDirection,
    ProtectionConfig,
)


# Wednesday, mid-month
START_TIME = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    """Mock clock frozen at START_TIME."""
    return MockClock(START_TIME)


@pytest.fixture
def config():
    """Default test configuration."""
    return ProtectionConfig(
        max_drawdown_threshold=10.0,
        warning_drawdown_threshold=5.0,
        critical_drawdown_threshold=15.0,
        consecutive_loss_limit=3,
        position_size_reduction_factor=0.5,
        recovery_threshold=3.0,
        daily_loss_limit=2.0,
        weekly_loss_limit=5.0,
        monthly_loss_limit=10.0,
    )


@pytest.fixture
def guard(config, clock):
    """Guard with default thresholds and a mock clock."""
    return CapitalPreservationGuard(config=config, clock=clock)


@pytest.fixture
def positions():
    """Base positions: BTC and ETH longs."""
    return [
        Position(
            position_id="pos-btc",
            symbol="BTC",
            size=0.1,
            entry_price=50000.0,
            current_price=51000.0,
            direction=PositionDirection.LONG,
            unrealized_pnl=100.0,
        ),
        Position(
            position_id="pos-eth",
            symbol="ETH",
            size=1.0,
            entry_price=3000.0,
            current_price=3100.0,
            direction=PositionDirection.LONG,
            unrealized_pnl=100.0,
        ),
    ]
