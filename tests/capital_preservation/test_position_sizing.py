"""
Tests for position size adjustment.
"""

import pytest

from capital_preservation import DrawdownStatus, calculate_position_size_adjustment


class TestPositionSizeAdjustment:
    """base x (100 - level) / 100."""

    @pytest.mark.parametrize("level,expected", [
        (0.0, 1000.0),
        (40.0, 600.0),
        (100.0, 0.0),
    ])
    def test_scaling(self, level, expected):
        status = DrawdownStatus(risk_reduction_level=level)

        assert calculate_position_size_adjustment(1000.0, status) == expected

    def test_level_clamped_above(self):
        status = DrawdownStatus(risk_reduction_level=150.0)

        assert calculate_position_size_adjustment(1000.0, status) == 0.0

    def test_level_clamped_below(self):
        status = DrawdownStatus(risk_reduction_level=-20.0)

        assert calculate_position_size_adjustment(1000.0, status) == 1000.0

    def test_zero_base_size(self):
        status = DrawdownStatus(risk_reduction_level=40.0)

        assert calculate_position_size_adjustment(0.0, status) == 0.0
