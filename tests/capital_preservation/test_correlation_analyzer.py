"""
Tests for the Correlation Analyzer.

============================================================
TEST SCENARIOS
============================================================
1. Diversified positions → no risk
2. Duplicate symbol positions → CORRELATION_RISK
3. One symbol above 80% of gross exposure → CORRELATION_RISK
4. Asset groups aggregate correlated symbols
   (crypto majors preset flags BTC + ETH together)
5. Too few positions → no concentration check

============================================================
"""

from datetime import datetime, timezone

import pytest

from capital_preservation import (
    AlertSeverity,
    AlertType,
    CorrelationAnalyzer,
    CorrelationConfig,
    Position,
    PositionDirection,
    get_crypto_majors_correlation_config,
)


NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


def make_position(position_id, symbol, size, price, direction=PositionDirection.LONG):
    return Position(
        position_id=position_id,
        symbol=symbol,
        size=size,
        entry_price=price,
        current_price=price,
        direction=direction,
    )


@pytest.fixture
def analyzer():
    return CorrelationAnalyzer()


# ============================================================
# TEST: EXPOSURE BREAKDOWN
# ============================================================

class TestExposure:
    """Exposure aggregation."""

    def test_base_positions_not_at_risk(self, analyzer, positions):
        report = analyzer.analyze(positions)

        assert not report.at_risk
        assert report.total_exposure == pytest.approx(8200.0)
        assert report.exposure_by_symbol["BTC"] == pytest.approx(5100.0)
        assert analyzer.build_alert(report, NOW) is None

    def test_short_exposure_is_gross(self, analyzer):
        report = analyzer.analyze([
            make_position("a", "BTC", -0.1, 50000.0, PositionDirection.SHORT),
        ])

        assert report.total_exposure == pytest.approx(5000.0)

    def test_empty_positions(self, analyzer):
        report = analyzer.analyze([])

        assert not report.at_risk
        assert report.total_exposure == 0.0


# ============================================================
# TEST: CORRELATION RISK
# ============================================================

class TestCorrelationRisk:
    """Risk detection."""

    def test_duplicate_symbol(self, analyzer):
        report = analyzer.analyze([
            make_position("a", "BTC", 0.01, 50000.0),
            make_position("b", "BTC", 0.01, 50000.0),
            make_position("c", "ETH", 1.0, 3000.0),
        ])

        assert report.duplicated_symbols == ["BTC"]
        alert = analyzer.build_alert(report, NOW)
        assert alert.alert_type == AlertType.CORRELATION_RISK
        assert alert.severity == AlertSeverity.MEDIUM
        assert "BTC" in alert.message

    def test_concentration_above_threshold(self, analyzer):
        report = analyzer.analyze([
            make_position("a", "BTC", 1.0, 50000.0),
            make_position("b", "ETH", 1.0, 3000.0),
        ])

        assert report.concentrated_symbol == "BTC"
        assert report.max_concentration > 0.8
        assert report.at_risk

    def test_single_position_skips_concentration(self, analyzer):
        report = analyzer.analyze([make_position("a", "BTC", 1.0, 50000.0)])

        assert report.concentrated_symbol is None
        assert not report.at_risk

    def test_asset_group_concentration(self):
        analyzer = CorrelationAnalyzer(CorrelationConfig(
            asset_groups={"BTC": "CRYPTO_MAJORS", "ETH": "CRYPTO_MAJORS"},
        ))

        report = analyzer.analyze([
            make_position("a", "BTC", 0.1, 50000.0),
            make_position("b", "ETH", 1.0, 3000.0),
            make_position("c", "GOLD", 0.5, 2000.0),
        ])

        assert report.exposure_by_group["CRYPTO_MAJORS"] == pytest.approx(8000.0)
        assert report.concentrated_symbol == "CRYPTO_MAJORS"

    def test_crypto_majors_preset_groups_btc_and_eth(self, positions):
        analyzer = CorrelationAnalyzer(get_crypto_majors_correlation_config())

        report = analyzer.analyze(positions)

        assert report.concentrated_symbol == "CRYPTO_MAJORS"
        assert report.at_risk
        alert = analyzer.build_alert(report, NOW)
        assert alert.alert_type == AlertType.CORRELATION_RISK
        assert "CRYPTO_MAJORS" in alert.message
