"""
Capital Preservation - Correlation Analyzer.

============================================================
PURPOSE
============================================================
Advisory concentration check over open positions.

Raises CORRELATION_RISK when:
- A symbol carries more than one open position
- With at least min_positions positions, a single symbol or
  asset group holds more than concentration_threshold of
  gross exposure

Never blocks trading.

============================================================
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional
import logging

from .config import CorrelationConfig
from .types import (
    AlertSeverity,
    AlertType,
    CapitalProtectionAlert,
    CorrelationReport,
    Position,
)


logger = logging.getLogger(__name__)


class CorrelationAnalyzer:
    """Groups positions by symbol and asset group."""

    def __init__(self, config: Optional[CorrelationConfig] = None):
        self._config = config or CorrelationConfig()

    @property
    def config(self) -> CorrelationConfig:
        return self._config

    def analyze(self, positions: List[Position]) -> CorrelationReport:
        """
        Build exposure breakdowns for the supplied positions.

        Args:
            positions: Open positions (read only)

        Returns:
            CorrelationReport
        """
        counts: Dict[str, int] = defaultdict(int)
        by_symbol: Dict[str, float] = defaultdict(float)
        by_group: Dict[str, float] = defaultdict(float)

        for position in positions:
            counts[position.symbol] += 1
            by_symbol[position.symbol] += position.exposure
            group = self._config.asset_groups.get(position.symbol)
            if group is not None:
                by_group[group] += position.exposure

        total = sum(by_symbol.values())
        report = CorrelationReport(
            exposure_by_symbol=dict(by_symbol),
            exposure_by_group=dict(by_group),
            duplicated_symbols=sorted(symbol for symbol, count in counts.items() if count > 1),
            total_exposure=total,
        )

        if len(positions) < self._config.min_positions or total <= 0:
            return report

        buckets = list(by_symbol.items()) + list(by_group.items())
        name, exposure = max(buckets, key=lambda item: item[1])
        report.max_concentration = exposure / total

        if report.max_concentration > self._config.concentration_threshold:
            report.concentrated_symbol = name

        return report

    def build_alert(self, report: CorrelationReport, now: datetime) -> Optional[CapitalProtectionAlert]:
        """CORRELATION_RISK alert for a report, or None when not at risk."""
        if not report.at_risk:
            return None

        reasons = []
        if report.duplicated_symbols:
            reasons.append(f"multiple positions in {', '.join(report.duplicated_symbols)}")
        if report.concentrated_symbol is not None:
            reasons.append(
                f"{report.concentrated_symbol} holds {report.max_concentration:.0%} "
                f"of gross exposure"
            )

        logger.info(f"Correlation risk detected | {'; '.join(reasons)}")

        return CapitalProtectionAlert(
            alert_type=AlertType.CORRELATION_RISK,
            severity=AlertSeverity.MEDIUM,
            message=f"High correlation risk: {'; '.join(reasons)}",
            timestamp=now,
            recommended_actions=[
                "Diversify open positions",
                "Avoid adding to concentrated symbols",
            ],
        )
