"""
Capital Preservation - Alert Log.

============================================================
PURPOSE
============================================================
Ordered, bounded record of raised alerts.

- Ring buffer: the oldest alerts fall off at capacity
- Age eviction via clear_old_alerts()
- Delivery is NOT done here

============================================================
"""

from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Iterable, List, Optional
import logging

from .config import AlertLogConfig
from .types import AlertType, CapitalProtectionAlert


logger = logging.getLogger(__name__)


class AlertLog:
    """Chronological alert buffer."""

    def __init__(self, config: Optional[AlertLogConfig] = None):
        self._config = config or AlertLogConfig()
        self._alerts: Deque[CapitalProtectionAlert] = deque(maxlen=self._config.max_alerts)

    def __len__(self) -> int:
        return len(self._alerts)

    def append(self, alert: CapitalProtectionAlert) -> None:
        self._alerts.append(alert)

    def extend(self, alerts: Iterable[CapitalProtectionAlert]) -> None:
        self._alerts.extend(alerts)

    def get_recent(self, n: int = 10) -> List[CapitalProtectionAlert]:
        """Last n alerts in chronological order."""
        if n <= 0:
            return []
        return list(self._alerts)[-n:]

    def get_by_type(self, alert_type: AlertType) -> List[CapitalProtectionAlert]:
        return [alert for alert in self._alerts if alert.alert_type == alert_type]

    def clear_old(self, max_age_seconds: float, now: datetime) -> int:
        """
        Evict alerts at or before now - max_age_seconds.

        A max age of 0 evicts everything up to now.

        Returns:
            Number of alerts evicted
        """
        cutoff = now - timedelta(seconds=max_age_seconds)
        kept = [alert for alert in self._alerts if alert.timestamp > cutoff]
        evicted = len(self._alerts) - len(kept)

        self._alerts = deque(kept, maxlen=self._config.max_alerts)

        if evicted:
            logger.debug(f"Evicted {evicted} alerts older than {max_age_seconds}s")
        return evicted

    def clear(self) -> None:
        self._alerts.clear()
