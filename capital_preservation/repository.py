"""
Capital Preservation - Repository.

============================================================
PURPOSE
============================================================
Repository pattern implementation for guard persistence.

Provides clean interface for:
- Saving and loading guard state snapshots
- Storing alerts for audit
- Recording emergency halts and manual resumes

The guard itself never touches the database: callers export
a snapshot and hand it to this repository.

============================================================
"""

from datetime import datetime, timezone
from typing import Optional, List
from uuid import UUID

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from .clock import ensure_utc
from .models import (
    GuardStateRecord,
    DrawdownEpisodeRecord,
    ProtectionAlertRecord,
    EmergencyHaltRecord,
)
from .types import (
    AlertSeverity,
    AlertType,
    CapitalProtectionAlert,
    DrawdownEpisode,
    GuardStateSnapshot,
    MonitoringResult,
    ProtectionState,
    StateRestoreError,
)


class CapitalPreservationRepository:
    """
    Repository for capital preservation persistence.

    ============================================================
    METHODS
    ============================================================
    - save_state / load_state: Guard snapshot round trip
    - save_alerts / get_alerts_since: Alert audit trail
    - record_emergency / resume_active_halt: Halts driven by the guard
    - save_halt / mark_halt_resumed / get_active_halt: Halt records

    ============================================================
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy async session
        """
        self._session = session

    # --------------------------------------------------------
    # GUARD STATE
    # --------------------------------------------------------

    async def save_state(self, guard_id: str, snapshot: GuardStateSnapshot) -> GuardStateRecord:
        """
        Persist a snapshot, replacing any previous one for the guard.

        Args:
            guard_id: Guard identifier
            snapshot: Output of CapitalPreservationGuard.export_state()

        Returns:
            The GuardStateRecord
        """
        record = await self._session.get(GuardStateRecord, guard_id)
        if record is None:
            record = GuardStateRecord(guard_id=guard_id)
            self._session.add(record)

        record.peak_balance = snapshot.peak_balance
        record.max_drawdown = snapshot.max_drawdown
        record.last_drawdown = snapshot.last_drawdown
        record.drawdown_duration = snapshot.drawdown_duration
        record.drawdown_started_at = snapshot.drawdown_started_at
        record.protection_state = snapshot.protection_state.value
        record.emergency_active = snapshot.emergency_active
        record.risk_reduction_level = snapshot.risk_reduction_level
        record.emergency_activations = snapshot.emergency_activations
        record.emergency_activated_at = snapshot.emergency_activated_at
        record.captured_at = snapshot.captured_at

        keep_ids = {episode.episode_id for episode in snapshot.episodes}
        stmt = select(DrawdownEpisodeRecord).where(DrawdownEpisodeRecord.guard_id == guard_id)
        result = await self._session.execute(stmt)
        for stale in result.scalars().all():
            if stale.id not in keep_ids:
                await self._session.delete(stale)

        for episode in snapshot.episodes:
            await self._session.merge(DrawdownEpisodeRecord(
                id=episode.episode_id,
                guard_id=guard_id,
                started_at=episode.started_at,
                ended_at=episode.ended_at,
                peak_balance=episode.peak_balance,
                trough_balance=episode.trough_balance,
                max_drawdown=episode.max_drawdown,
                duration_ticks=episode.duration_ticks,
                emergency_activated=episode.emergency_activated,
            ))

        await self._session.flush()

        return record

    async def load_state(self, guard_id: str) -> Optional[GuardStateSnapshot]:
        """
        Load the last snapshot saved for a guard.

        Returns:
            GuardStateSnapshot, or None if nothing was saved

        Raises:
            StateRestoreError: If the stored state label is unknown
        """
        record = await self._session.get(GuardStateRecord, guard_id)
        if record is None:
            return None

        try:
            state = ProtectionState(record.protection_state)
        except ValueError as e:
            raise StateRestoreError(
                f"Unknown protection state '{record.protection_state}' for guard {guard_id}"
            ) from e

        stmt = (
            select(DrawdownEpisodeRecord)
            .where(DrawdownEpisodeRecord.guard_id == guard_id)
            .order_by(DrawdownEpisodeRecord.started_at)
        )
        result = await self._session.execute(stmt)
        episodes = [
            DrawdownEpisode(
                started_at=ensure_utc(row.started_at),
                ended_at=ensure_utc(row.ended_at),
                peak_balance=row.peak_balance,
                trough_balance=row.trough_balance,
                max_drawdown=row.max_drawdown,
                duration_ticks=row.duration_ticks,
                emergency_activated=row.emergency_activated,
                episode_id=row.id,
            )
            for row in result.scalars().all()
        ]

        return GuardStateSnapshot(
            peak_balance=record.peak_balance,
            max_drawdown=record.max_drawdown,
            drawdown_duration=record.drawdown_duration,
            protection_state=state,
            emergency_active=record.emergency_active,
            risk_reduction_level=record.risk_reduction_level,
            emergency_activations=record.emergency_activations,
            drawdown_started_at=ensure_utc(record.drawdown_started_at),
            emergency_activated_at=ensure_utc(record.emergency_activated_at),
            last_drawdown=record.last_drawdown,
            episodes=episodes,
            captured_at=ensure_utc(record.captured_at),
        )

    # --------------------------------------------------------
    # ALERT RECORDS
    # --------------------------------------------------------

    async def save_alerts(self, guard_id: str, alerts: List[CapitalProtectionAlert]) -> int:
        """
        Store alerts not yet persisted.

        Returns:
            Number of alerts written
        """
        if not alerts:
            return 0

        ids = [alert.alert_id for alert in alerts]
        stmt = select(ProtectionAlertRecord.id).where(ProtectionAlertRecord.id.in_(ids))
        result = await self._session.execute(stmt)
        existing = set(result.scalars().all())

        written = 0
        for alert in alerts:
            if alert.alert_id in existing:
                continue
            self._session.add(ProtectionAlertRecord(
                id=alert.alert_id,
                guard_id=guard_id,
                alert_type=alert.alert_type.value,
                severity=alert.severity.value,
                message=alert.message,
                recommended_actions=list(alert.recommended_actions),
                timestamp=alert.timestamp,
            ))
            existing.add(alert.alert_id)
            written += 1

        await self._session.flush()

        return written

    async def get_alerts_since(self, guard_id: str, since: datetime) -> List[CapitalProtectionAlert]:
        """Alerts raised at or after `since`, oldest first."""
        stmt = (
            select(ProtectionAlertRecord)
            .where(and_(
                ProtectionAlertRecord.guard_id == guard_id,
                ProtectionAlertRecord.timestamp >= since,
            ))
            .order_by(ProtectionAlertRecord.timestamp)
        )
        result = await self._session.execute(stmt)

        return [
            CapitalProtectionAlert(
                alert_type=AlertType(row.alert_type),
                severity=AlertSeverity(row.severity),
                message=row.message,
                timestamp=ensure_utc(row.timestamp),
                recommended_actions=list(row.recommended_actions or []),
                alert_id=row.id,
            )
            for row in result.scalars().all()
        ]

    # --------------------------------------------------------
    # EMERGENCY HALT RECORDS
    # --------------------------------------------------------

    async def save_halt(
        self,
        guard_id: str,
        reason: str,
        balance_at_halt: float,
        drawdown_at_halt: float,
        halted_at: Optional[datetime] = None,
    ) -> EmergencyHaltRecord:
        """Save emergency halt record."""
        record = EmergencyHaltRecord(
            guard_id=guard_id,
            reason=reason,
            balance_at_halt=balance_at_halt,
            drawdown_at_halt=drawdown_at_halt,
            halted_at=halted_at or datetime.now(timezone.utc),
        )

        self._session.add(record)
        await self._session.flush()

        return record

    async def record_emergency(
        self,
        guard_id: str,
        result: MonitoringResult,
    ) -> Optional[EmergencyHaltRecord]:
        """
        Save a halt for the tick that activated emergency measures.

        Args:
            guard_id: Guard identifier
            result: Output of CapitalPreservationGuard.monitor()

        Returns:
            The halt record, or None if this tick did not activate an emergency
        """
        if not result.emergency_triggered:
            return None

        drawdown = result.drawdown_status.current_drawdown
        return await self.save_halt(
            guard_id=guard_id,
            reason=f"Critical drawdown {drawdown:.2f}%",
            balance_at_halt=result.balance,
            drawdown_at_halt=drawdown,
            halted_at=result.timestamp,
        )

    async def resume_active_halt(
        self,
        guard_id: str,
        resumed_by: str,
        resume_alert: Optional[CapitalProtectionAlert] = None,
    ) -> Optional[EmergencyHaltRecord]:
        """
        Close the guard's active halt after resume_normal_operations().

        Args:
            guard_id: Guard identifier
            resumed_by: Operator who resumed
            resume_alert: Alert returned by resume_normal_operations()

        Returns:
            The resumed halt record, or None if no halt was active
        """
        halt = await self.get_active_halt(guard_id)
        if halt is None:
            return None

        await self.mark_halt_resumed(
            halt.id,
            resumed_by=resumed_by,
            resume_reason=resume_alert.message if resume_alert else None,
            resumed_at=resume_alert.timestamp if resume_alert else None,
        )
        return halt

    async def mark_halt_resumed(
        self,
        halt_id: UUID,
        resumed_by: str,
        resume_reason: Optional[str] = None,
        resumed_at: Optional[datetime] = None,
    ) -> None:
        """Update halt record with resume info."""
        stmt = (
            update(EmergencyHaltRecord)
            .where(EmergencyHaltRecord.id == halt_id)
            .values(
                resumed_at=resumed_at or datetime.now(timezone.utc),
                resumed_by=resumed_by,
                resume_reason=resume_reason,
            )
        )
        await self._session.execute(stmt)
        await self._session.flush()

    async def get_active_halt(self, guard_id: str) -> Optional[EmergencyHaltRecord]:
        """Get the guard's current halt (not resumed)."""
        stmt = (
            select(EmergencyHaltRecord)
            .where(and_(
                EmergencyHaltRecord.guard_id == guard_id,
                EmergencyHaltRecord.resumed_at.is_(None),
            ))
            .order_by(EmergencyHaltRecord.halted_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()
