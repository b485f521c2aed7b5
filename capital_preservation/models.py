"""
Capital Preservation - ORM Models.

============================================================
PURPOSE
============================================================
SQLAlchemy ORM models for persisting guard state.

Includes:
- Guard state (one row per guard, sticky emergency flag)
- Drawdown episodes
- Alert records
- Emergency halts and their manual resume

All timestamps are stored in UTC.

============================================================
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Column,
    String,
    Integer,
    Float,
    Boolean,
    DateTime,
    Text,
    JSON,
    Index,
    Uuid,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GuardStateRecord(Base):
    """
    Latest persisted state of a guard.

    Overwritten on every save so a restart resumes with the
    same peak and the same sticky emergency flag.
    """

    __tablename__ = "capital_guard_state"

    guard_id = Column(String(64), primary_key=True)
    """Caller-chosen guard identifier."""

    # Peak Tracking
    peak_balance = Column(Float, nullable=True)
    max_drawdown = Column(Float, nullable=False, default=0.0)
    last_drawdown = Column(Float, nullable=False, default=0.0)
    drawdown_duration = Column(Integer, nullable=False, default=0)
    drawdown_started_at = Column(DateTime(timezone=True), nullable=True)

    # Protection State
    protection_state = Column(String(16), nullable=False, default="NORMAL")
    """NORMAL, WARNING, HIGH_RISK, EMERGENCY or RECOVERING."""

    emergency_active = Column(Boolean, nullable=False, default=False)
    risk_reduction_level = Column(Float, nullable=False, default=0.0)
    emergency_activations = Column(Integer, nullable=False, default=0)
    emergency_activated_at = Column(DateTime(timezone=True), nullable=True)

    # Metadata
    captured_at = Column(DateTime(timezone=True), nullable=True)
    """Guard clock time when the snapshot was taken."""

    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class DrawdownEpisodeRecord(Base):
    """One peak-to-recovery drawdown period."""

    __tablename__ = "capital_drawdown_episodes"

    id = Column(String(36), primary_key=True)
    """Episode identifier from the guard."""

    guard_id = Column(String(64), nullable=False, index=True)

    started_at = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    peak_balance = Column(Float, nullable=False)
    trough_balance = Column(Float, nullable=False)
    max_drawdown = Column(Float, nullable=False)
    duration_ticks = Column(Integer, nullable=False, default=0)
    emergency_activated = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_capital_episodes_guard_started", "guard_id", "started_at"),
    )


class ProtectionAlertRecord(Base):
    """Alert raised by a guard, kept for audit."""

    __tablename__ = "capital_protection_alerts"

    id = Column(String(36), primary_key=True)
    """Alert identifier from the guard."""

    guard_id = Column(String(64), nullable=False, index=True)

    alert_type = Column(String(32), nullable=False)
    severity = Column(String(16), nullable=False)
    """LOW, MEDIUM, HIGH, CRITICAL."""

    message = Column(Text, nullable=False)
    recommended_actions = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), nullable=False)
    """Guard clock time when the alert was raised."""

    __table_args__ = (
        Index("ix_capital_alerts_guard_timestamp", "guard_id", "timestamp"),
    )


class EmergencyHaltRecord(Base):
    """
    Record of an emergency halt.

    Tracks when trading was halted and who resumed it.
    """

    __tablename__ = "capital_emergency_halts"

    id = Column(Uuid, primary_key=True, default=uuid4)

    guard_id = Column(String(64), nullable=False, index=True)

    reason = Column(String(256), nullable=False)
    """Reason for halt."""

    balance_at_halt = Column(Float, nullable=False)
    drawdown_at_halt = Column(Float, nullable=False)

    halted_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    resumed_at = Column(DateTime(timezone=True), nullable=True)
    resumed_by = Column(String(64), nullable=True)
    """Operator who resumed trading."""

    resume_reason = Column(String(256), nullable=True)
