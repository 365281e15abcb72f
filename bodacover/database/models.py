"""
SQLAlchemy models for riders, policies and claims.
Used by postgres_real when USE_POSTGRES_POLICIES and DATABASE_URL are set.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class RiderRow(Base):
    __tablename__ = "riders"

    rider_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    phone_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), default="", nullable=False)
    national_id: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    wallet_address: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    cached_balance: Mapped[Optional[Decimal]] = mapped_column(Numeric(24, 8), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class PolicyRow(Base):
    __tablename__ = "policies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    rider_phone: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    protection_type: Mapped[str] = mapped_column(String(16), nullable=False)
    duration: Mapped[str] = mapped_column(String(16), nullable=False)
    premium_paid: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    settlement_rail: Mapped[str] = mapped_column(String(32), nullable=False)
    transaction_ref: Mapped[str] = mapped_column(String(128), nullable=False)
    intent_key: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expiry_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    active_flag: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ClaimRow(Base):
    __tablename__ = "claims"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    claim_id: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    # unique: at most one claim per policy, enforced by the database as well
    policy_id: Mapped[str] = mapped_column(String(36), ForeignKey("policies.id"), unique=True, nullable=False)
    rider_phone: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    premium_at_claim: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False)
    evidence_ref: Mapped[str] = mapped_column(String(512), nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="Pending", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    payout_transaction_ref: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
