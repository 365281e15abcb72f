"""
Real SQL-backed stores for production when USE_POSTGRES_POLICIES and DATABASE_URL are set.
Implements the same interfaces as bodacover.database.memory (in-memory stores).
"""

from __future__ import annotations

import re
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import create_engine, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bodacover.database.models import Base, ClaimRow, PolicyRow, RiderRow
from bodacover.errors import DuplicateClaimError, NotFoundError, ValidationError
from bodacover.integrations.contracts.interfaces import (
    Claim,
    ClaimStatus,
    ClaimStore,
    Duration,
    Policy,
    PolicyStore,
    ProtectionType,
    Rider,
    RiderStore,
    SettlementRail,
)


def _normalize_connection_string(s: str) -> str:
    """Strip common mistakes: 'psql \'...\'', extra quotes, whitespace."""
    s = s.strip()
    if re.match(r"^psql\s+", s, re.IGNORECASE):
        s = re.sub(r"^psql\s+", "", s, flags=re.IGNORECASE).strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ("'", '"'):
        s = s[1:-1].strip()
    return s


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo; everything is stored as UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PostgresDB:
    """
    Engine and session factory shared by the SQL stores. Use when DATABASE_URL
    is set and USE_POSTGRES_POLICIES=true. Accepts sqlite URLs for tests.
    """

    def __init__(self, connection_string: str) -> None:
        connection_string = _normalize_connection_string(connection_string)
        engine_kwargs: Dict[str, Any] = {"pool_pre_ping": True}
        if connection_string.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if connection_string in ("sqlite://", "sqlite:///:memory:", "sqlite+pysqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs.update(pool_size=5, max_overflow=10)
        self.engine = create_engine(connection_string, **engine_kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine, expire_on_commit=False)

    def create_tables(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        s = self.SessionLocal()
        try:
            yield s
            s.commit()
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()


# ---------------------------------------------------------------------- #
# Row <-> contract conversion
# ---------------------------------------------------------------------- #
def _rider_from_row(row: RiderRow) -> Rider:
    return Rider(
        rider_id=row.rider_id,
        phone_number=row.phone_number,
        name=row.name,
        national_id=row.national_id,
        email=row.email,
        wallet_address=row.wallet_address,
        cached_balance=Decimal(row.cached_balance) if row.cached_balance is not None else None,
        created_at=_aware(row.created_at),
    )


def _policy_from_row(row: PolicyRow) -> Policy:
    return Policy(
        id=row.id,
        rider_phone=row.rider_phone,
        protection_type=ProtectionType(row.protection_type),
        duration=Duration(row.duration),
        premium_paid=Decimal(row.premium_paid),
        settlement_rail=SettlementRail(row.settlement_rail),
        transaction_ref=row.transaction_ref,
        intent_key=row.intent_key,
        created_at=_aware(row.created_at),
        expiry_at=_aware(row.expiry_at),
        active_flag=row.active_flag,
    )


def _claim_from_row(row: ClaimRow) -> Claim:
    return Claim(
        id=row.id,
        claim_id=row.claim_id,
        policy_id=row.policy_id,
        rider_phone=row.rider_phone,
        premium_at_claim=Decimal(row.premium_at_claim),
        details=row.details,
        evidence_ref=row.evidence_ref,
        status=ClaimStatus(row.status),
        created_at=_aware(row.created_at),
        payout_transaction_ref=row.payout_transaction_ref,
    )


# ---------------------------------------------------------------------- #
# Stores
# ---------------------------------------------------------------------- #
class SqlRiderStore(RiderStore):
    def __init__(self, db: PostgresDB) -> None:
        self.db = db

    def get_or_create_rider(self, phone_number: str, **profile: Any) -> Rider:
        with self.db.session() as s:
            row = s.get(RiderRow, phone_number)
            if row is None:
                row = RiderRow(rider_id=phone_number, phone_number=phone_number, **profile)
                s.add(row)
                s.flush()
                s.refresh(row)
            return _rider_from_row(row)

    def get_rider(self, rider_id: str) -> Optional[Rider]:
        with self.db.session() as s:
            row = s.get(RiderRow, rider_id)
            return _rider_from_row(row) if row else None

    def update_cached_balance(self, rider_id: str, balance: Decimal) -> None:
        with self.db.session() as s:
            row = s.get(RiderRow, rider_id)
            if row is not None:
                row.cached_balance = balance


class SqlPolicyStore(PolicyStore):
    def __init__(self, db: PostgresDB) -> None:
        self.db = db

    def create_many(self, policies: List[Policy]) -> List[Policy]:
        # One session = one transaction: all rows commit or none do.
        try:
            with self.db.session() as s:
                for p in policies:
                    s.add(
                        PolicyRow(
                            id=p.id,
                            rider_phone=p.rider_phone,
                            protection_type=p.protection_type.value,
                            duration=p.duration.value,
                            premium_paid=p.premium_paid,
                            settlement_rail=p.settlement_rail.value,
                            transaction_ref=p.transaction_ref,
                            intent_key=p.intent_key,
                            created_at=p.created_at,
                            expiry_at=p.expiry_at,
                            active_flag=p.active_flag,
                        )
                    )
        except IntegrityError as exc:
            raise ValidationError("Policy ids must be unique.") from exc
        return list(policies)

    def get(self, policy_id: str) -> Optional[Policy]:
        with self.db.session() as s:
            row = s.get(PolicyRow, str(policy_id))
            return _policy_from_row(row) if row else None

    def list_by_rider(self, rider_phone: str) -> List[Policy]:
        with self.db.session() as s:
            stmt = (
                select(PolicyRow)
                .where(PolicyRow.rider_phone == rider_phone)
                .order_by(PolicyRow.created_at.desc())
            )
            return [_policy_from_row(r) for r in s.execute(stmt).scalars().all()]

    def list_by_intent(self, intent_key: str) -> List[Policy]:
        with self.db.session() as s:
            stmt = select(PolicyRow).where(PolicyRow.intent_key == intent_key)
            return [_policy_from_row(r) for r in s.execute(stmt).scalars().all()]

    def deactivate(self, policy_id: str) -> Policy:
        with self.db.session() as s:
            row = s.get(PolicyRow, policy_id)
            if row is None:
                raise NotFoundError("Policy not found.")
            row.active_flag = False
            s.flush()
            return _policy_from_row(row)


class SqlClaimStore(ClaimStore):
    def __init__(self, db: PostgresDB) -> None:
        self.db = db

    def create(self, claim: Claim) -> Claim:
        try:
            with self.db.session() as s:
                s.add(
                    ClaimRow(
                        id=claim.id,
                        claim_id=claim.claim_id,
                        policy_id=claim.policy_id,
                        rider_phone=claim.rider_phone,
                        premium_at_claim=claim.premium_at_claim,
                        details=claim.details,
                        evidence_ref=claim.evidence_ref,
                        status=claim.status.value,
                        created_at=claim.created_at,
                        payout_transaction_ref=claim.payout_transaction_ref,
                    )
                )
        except IntegrityError as exc:
            raise DuplicateClaimError() from exc
        return claim

    def get(self, claim_id: str) -> Optional[Claim]:
        with self.db.session() as s:
            stmt = select(ClaimRow).where(or_(ClaimRow.id == claim_id, ClaimRow.claim_id == claim_id))
            row = s.execute(stmt).scalars().first()
            return _claim_from_row(row) if row else None

    def get_by_policy(self, policy_id: str) -> Optional[Claim]:
        with self.db.session() as s:
            stmt = select(ClaimRow).where(ClaimRow.policy_id == policy_id)
            row = s.execute(stmt).scalar_one_or_none()
            return _claim_from_row(row) if row else None

    def list_by_rider(self, rider_phone: str) -> List[Claim]:
        with self.db.session() as s:
            stmt = (
                select(ClaimRow)
                .where(ClaimRow.rider_phone == rider_phone)
                .order_by(ClaimRow.created_at.desc())
            )
            return [_claim_from_row(r) for r in s.execute(stmt).scalars().all()]

    def update(self, claim: Claim) -> Claim:
        with self.db.session() as s:
            row = s.get(ClaimRow, claim.id)
            if row is None:
                raise NotFoundError("Claim not found.")
            row.status = claim.status.value
            row.payout_transaction_ref = claim.payout_transaction_ref
        return claim
