# economy_engine/domains/economy/models.py
"""
Database models for the points economy and withdrawal ledger
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import (JSON, BigInteger, Boolean, CheckConstraint, Date,
                        DateTime, Float, ForeignKey, Integer, String, Text)
from sqlalchemy.orm import Mapped, mapped_column

from economy_engine.domains.economy.entities import (ActiveBoost,
                                                     EarningSource,
                                                     review_priority)
from economy_engine.shared.models.base import Base, TimestampMixin
from economy_engine.shared.utils.clock import utcnow


class EconomyConfigVersion(Base):
    """One row per admin write; the highest version is the live config."""

    __tablename__ = "economy_config_versions"

    version: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    body: Mapped[dict] = mapped_column(JSON)
    created_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class UserEconomyState(Base, TimestampMixin):
    __tablename__ = "economy_user_states"
    __table_args__ = (
        CheckConstraint("total_points >= 0", name="ck_economy_user_states_total_points"),
    )

    user_id: Mapped[str] = mapped_column(String, primary_key=True)

    # Balance
    total_points: Mapped[int] = mapped_column(BigInteger, default=0)

    # Lifetime earnings per source
    points_ads: Mapped[int] = mapped_column(BigInteger, default=0)
    points_news: Mapped[int] = mapped_column(BigInteger, default=0)
    points_trivia: Mapped[int] = mapped_column(BigInteger, default=0)
    points_games: Mapped[int] = mapped_column(BigInteger, default=0)
    points_offers: Mapped[int] = mapped_column(BigInteger, default=0)
    points_surveys: Mapped[int] = mapped_column(BigInteger, default=0)
    points_referrals: Mapped[int] = mapped_column(BigInteger, default=0)

    # Streak tracking
    daily_streak: Mapped[int] = mapped_column(Integer, default=0)
    last_check_in: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # "{YYYY-MM-DD}:{actionType}" -> count; only today's keys are kept
    daily_counters: Mapped[Dict[str, int]] = mapped_column(JSON, default=dict)

    # One-shot boost
    boost_factor: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    boost_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Profile snapshot synced from the identity layer
    country: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    phone_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    device_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    account_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def bucket_column(self, source: EarningSource) -> str:
        return f"points_{source.value}"

    def credit(self, source: EarningSource, points: int) -> None:
        self.total_points += points
        column = self.bucket_column(source)
        setattr(self, column, getattr(self, column) + points)

    def buckets(self) -> Dict[str, int]:
        return {source.value: getattr(self, self.bucket_column(source)) for source in EarningSource}

    @property
    def active_boost(self) -> Optional[ActiveBoost]:
        if self.boost_factor is None:
            return None
        return ActiveBoost(self.boost_factor, self.boost_expires_at)

    def clear_boost(self) -> None:
        self.boost_factor = None
        self.boost_expires_at = None


class EarningEvent(Base):
    """Append-only; rows are never updated or deleted."""

    __tablename__ = "economy_earning_events"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String, ForeignKey("economy_user_states.user_id"), index=True
    )
    action_type: Mapped[str] = mapped_column(String)
    source: Mapped[str] = mapped_column(String, index=True)
    base_points: Mapped[float] = mapped_column(Float)
    # [{"name", "factor", "source"}] in the order they were applied
    multipliers: Mapped[List[dict]] = mapped_column(JSON, default=list)
    multiplier: Mapped[float] = mapped_column(Float)
    capped: Mapped[bool] = mapped_column(Boolean, default=False)
    final_points: Mapped[int] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)


class WithdrawalRequest(Base, TimestampMixin):
    __tablename__ = "economy_withdrawals"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String, ForeignKey("economy_user_states.user_id"), index=True
    )
    amount_points: Mapped[int] = mapped_column(BigInteger)
    # Frozen at creation, stored in cents to stay exact
    amount_usd_cents: Mapped[int] = mapped_column(BigInteger)

    method: Mapped[str] = mapped_column(String)
    method_details: Mapped[dict] = mapped_column(JSON)
    payout_fingerprint: Mapped[str] = mapped_column(String, index=True)

    status: Mapped[str] = mapped_column(String, default="pending", index=True)
    risk_score: Mapped[int] = mapped_column(Integer)
    fraud_signals: Mapped[List[str]] = mapped_column(JSON, default=list)

    admin_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payout_reference: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Payout hand-off: who holds the gateway call, and how often it was enqueued
    payout_claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    dispatch_attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    @property
    def amount_usd(self) -> Decimal:
        return (Decimal(self.amount_usd_cents) / 100).quantize(Decimal("0.01"))

    @property
    def review_priority(self) -> str:
        return review_priority(self.risk_score)
