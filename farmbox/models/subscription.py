"""Subscription ORM models: lifecycle row plus append-only pause/skip/event tables."""

import uuid
from datetime import date, datetime

from sqlalchemy import (
    JSON, Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint, text,
)
from sqlalchemy.orm import Mapped, mapped_column

from farmbox.db.database import Base

ACTIVE_ONLY = text("status = 'ACTIVE'")


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        # At most one ACTIVE subscription per (customer, farm) and (customer, category)
        Index(
            "uq_active_farm_subscription", "customer_id", "farm_id",
            unique=True, postgresql_where=ACTIVE_ONLY, sqlite_where=ACTIVE_ONLY,
        ),
        Index(
            "uq_active_category_subscription", "customer_id", "category",
            unique=True, postgresql_where=ACTIVE_ONLY, sqlite_where=ACTIVE_ONLY,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    farm_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("farms.id"))
    category: Mapped[str | None] = mapped_column(String(64))

    # Configuration
    box_size: Mapped[str] = mapped_column(String(16), nullable=False)
    frequency: Mapped[str] = mapped_column(String(16), nullable=False)
    delivery_day: Mapped[int] = mapped_column(Integer, nullable=False)
    delivery_zone: Mapped[str] = mapped_column(String(32), nullable=False)
    delivery_address: Mapped[str] = mapped_column(Text, nullable=False)
    preferences: Mapped[dict] = mapped_column(JSON, default=dict)
    max_farms_per_box: Mapped[int] = mapped_column(Integer, default=3)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(16), default="ACTIVE", index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    next_delivery: Mapped[date | None] = mapped_column(Date)
    paused_until: Mapped[datetime | None] = mapped_column(DateTime)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime)
    cancellation_reason: Mapped[str | None] = mapped_column(Text)

    # Quotas
    pauses_used_this_year: Mapped[int] = mapped_column(Integer, default=0)
    max_pauses_per_year: Mapped[int] = mapped_column(Integer, default=4)
    skips_this_month: Mapped[int] = mapped_column(Integer, default=0)
    max_skips_per_month: Mapped[int] = mapped_column(Integer, default=2)

    trial_converted: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_renew: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class SubscriptionPause(Base):
    __tablename__ = "subscription_pauses"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("subscriptions.id"), nullable=False, index=True
    )
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class SubscriptionSkip(Base):
    __tablename__ = "subscription_skips"
    __table_args__ = (UniqueConstraint("subscription_id", "skip_date"),)

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("subscriptions.id"), nullable=False, index=True
    )
    skip_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class SubscriptionEvent(Base):
    __tablename__ = "subscription_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("subscriptions.id"), nullable=False, index=True
    )
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    detail: Mapped[dict] = mapped_column(JSON, default=dict)
