"""TrialBox ORM model: one discounted box per (customer, farm)."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from farmbox.db.database import Base


class TrialBox(Base):
    __tablename__ = "trial_boxes"
    __table_args__ = (UniqueConstraint("customer_id", "farm_id"),)

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    farm_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("farms.id"), nullable=False)
    box_size: Mapped[str] = mapped_column(String(16), nullable=False)
    discount_percent: Mapped[int] = mapped_column(Integer, default=25)
    status: Mapped[str] = mapped_column(String(16), default="PENDING")
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    converted_to_sub: Mapped[bool] = mapped_column(Boolean, default=False)
    order_id: Mapped[uuid.UUID | None] = mapped_column()
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("subscriptions.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
