from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index

from models.base_model import BaseModel, Base

# plan id -> monthly price in minor units (cents)
PLAN_PRICES = {
    "basic": 899,
    "premium": 1399,
    "family": 1799,
}


class Subscription(BaseModel, Base):
    __tablename__ = "subscriptions"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_type = Column(String(50), nullable=False)
    # mirrors the provider's status vocabulary: active, past_due, cancelled, ...
    status = Column(String(20), nullable=False, default="active")
    stripe_subscription_id = Column(String(255), nullable=True, unique=True)
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_subscriptions_user_status", "user_id", "status"),
    )
