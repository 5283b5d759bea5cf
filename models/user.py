from enum import Enum

from sqlalchemy import Column, String, Integer, DateTime, Text, Index

from models.base_model import BaseModel, Base


class SubscriptionStatus(str, Enum):
    NONE = "none"
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"
    PAST_DUE = "past_due"


class User(BaseModel, Base):
    __tablename__ = "users"

    email = Column(String(255), nullable=False, unique=True, index=True)  # stored lower-cased
    password_hash = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    subscription_status = Column(String(20), nullable=False, default=SubscriptionStatus.NONE.value)
    subscription_plan_type = Column(String(50), nullable=True)
    subscription_started_at = Column(DateTime, nullable=True)
    # single active refresh token per user; rotation overwrites it
    refresh_token = Column(Text, nullable=True)
    last_login = Column(DateTime, nullable=True)
    failed_login_attempts = Column(Integer, nullable=False, default=0)
    account_locked_until = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_users_account_locked_until", "account_locked_until"),
    )

    @property
    def password(self):
        raise AttributeError("Password: Write-only field")
