from sqlalchemy import Column, String, Integer, ForeignKey, CheckConstraint

from models.base_model import BaseModel, Base


class Payment(BaseModel, Base):
    __tablename__ = "payments"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    stripe_payment_id = Column(String(255), nullable=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True)
    amount = Column(Integer, nullable=False, default=0)  # minor units
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(String(20), nullable=False)  # completed / failed

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_payments_amount_nonnegative"),
    )
