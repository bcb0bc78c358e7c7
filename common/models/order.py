from sqlalchemy import Column, DateTime, Integer, JSON, String, func
from sqlalchemy.orm import relationship
from .base import Base


class Order(Base):
    __tablename__ = "order"

    id = Column(String(36), primary_key=True)
    session_id = Column(String(128), nullable=True)
    status = Column(String(32), nullable=False, default="pending")
    currency = Column(String(3), nullable=False)
    # amounts are integer minor units
    subtotal_amount = Column(Integer, nullable=False)
    shipping_amount = Column(Integer, nullable=False, default=0)
    total_amount = Column(Integer, nullable=False)
    promotion_name = Column(String(32), nullable=False, default="NONE")
    shipping_json = Column(JSON, nullable=True)
    shipping_country = Column(String(2), nullable=True)
    payment_reference = Column(String(128), nullable=True, index=True)
    checkout_session_id = Column(String(128), nullable=True, index=True)
    tracking_code = Column(String(128), nullable=True)
    tracking_url = Column(String(512), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    # optimistic lock counter, bumped by every conditional update
    version = Column(Integer, nullable=False, default=1)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )

    @property
    def discount_amount(self) -> int:
        return self.subtotal_amount + self.shipping_amount - self.total_amount
