from sqlalchemy import Boolean, Column, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import relationship
from .base import Base


class OrderItem(Base):
    """Line of an order, frozen at creation time (never repriced)."""
    __tablename__ = "order_item"

    id = Column(String(36), primary_key=True)
    order_id = Column(String(36), ForeignKey("order.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)
    image = Column(String(512), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_amount = Column(Integer, nullable=False)
    total_amount = Column(Integer, nullable=False)
    is_free_gift = Column(Boolean, nullable=False, default=False)
    snapshot = Column(JSON, nullable=True)

    order = relationship("Order", back_populates="items")

    def to_dict(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "image": self.image,
            "quantity": self.quantity,
            "unit_amount": self.unit_amount,
            "total_amount": self.total_amount,
            "is_free_gift": bool(self.is_free_gift),
            "snapshot": self.snapshot or {},
        }
