"""Route price: transport fee per route, optionally per class."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base, utcnow


class RoutePrice(Base):
    """
    Per-month transport amount for a route. class_id NULL marks the route-general price
    used when no class-specific price exists.
    """

    __tablename__ = "route_prices"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    route_id = Column(Uuid, nullable=False, index=True)
    class_id = Column(Uuid, nullable=True)
    fee_category_id = Column(
        Uuid,
        ForeignKey("fee_categories.id", ondelete="SET NULL"),
        nullable=True,
    )
    amount = Column(Numeric(12, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    fee_category = relationship("FeeCategory")
