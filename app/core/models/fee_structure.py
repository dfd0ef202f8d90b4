"""Fee structure: per-period fee amount for a class and category head."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base, utcnow


class FeeStructure(Base):
    """Per-month amount of one fee category for a (class, category head). Catalog order is display_order."""

    __tablename__ = "fee_structures"
    __table_args__ = (
        UniqueConstraint(
            "class_id",
            "category_head_id",
            "fee_category_id",
            name="uq_fee_structure_class_head_category",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    class_id = Column(Uuid, nullable=False, index=True)
    category_head_id = Column(Uuid, nullable=False)
    fee_category_id = Column(
        Uuid,
        ForeignKey("fee_categories.id", ondelete="RESTRICT"),
        nullable=False,
    )
    amount = Column(Numeric(12, 2), nullable=False)
    display_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    fee_category = relationship("FeeCategory")
