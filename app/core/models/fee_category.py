"""Fee category (Tuition, Exam, Transport). Carries the calendar months a fee applies to."""

import uuid

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, String, Text, Uuid

from app.core.enums import FeeCategoryType
from app.db.session import Base, utcnow


class FeeCategory(Base):
    __tablename__ = "fee_categories"
    __table_args__ = (
        CheckConstraint(
            "category_type IN ('SCHOOL','TRANSPORT')",
            name="chk_fee_category_type",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category_type = Column(String(20), nullable=False, default=FeeCategoryType.SCHOOL.value)
    # List of month numbers 1..12; NULL means every month
    applicable_months = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
