"""Student fee obligation: money owed by a student for one fee head and period or installment."""

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.core.enums import FeeHeadKind
from app.db.session import Base, utcnow


class StudentFeeObligation(Base):
    """
    One row per (student, academic year, fee head, period month or installment).
    Created only by generation. Never deleted: regeneration sets is_active = false and
    superseded_at, then inserts replacements.
    """

    __tablename__ = "student_fee_obligations"
    __table_args__ = (
        CheckConstraint(
            "head_kind IN ('FEE','TRANSPORT')",
            name="chk_obligation_head_kind",
        ),
        CheckConstraint(
            "("
            "(head_kind = 'FEE' AND fee_structure_id IS NOT NULL)"
            " OR "
            "(head_kind = 'TRANSPORT' AND fee_structure_id IS NULL)"
            ")",
            name="chk_obligation_head_fields",
        ),
        CheckConstraint("amount >= 0", name="chk_obligation_amount"),
        Index("ix_obligation_student_year", "student_id", "academic_year_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    academic_year_id = Column(
        Uuid,
        ForeignKey("academic_years.id", ondelete="RESTRICT"),
        nullable=False,
    )
    head_kind = Column(String(20), nullable=False, default=FeeHeadKind.FEE.value)
    fee_structure_id = Column(
        Uuid,
        ForeignKey("fee_structures.id", ondelete="RESTRICT"),
        nullable=True,
    )
    route_price_id = Column(
        Uuid,
        ForeignKey("route_prices.id", ondelete="SET NULL"),
        nullable=True,
    )
    head_name = Column(String(255), nullable=False)
    # Head id plus period month or installment number; identifies one billable unit
    unit_key = Column(String(80), nullable=False)

    # First day of the billed month in period mode; NULL for installments
    period_month = Column(Date, nullable=True)
    installment_number = Column(Integer, nullable=True)
    installment_count = Column(Integer, nullable=True)

    original_amount = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    amount = Column(Numeric(12, 2), nullable=False)
    due_date = Column(Date, nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)
    superseded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    student = relationship("Student")
    academic_year = relationship("AcademicYear")
    fee_structure = relationship("FeeStructure")


# At most one active obligation per billable unit. Superseded rows keep their key.
Index(
    "uq_obligation_active_unit",
    StudentFeeObligation.student_id,
    StudentFeeObligation.academic_year_id,
    StudentFeeObligation.unit_key,
    unique=True,
    postgresql_where=StudentFeeObligation.is_active.is_(True),
    sqlite_where=StudentFeeObligation.is_active.is_(True),
)
