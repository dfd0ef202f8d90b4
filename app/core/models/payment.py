"""Payment: money received against one obligation, or against the opening ledger balance."""

import uuid

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship

from app.core.enums import PaymentStatus
from app.db.session import Base, utcnow


class Payment(Base):
    """
    Append-only. An obligation with several partial payments has several rows.
    LEDGER payments carry no obligation; they pay down the student's opening balance.
    """

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','completed','failed','refunded')",
            name="chk_payment_status",
        ),
        CheckConstraint(
            "("
            "(head_kind = 'LEDGER' AND obligation_id IS NULL)"
            " OR "
            "(head_kind <> 'LEDGER' AND obligation_id IS NOT NULL)"
            ")",
            name="chk_payment_target",
        ),
        CheckConstraint("amount > 0", name="chk_payment_amount"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    academic_year_id = Column(
        Uuid,
        ForeignKey("academic_years.id", ondelete="RESTRICT"),
        nullable=False,
    )
    obligation_id = Column(
        Uuid,
        ForeignKey("student_fee_obligations.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    head_kind = Column(String(20), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(Date, nullable=False)
    payment_method = Column(String(30), nullable=False)  # CASH, CHEQUE, CARD, UPI, BANK_TRANSFER, ONLINE
    transaction_reference = Column(String(100), nullable=True)
    receipt_number = Column(String(40), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=PaymentStatus.completed.value)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    student = relationship("Student")
    academic_year = relationship("AcademicYear")
    obligation = relationship("StudentFeeObligation", backref="payments")
