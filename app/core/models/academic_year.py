import uuid

from sqlalchemy import Column, Date, DateTime, String, Uuid

from app.db.session import Base, utcnow


class AcademicYear(Base):
    """
    Academic year window. Obligations and payments are scoped to exactly one year;
    ledgers of different years are never aggregated.
    CLOSED years are read-only for fee generation and payments.
    """

    __tablename__ = "academic_years"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(50), nullable=False, unique=True)  # e.g. "2025-2026"
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="ACTIVE")  # ACTIVE | CLOSED
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
