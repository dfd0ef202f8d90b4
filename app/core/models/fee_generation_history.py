"""Fee generation history: one row per generation run."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, Uuid

from app.db.session import Base, utcnow


class FeeGenerationHistory(Base):
    __tablename__ = "fee_generation_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    academic_year_id = Column(
        Uuid,
        ForeignKey("academic_years.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=True)
    generation_type = Column(String(20), nullable=False)  # MANUAL, BATCH
    status = Column(String(20), nullable=False)  # COMPLETED, FAILED
    generated = Column(Integer, nullable=False, default=0)
    skipped = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
