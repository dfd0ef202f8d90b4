"""Student: the fields of the student record the fee ledger depends on."""

import uuid

from sqlalchemy import Column, DateTime, Numeric, String, Uuid

from app.db.session import Base, utcnow


class Student(Base):
    """
    Student as seen by the fee ledger. class_id, category_head_id and route_id point at
    records owned by other modules and are required before fees can be resolved.
    opening_balance is the signed carry-forward from admission (positive = owes the school,
    negative = credit). It is never decremented; LEDGER payments pay it down.
    """

    __tablename__ = "students"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name = Column(String(255), nullable=False)
    class_id = Column(Uuid, nullable=True, index=True)
    category_head_id = Column(Uuid, nullable=True)
    route_id = Column(Uuid, nullable=True)
    opening_balance = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
