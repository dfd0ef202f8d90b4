"""Receipt sequence: one counter row per calendar day."""

from sqlalchemy import Column, Date, DateTime, Integer

from app.db.session import Base, utcnow


class ReceiptSequence(Base):
    """
    Last receipt number issued on a day. Read with FOR UPDATE and incremented inside
    the payment transaction, so receipts are unique across students.
    """

    __tablename__ = "receipt_sequences"

    day = Column(Date, primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
