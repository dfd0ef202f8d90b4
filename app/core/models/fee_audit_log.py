"""Fee audit log: immutable financial change tracking for audit safety."""

import uuid

from sqlalchemy import JSON, Column, DateTime, String, Uuid

from app.db.session import Base, utcnow


class FeeAuditLog(Base):
    """Immutable audit trail for obligation and payment writes."""

    __tablename__ = "fee_audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    reference_table = Column(String(50), nullable=False)
    reference_id = Column(Uuid, nullable=False, index=True)
    action_type = Column(String(30), nullable=False)  # CREATE, SUPERSEDE
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
