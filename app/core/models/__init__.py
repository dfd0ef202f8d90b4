from app.core.models.academic_year import AcademicYear
from app.core.models.student import Student
from app.core.models.fee_category import FeeCategory
from app.core.models.fee_structure import FeeStructure
from app.core.models.route_price import RoutePrice
from app.core.models.student_fee_obligation import StudentFeeObligation
from app.core.models.payment import Payment
from app.core.models.fee_generation_history import FeeGenerationHistory
from app.core.models.fee_audit_log import FeeAuditLog
from app.core.models.receipt_sequence import ReceiptSequence

__all__ = [
    "AcademicYear",
    "Student",
    "FeeCategory",
    "FeeStructure",
    "RoutePrice",
    "StudentFeeObligation",
    "Payment",
    "FeeGenerationHistory",
    "FeeAuditLog",
    "ReceiptSequence",
]
