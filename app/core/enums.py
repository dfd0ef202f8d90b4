from enum import Enum


class FeeHeadKind(str, Enum):
    FEE = "FEE"
    TRANSPORT = "TRANSPORT"
    LEDGER = "LEDGER"


class FeeCategoryType(str, Enum):
    SCHOOL = "SCHOOL"
    TRANSPORT = "TRANSPORT"


class ObligationStatus(str, Enum):
    pending = "pending"
    partially_paid = "partially_paid"
    paid = "paid"


class PaymentStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CHEQUE = "CHEQUE"
    CARD = "CARD"
    UPI = "UPI"
    BANK_TRANSFER = "BANK_TRANSFER"
    ONLINE = "ONLINE"


class GenerationType(str, Enum):
    MANUAL = "MANUAL"
    BATCH = "BATCH"


class GenerationStatus(str, Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
