"""Fee ledger schemas. Monetary fields travel as decimal strings, never JSON floats."""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, BeforeValidator, Field, PlainSerializer, field_validator, model_validator

from app.core.enums import FeeHeadKind, ObligationStatus, PaymentMethod

from .domain import parse_head_id


def _reject_float(value):
    if isinstance(value, float):
        raise ValueError("monetary amounts must be sent as decimal strings, not floating point numbers")
    return value


def _validate_head_ids(values: Optional[List[str]]) -> Optional[List[str]]:
    if values is None:
        return None
    for value in values:
        parse_head_id(value)
    return [v.strip() for v in values]


# Input: decimal string or integer
MoneyIn = Annotated[Decimal, BeforeValidator(_reject_float)]
# Output: always a 2-place decimal string in JSON
Money = Annotated[Decimal, PlainSerializer(lambda v: f"{v:.2f}", return_type=str, when_used="json")]


# --- Generation ---
class InstallmentOptions(BaseModel):
    count: int = Field(..., ge=1, le=12)
    start_date: Optional[date] = Field(None, description="First installment due date; defaults to due_date")


class GenerationDiscount(BaseModel):
    percentage: Optional[MoneyIn] = Field(None, ge=0, le=100)
    fixed_amount: Optional[MoneyIn] = Field(None, ge=0)


class GenerateObligationsRequest(BaseModel):
    academic_year_id: UUID
    due_date: date
    regenerate_existing: bool = False
    head_ids: Optional[List[str]] = Field(None, description="Restrict generation to these fee heads")
    installment: Optional[InstallmentOptions] = None
    discount: Optional[GenerationDiscount] = None

    @field_validator("head_ids")
    @classmethod
    def check_head_ids(cls, values):
        return _validate_head_ids(values)


class BatchGenerateObligationsRequest(GenerateObligationsRequest):
    student_ids: Optional[List[UUID]] = None
    class_id: Optional[UUID] = None

    @model_validator(mode="after")
    def require_targets(self):
        if not self.student_ids and self.class_id is None:
            raise ValueError("Provide student_ids or class_id")
        return self


class GenerationFailureResponse(BaseModel):
    ref: str
    reason: str


class GenerationResultResponse(BaseModel):
    generated: int
    skipped: int
    failed: List[GenerationFailureResponse]


class GenerationHistoryResponse(BaseModel):
    id: UUID
    academic_year_id: UUID
    student_id: Optional[UUID] = None
    generation_type: str
    status: str
    generated: int
    skipped: int
    failed: int
    error_message: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


# --- Breakdown ---
class ObligationLineResponse(BaseModel):
    obligation_id: UUID
    due_date: date
    period_month: Optional[date] = None
    installment_number: Optional[int] = None
    amount: Money
    received: Money
    balance: Money
    status: ObligationStatus
    overdue: bool


class FeeBreakdownRowResponse(BaseModel):
    head_id: str
    kind: FeeHeadKind
    fee_head: str
    monthly_amounts: Dict[str, Money]
    total: Money
    received: Money
    balance: Money
    obligations: List[ObligationLineResponse]


# --- Allocation / Payment ---
class AllocationPreviewRequest(BaseModel):
    academic_year_id: UUID
    amount_received: MoneyIn
    discount: MoneyIn = Decimal("0")
    selected_heads: List[str] = Field(default_factory=list, description="Fee head ids in priority order")

    @field_validator("selected_heads")
    @classmethod
    def check_selected_heads(cls, values):
        return _validate_head_ids(values)


class PaymentCreate(AllocationPreviewRequest):
    payment_method: PaymentMethod
    payment_date: Optional[date] = None
    transaction_reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    expected_balances: Optional[Dict[str, MoneyIn]] = Field(
        None,
        description="Head balances the operator saw; any mismatch rejects the payment as stale",
    )

    @field_validator("expected_balances")
    @classmethod
    def check_expected_heads(cls, values):
        if values is None:
            return None
        return dict(zip(_validate_head_ids(list(values)), values.values()))


class HeadAllocationResponse(BaseModel):
    head_id: str
    amount: Money


class ObligationAllocationResponse(BaseModel):
    head_id: str
    obligation_id: Optional[UUID] = None
    amount: Money


class AllocationPreviewResponse(BaseModel):
    amount_received: Money
    discount: Money
    net_amount: Money
    allocations: List[HeadAllocationResponse]
    obligation_allocations: List[ObligationAllocationResponse]
    unallocated: Money


class PaymentResponse(BaseModel):
    id: UUID
    student_id: UUID
    academic_year_id: UUID
    obligation_id: Optional[UUID] = None
    head_kind: FeeHeadKind
    amount: Money
    payment_date: date
    payment_method: str
    transaction_reference: Optional[str] = None
    receipt_number: str
    status: str
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentResultResponse(AllocationPreviewResponse):
    receipt_number: Optional[str] = None
    created_payments: List[PaymentResponse]
    breakdown: List[FeeBreakdownRowResponse]


# --- Catalog ---
class CatalogValidationResponse(BaseModel):
    valid: bool
    missing: List[str]
