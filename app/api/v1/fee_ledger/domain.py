"""Fee ledger value types: head ids, money rounding, catalog entries, breakdown rows, allocation plans."""

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, FrozenSet, List, Optional, Tuple
from uuid import UUID

from app.core.enums import FeeHeadKind, ObligationStatus

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")
ALL_MONTHS: FrozenSet[int] = frozenset(range(1, 13))

TRANSPORT_HEAD_ID = FeeHeadKind.TRANSPORT.value
LEDGER_HEAD_ID = FeeHeadKind.LEDGER.value


def to_money(val) -> Decimal:
    """Fixed-point, 2 fractional digits, half-up. Floats go through str() to avoid binary noise."""
    if val is None:
        return ZERO
    if not isinstance(val, Decimal):
        val = Decimal(str(val))
    return val.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def fee_head_id(fee_structure_id: UUID) -> str:
    return f"{FeeHeadKind.FEE.value}:{fee_structure_id}"


def parse_head_id(head_id: str) -> Tuple[FeeHeadKind, Optional[UUID]]:
    """Split a head id into its kind and fee structure id. Raises ValueError when malformed."""
    value = (head_id or "").strip()
    if value == TRANSPORT_HEAD_ID:
        return FeeHeadKind.TRANSPORT, None
    if value == LEDGER_HEAD_ID:
        return FeeHeadKind.LEDGER, None
    prefix, sep, raw_id = value.partition(":")
    if sep and prefix == FeeHeadKind.FEE.value:
        return FeeHeadKind.FEE, UUID(raw_id)
    raise ValueError(f"Invalid fee head id: {head_id!r}")


def head_id_for(kind: str, fee_structure_id: Optional[UUID]) -> str:
    if kind == FeeHeadKind.FEE.value:
        return fee_head_id(fee_structure_id)
    return FeeHeadKind(kind).value


def obligation_unit_key(
    head_id: str,
    period_month: Optional[date] = None,
    installment_number: Optional[int] = None,
) -> str:
    """Billable unit: "FEE:<uuid>|2025-04" for a month, "TRANSPORT|#2" for an installment."""
    if period_month is not None:
        return f"{head_id}|{period_month.strftime('%Y-%m')}"
    return f"{head_id}|#{installment_number}"


@dataclass(frozen=True)
class FeeHeadCatalogEntry:
    head_id: str
    kind: FeeHeadKind
    name: str
    amount: Decimal
    applicable_months: FrozenSet[int] = ALL_MONTHS
    fee_structure_id: Optional[UUID] = None
    route_price_id: Optional[UUID] = None
    fee_category_id: Optional[UUID] = None


@dataclass
class ObligationLine:
    obligation_id: UUID
    due_date: date
    amount: Decimal
    received: Decimal
    balance: Decimal
    status: ObligationStatus
    overdue: bool = False
    period_month: Optional[date] = None
    installment_number: Optional[int] = None


@dataclass
class FeeBreakdownRow:
    head_id: str
    kind: FeeHeadKind
    fee_head: str
    total: Decimal
    received: Decimal
    balance: Decimal
    monthly_amounts: Dict[str, Decimal] = field(default_factory=dict)
    obligations: List[ObligationLine] = field(default_factory=list)


@dataclass(frozen=True)
class HeadAllocation:
    head_id: str
    amount: Decimal


@dataclass(frozen=True)
class ObligationAllocation:
    head_id: str
    obligation_id: Optional[UUID]  # None for the LEDGER head
    amount: Decimal
    expected_balance: Decimal


@dataclass
class AllocationPlan:
    amount_received: Decimal
    discount: Decimal
    net_amount: Decimal
    head_allocations: List[HeadAllocation]
    obligation_allocations: List[ObligationAllocation]
    unallocated: Decimal

    @property
    def allocated(self) -> Decimal:
        return sum((a.amount for a in self.head_allocations), ZERO)


@dataclass(frozen=True)
class GenerationFailure:
    ref: str  # head id, or student id in batch runs
    reason: str


@dataclass
class GenerationResult:
    generated: int = 0
    skipped: int = 0
    failed: List[GenerationFailure] = field(default_factory=list)
