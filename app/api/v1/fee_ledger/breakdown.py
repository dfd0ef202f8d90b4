"""Breakdown calculator: per-head total / received / balance derived from obligations and completed payments.

Recomputed on every request. Row order is stable: ledger balance, fee heads in catalog order,
transport last. Allocation priority indexes rely on that order.
"""

from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import FeeHeadKind, ObligationStatus, PaymentStatus
from app.core.models import Payment, Student, StudentFeeObligation

from .domain import (
    LEDGER_HEAD_ID,
    TRANSPORT_HEAD_ID,
    ZERO,
    FeeBreakdownRow,
    ObligationLine,
    head_id_for,
    to_money,
)

LEDGER_OUTSTANDING_LABEL = "Ledger Balance (Outstanding)"
LEDGER_CREDIT_LABEL = "Ledger Balance (Credit)"


def obligation_status(amount: Decimal, received: Decimal) -> ObligationStatus:
    if received >= amount:
        return ObligationStatus.paid
    if received == 0:
        return ObligationStatus.pending
    return ObligationStatus.partially_paid


def oldest_first_key(obligation) -> tuple:
    return (
        obligation.due_date,
        obligation.period_month or date.min,
        obligation.installment_number or 0,
        str(obligation.id),
    )


def _received_by_obligation(payments: Iterable) -> Dict[UUID, Decimal]:
    received: Dict[UUID, Decimal] = defaultdict(lambda: ZERO)
    for p in payments:
        if p.obligation_id is None or p.status != PaymentStatus.completed.value:
            continue
        received[p.obligation_id] += to_money(p.amount)
    return received


def _ledger_row(opening_balance: Decimal, ledger_received: Decimal) -> Optional[FeeBreakdownRow]:
    if opening_balance == 0:
        return None
    return FeeBreakdownRow(
        head_id=LEDGER_HEAD_ID,
        kind=FeeHeadKind.LEDGER,
        fee_head=LEDGER_OUTSTANDING_LABEL if opening_balance > 0 else LEDGER_CREDIT_LABEL,
        total=opening_balance,
        received=ledger_received,
        balance=opening_balance - ledger_received,
    )


def _head_row(
    head_id: str,
    obligations: List,
    received_map: Dict[UUID, Decimal],
    overdue_before: date,
) -> FeeBreakdownRow:
    obligations = sorted(obligations, key=oldest_first_key)
    lines: List[ObligationLine] = []
    monthly: Dict[str, Decimal] = {}
    for o in obligations:
        amount = to_money(o.amount)
        received = received_map.get(o.id, ZERO)
        line_status = obligation_status(amount, received)
        lines.append(
            ObligationLine(
                obligation_id=o.id,
                due_date=o.due_date,
                amount=amount,
                received=received,
                balance=amount - received,
                status=line_status,
                overdue=o.due_date < overdue_before and line_status != ObligationStatus.paid,
                period_month=o.period_month,
                installment_number=o.installment_number,
            )
        )
        if o.period_month is not None:
            key = o.period_month.strftime("%b %y")
            monthly[key] = monthly.get(key, ZERO) + amount
    total = sum((line.amount for line in lines), ZERO)
    received_total = sum((line.received for line in lines), ZERO)
    first = obligations[0]
    return FeeBreakdownRow(
        head_id=head_id,
        kind=FeeHeadKind(first.head_kind),
        fee_head=first.head_name,
        total=total,
        received=received_total,
        balance=total - received_total,
        monthly_amounts=monthly,
        obligations=lines,
    )


def compute_breakdown(
    obligations: Iterable,
    payments: Iterable,
    opening_balance,
    ledger_received,
    head_order: Sequence[str],
    as_of: date,
    overdue_grace_days: int = 0,
) -> List[FeeBreakdownRow]:
    """
    Pure function of current state. Inactive (superseded) obligations are ignored; only
    completed payments count as received. Balances may go negative, which exposes
    over-allocation rather than hiding it.
    """
    received_map = _received_by_obligation(payments)
    by_head: Dict[str, List] = defaultdict(list)
    names: Dict[str, str] = {}
    for o in obligations:
        if not o.is_active:
            continue
        head_id = head_id_for(o.head_kind, o.fee_structure_id)
        by_head[head_id].append(o)
        names[head_id] = o.head_name

    catalog_rank = {head_id: i for i, head_id in enumerate(head_order)}
    fee_heads = [h for h in by_head if h not in (TRANSPORT_HEAD_ID, LEDGER_HEAD_ID)]
    fee_heads.sort(key=lambda h: (0, catalog_rank[h], "") if h in catalog_rank else (1, 0, names[h]))

    overdue_before = as_of - timedelta(days=overdue_grace_days)
    rows: List[FeeBreakdownRow] = []
    ledger = _ledger_row(to_money(opening_balance), to_money(ledger_received))
    if ledger is not None:
        rows.append(ledger)
    for head_id in fee_heads:
        rows.append(_head_row(head_id, by_head[head_id], received_map, overdue_before))
    if TRANSPORT_HEAD_ID in by_head:
        rows.append(_head_row(TRANSPORT_HEAD_ID, by_head[TRANSPORT_HEAD_ID], received_map, overdue_before))
    return rows


async def load_ledger_received(db: AsyncSession, student_id: UUID) -> Decimal:
    """Completed LEDGER payments across all years; the opening balance is a single carried scalar."""
    total = (
        await db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(
                Payment.student_id == student_id,
                Payment.head_kind == FeeHeadKind.LEDGER.value,
                Payment.status == PaymentStatus.completed.value,
            )
        )
    ).scalar()
    return to_money(total)


async def load_obligations(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: UUID,
    for_update: bool = False,
) -> List[StudentFeeObligation]:
    stmt = select(StudentFeeObligation).where(
        StudentFeeObligation.student_id == student_id,
        StudentFeeObligation.academic_year_id == academic_year_id,
        StudentFeeObligation.is_active.is_(True),
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def load_payments(db: AsyncSession, obligation_ids: List[UUID]) -> List[Payment]:
    if not obligation_ids:
        return []
    result = await db.execute(
        select(Payment).where(
            Payment.obligation_id.in_(obligation_ids),
            Payment.status == PaymentStatus.completed.value,
        )
    )
    return list(result.scalars().all())


async def load_breakdown(
    db: AsyncSession,
    student: Student,
    academic_year_id: UUID,
    head_order: Sequence[str],
    as_of: date,
    overdue_grace_days: int = 0,
    for_update: bool = False,
) -> List[FeeBreakdownRow]:
    obligations = await load_obligations(db, student.id, academic_year_id, for_update=for_update)
    payments = await load_payments(db, [o.id for o in obligations])
    ledger_received = await load_ledger_received(db, student.id)
    return compute_breakdown(
        obligations,
        payments,
        student.opening_balance,
        ledger_received,
        head_order,
        as_of,
        overdue_grace_days,
    )
