"""Ledger writer: persists an allocation plan as payment rows, all or nothing.

Balances are re-read inside the write transaction. If any targeted obligation (or the
ledger head) no longer has the balance the plan was computed from, the whole batch is
rejected with StaleBreakdown. Rows are locked with SELECT ... FOR UPDATE where the
database supports it, so two concurrent submissions for one student serialize.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.enums import PaymentMethod, PaymentStatus
from app.core.exceptions import StaleBreakdown
from app.core.models import Payment, ReceiptSequence, Student, StudentFeeObligation

from .audit import log_fee_audit
from .breakdown import load_ledger_received
from .catalog import lock_student
from .domain import ZERO, AllocationPlan, ObligationAllocation, parse_head_id, to_money

logger = logging.getLogger(__name__)


@dataclass
class PaymentDetails:
    payment_method: PaymentMethod
    payment_date: date
    transaction_reference: Optional[str] = None
    notes: Optional[str] = None


async def next_receipt_number(db: AsyncSession, today: date) -> str:
    """
    Format: REC-{YYYYMMDD}-{NNNN}, sequence restarting every day and growing past 4 digits.
    Two first-of-day inserts collide on the primary key and surface as a storage failure.
    """
    counter = (
        await db.execute(
            select(ReceiptSequence)
            .where(ReceiptSequence.day == today)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if counter is None:
        counter = ReceiptSequence(day=today, last_value=0)
        db.add(counter)
    counter.last_value += 1
    await db.flush()
    return f"{settings.fee_receipt_prefix}-{today.strftime('%Y%m%d')}-{counter.last_value:04d}"


async def _fresh_received(db: AsyncSession, obligation_ids: List[UUID]) -> Dict[UUID, Decimal]:
    received: Dict[UUID, Decimal] = defaultdict(lambda: ZERO)
    if not obligation_ids:
        return received
    result = await db.execute(
        select(Payment.obligation_id, func.coalesce(func.sum(Payment.amount), 0))
        .where(
            Payment.obligation_id.in_(obligation_ids),
            Payment.status == PaymentStatus.completed.value,
        )
        .group_by(Payment.obligation_id)
    )
    for obligation_id, total in result.all():
        received[obligation_id] = to_money(total)
    return received


async def _stale_allocations(
    db: AsyncSession,
    student: Student,
    academic_year_id: UUID,
    targeted: List[ObligationAllocation],
) -> List[str]:
    obligation_ids = [a.obligation_id for a in targeted if a.obligation_id is not None]
    obligations: Dict[UUID, StudentFeeObligation] = {}
    if obligation_ids:
        result = await db.execute(
            select(StudentFeeObligation)
            .where(StudentFeeObligation.id.in_(obligation_ids))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        obligations = {o.id: o for o in result.scalars().all()}
    received = await _fresh_received(db, obligation_ids)

    stale: List[str] = []
    for a in targeted:
        if a.obligation_id is None:
            fresh = to_money(student.opening_balance) - await load_ledger_received(db, student.id)
            ref = a.head_id
        else:
            ref = str(a.obligation_id)
            o = obligations.get(a.obligation_id)
            if (
                o is None
                or not o.is_active
                or o.student_id != student.id
                or o.academic_year_id != academic_year_id
            ):
                stale.append(ref)
                continue
            fresh = to_money(o.amount) - received[a.obligation_id]
        if fresh != a.expected_balance or a.amount > fresh:
            stale.append(ref)
    return stale


async def write_allocation(
    db: AsyncSession,
    student: Student,
    academic_year_id: UUID,
    plan: AllocationPlan,
    details: PaymentDetails,
    today: date,
) -> List[Payment]:
    """
    Stage one completed payment per (obligation, amount > 0) in the session and flush.
    The caller owns commit / rollback. Raises StaleBreakdown before staging anything.
    """
    targeted = [a for a in plan.obligation_allocations if a.amount > 0]
    if not targeted:
        return []

    await lock_student(db, student.id)

    stale = await _stale_allocations(db, student, academic_year_id, targeted)
    if stale:
        logger.warning(
            "Stale breakdown for student %s, year %s: %s",
            student.id, academic_year_id, ", ".join(stale),
        )
        raise StaleBreakdown(stale)

    receipt_number = await next_receipt_number(db, today)
    reference = (details.transaction_reference or "").strip() or None
    notes = (details.notes or "").strip() or None
    payments: List[Payment] = []
    for a in targeted:
        payment = Payment(
            student_id=student.id,
            academic_year_id=academic_year_id,
            obligation_id=a.obligation_id,
            head_kind=parse_head_id(a.head_id)[0].value,
            amount=a.amount,
            payment_date=details.payment_date,
            payment_method=PaymentMethod(details.payment_method).value,
            transaction_reference=reference,
            receipt_number=receipt_number,
            status=PaymentStatus.completed.value,
            notes=notes,
        )
        db.add(payment)
        payments.append(payment)
    await db.flush()

    for payment in payments:
        log_fee_audit(
            db, "payments", payment.id, "CREATE",
            None,
            {
                "student_id": str(student.id),
                "obligation_id": str(payment.obligation_id) if payment.obligation_id else None,
                "head_kind": payment.head_kind,
                "amount": str(payment.amount),
                "payment_method": payment.payment_method,
                "receipt_number": receipt_number,
            },
        )
    await db.flush()
    logger.info(
        "Recorded %d payment(s) under receipt %s for student %s",
        len(payments), receipt_number, student.id,
    )
    return payments

