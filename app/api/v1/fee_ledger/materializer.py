"""Obligation materializer: turns catalog entries into dated student fee obligations.

Bills the window from the academic-year start to the end of the previous calendar month.
The current month is never billed ahead. Generation is idempotent per head and period:
repeating a run without ``regenerate_existing`` creates nothing. Regeneration supersedes
prior obligations and refuses to touch heads that already received completed payments.
"""

import calendar
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_DOWN, Decimal
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import FeeHeadKind, PaymentStatus
from app.core.exceptions import RegenerateConflict
from app.core.models import AcademicYear, Payment, Student, StudentFeeObligation

from .audit import log_fee_audit
from .catalog import lock_student
from .domain import (
    TWO_PLACES,
    ZERO,
    FeeHeadCatalogEntry,
    GenerationFailure,
    GenerationResult,
    head_id_for,
    obligation_unit_key,
    to_money,
)

logger = logging.getLogger(__name__)


@dataclass
class GenerationOptions:
    due_date: date
    regenerate_existing: bool = False
    head_ids: Optional[Set[str]] = None
    installment_count: Optional[int] = None
    installment_start_date: Optional[date] = None
    discount_percentage: Optional[Decimal] = None
    discount_fixed_amount: Optional[Decimal] = None

    @property
    def installments(self) -> bool:
        return self.installment_count is not None


def _month_start(d: date) -> date:
    return d.replace(day=1)


def add_months(d: date, months: int, day: Optional[int] = None) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day or d.day, last_day))


def billing_window(year_start: date, year_end: date, today: date) -> List[date]:
    """First day of each month from the year start through the previous calendar month."""
    end = min(year_end, _month_start(today) - timedelta(days=1))
    months: List[date] = []
    current = _month_start(year_start)
    while current <= end:
        months.append(current)
        current = add_months(current, 1, day=1)
    return months


def billable_months(window: Iterable[date], applicable: FrozenSet[int]) -> List[date]:
    return [m for m in window if m.month in applicable]


def due_date_in_month(month: date, due_day: int) -> date:
    return add_months(month, 0, day=due_day)


def split_installments(total: Decimal, count: int) -> List[Decimal]:
    """Equal shares rounded down; the last installment absorbs the remainder."""
    share = (total / count).quantize(TWO_PLACES, rounding=ROUND_DOWN)
    shares = [share] * (count - 1)
    shares.append(total - share * (count - 1))
    return shares


def apply_discount(
    amount: Decimal,
    percentage: Optional[Decimal],
    fixed_amount: Optional[Decimal],
) -> Decimal:
    """Discount for one obligation, never more than the obligation itself."""
    discount = ZERO
    if percentage:
        discount += to_money(amount * percentage / Decimal("100"))
    if fixed_amount:
        discount += to_money(fixed_amount)
    return min(discount, amount)


def _validate_entry(entry: FeeHeadCatalogEntry) -> Optional[str]:
    if entry.amount < 0:
        return f"{entry.name}: configured amount {entry.amount} is negative"
    if not entry.applicable_months:
        return f"{entry.name}: no applicable months configured"
    return None


def _new_obligation(
    student: Student,
    academic_year: AcademicYear,
    entry: FeeHeadCatalogEntry,
    amount: Decimal,
    due_date: date,
    options: GenerationOptions,
    period_month: Optional[date] = None,
    installment_number: Optional[int] = None,
) -> StudentFeeObligation:
    discount = apply_discount(amount, options.discount_percentage, options.discount_fixed_amount)
    return StudentFeeObligation(
        student_id=student.id,
        academic_year_id=academic_year.id,
        head_kind=entry.kind.value,
        fee_structure_id=entry.fee_structure_id if entry.kind == FeeHeadKind.FEE else None,
        route_price_id=entry.route_price_id,
        head_name=entry.name,
        unit_key=obligation_unit_key(entry.head_id, period_month, installment_number),
        period_month=period_month,
        installment_number=installment_number,
        installment_count=options.installment_count if installment_number else None,
        original_amount=amount,
        discount_amount=discount,
        amount=amount - discount,
        due_date=due_date,
        is_active=True,
    )


def _plan_entry(
    student: Student,
    academic_year: AcademicYear,
    entry: FeeHeadCatalogEntry,
    months: List[date],
    prior: List[StudentFeeObligation],
    options: GenerationOptions,
    result: GenerationResult,
) -> List[StudentFeeObligation]:
    if options.installments:
        if prior and not options.regenerate_existing:
            result.skipped += len(prior)
            return []
        if not months:
            return []
        start = options.installment_start_date or options.due_date
        total = entry.amount * len(months)
        return [
            _new_obligation(
                student,
                academic_year,
                entry,
                share,
                add_months(start, i),
                options,
                installment_number=i + 1,
            )
            for i, share in enumerate(split_installments(total, options.installment_count))
        ]

    done: Set[date] = set()
    if not options.regenerate_existing:
        if any(o.period_month is None for o in prior):
            # Installment set already in place for this head
            result.skipped += len(prior)
            return []
        done = {o.period_month for o in prior}
    rows: List[StudentFeeObligation] = []
    for month in months:
        if month in done:
            result.skipped += 1
            continue
        rows.append(
            _new_obligation(
                student,
                academic_year,
                entry,
                entry.amount,
                due_date_in_month(month, options.due_date.day),
                options,
                period_month=month,
            )
        )
    return rows


async def _active_obligations_by_head(
    db: AsyncSession,
    student_id,
    academic_year_id,
) -> Dict[str, List[StudentFeeObligation]]:
    result = await db.execute(
        select(StudentFeeObligation).where(
            StudentFeeObligation.student_id == student_id,
            StudentFeeObligation.academic_year_id == academic_year_id,
            StudentFeeObligation.is_active.is_(True),
        )
    )
    grouped: Dict[str, List[StudentFeeObligation]] = defaultdict(list)
    for o in result.scalars().all():
        grouped[head_id_for(o.head_kind, o.fee_structure_id)].append(o)
    return grouped


async def _paid_obligation_ids(db: AsyncSession, obligation_ids: List) -> Set:
    if not obligation_ids:
        return set()
    result = await db.execute(
        select(Payment.obligation_id)
        .where(
            Payment.obligation_id.in_(obligation_ids),
            Payment.status == PaymentStatus.completed.value,
        )
        .distinct()
    )
    return set(result.scalars().all())


async def materialize_obligations(
    db: AsyncSession,
    student: Student,
    academic_year: AcademicYear,
    entries: List[FeeHeadCatalogEntry],
    options: GenerationOptions,
    today: date,
) -> GenerationResult:
    """
    Stage obligations for the given catalog entries in the session (flushed, not committed).
    Nothing is staged when any head fails validation; RegenerateConflict aborts the run.
    """
    result = GenerationResult()
    window = billing_window(academic_year.start_date, academic_year.end_date, today)
    if options.head_ids is not None:
        entries = [e for e in entries if e.head_id in options.head_ids]

    # Held until commit; a concurrent run or payment for this student waits here
    await lock_student(db, student.id)
    existing = await _active_obligations_by_head(db, student.id, academic_year.id)
    paid_ids: Set = set()
    if options.regenerate_existing:
        paid_ids = await _paid_obligation_ids(
            db, [o.id for e in entries for o in existing.get(e.head_id, [])]
        )

    conflicts: List[str] = []
    staged: List[tuple] = []
    for entry in entries:
        reason = _validate_entry(entry)
        if reason:
            result.failed.append(GenerationFailure(ref=entry.head_id, reason=reason))
            continue
        prior = existing.get(entry.head_id, [])
        if options.regenerate_existing and any(o.id in paid_ids for o in prior):
            conflicts.append(entry.head_id)
            continue
        months = billable_months(window, entry.applicable_months)
        rows = _plan_entry(student, academic_year, entry, months, prior, options, result)
        superseded = prior if options.regenerate_existing else []
        staged.append((entry, superseded, rows))

    if conflicts:
        raise RegenerateConflict(conflicts)
    if result.failed:
        logger.warning(
            "Fee generation for student %s rejected: %s",
            student.id,
            "; ".join(f.reason for f in result.failed),
        )
        result.skipped = 0
        return result

    now = datetime.now(timezone.utc)
    for entry, superseded, rows in staged:
        for old in superseded:
            old.is_active = False
            old.superseded_at = now
            log_fee_audit(
                db, "student_fee_obligations", old.id, "SUPERSEDE",
                {"is_active": True, "amount": str(old.amount)},
                {"is_active": False},
            )
        if superseded:
            # Replacements reuse the unit keys; deactivate first
            await db.flush()
        for row in rows:
            db.add(row)
        await db.flush()
        for row in rows:
            log_fee_audit(
                db, "student_fee_obligations", row.id, "CREATE",
                None,
                {
                    "student_id": str(student.id),
                    "head_id": entry.head_id,
                    "period_month": row.period_month.isoformat() if row.period_month else None,
                    "installment_number": row.installment_number,
                    "original_amount": str(row.original_amount),
                    "discount_amount": str(row.discount_amount),
                    "amount": str(row.amount),
                    "due_date": row.due_date.isoformat(),
                },
            )
        result.generated += len(rows)
    await db.flush()
    return result
