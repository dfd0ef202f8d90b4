"""Fee ledger service: generation, breakdown, allocation preview, payment recording.

Each write operation is one transaction: it either commits completely or is rolled back,
leaving obligations and payments exactly as they were. Retries belong to the caller.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.enums import GenerationStatus, GenerationType, PaymentMethod
from app.core.exceptions import PersistenceFailure, ServiceError, StaleBreakdown
from app.core.models import AcademicYear, FeeGenerationHistory, Payment, Student

from .allocation import allocate
from .breakdown import load_breakdown
from .catalog import get_student, resolve_catalog, validate_catalog as _validate_catalog
from .domain import (
    AllocationPlan,
    FeeBreakdownRow,
    GenerationFailure,
    GenerationResult,
    to_money,
)
from .ledger_writer import PaymentDetails, write_allocation
from .materializer import GenerationOptions, materialize_obligations
from .schemas import (
    AllocationPreviewResponse,
    CatalogValidationResponse,
    FeeBreakdownRowResponse,
    GenerationFailureResponse,
    GenerationHistoryResponse,
    GenerationResultResponse,
    HeadAllocationResponse,
    ObligationAllocationResponse,
    ObligationLineResponse,
    PaymentResponse,
    PaymentResultResponse,
)

logger = logging.getLogger(__name__)


def _row_to_response(row: FeeBreakdownRow) -> FeeBreakdownRowResponse:
    return FeeBreakdownRowResponse(
        head_id=row.head_id,
        kind=row.kind,
        fee_head=row.fee_head,
        monthly_amounts=dict(row.monthly_amounts),
        total=row.total,
        received=row.received,
        balance=row.balance,
        obligations=[
            ObligationLineResponse(
                obligation_id=line.obligation_id,
                due_date=line.due_date,
                period_month=line.period_month,
                installment_number=line.installment_number,
                amount=line.amount,
                received=line.received,
                balance=line.balance,
                status=line.status,
                overdue=line.overdue,
            )
            for line in row.obligations
        ],
    )


def _plan_fields(plan: AllocationPlan) -> dict:
    return dict(
        amount_received=plan.amount_received,
        discount=plan.discount,
        net_amount=plan.net_amount,
        allocations=[HeadAllocationResponse(head_id=a.head_id, amount=a.amount) for a in plan.head_allocations],
        obligation_allocations=[
            ObligationAllocationResponse(head_id=a.head_id, obligation_id=a.obligation_id, amount=a.amount)
            for a in plan.obligation_allocations
        ],
        unallocated=plan.unallocated,
    )


def _result_to_response(result: GenerationResult) -> GenerationResultResponse:
    return GenerationResultResponse(
        generated=result.generated,
        skipped=result.skipped,
        failed=[GenerationFailureResponse(ref=f.ref, reason=f.reason) for f in result.failed],
    )


async def _get_academic_year(db: AsyncSession, academic_year_id: UUID, writable: bool = False) -> AcademicYear:
    ay = await db.get(AcademicYear, academic_year_id)
    if not ay:
        raise ServiceError("Academic year not found", status.HTTP_404_NOT_FOUND)
    if writable and ay.status != "ACTIVE":
        raise ServiceError("Cannot modify fees for a CLOSED academic year", status.HTTP_400_BAD_REQUEST)
    return ay


async def _current_breakdown(
    db: AsyncSession,
    student: Student,
    academic_year_id: UUID,
    today: date,
) -> List[FeeBreakdownRow]:
    entries = await resolve_catalog(db, student)
    return await load_breakdown(
        db,
        student,
        academic_year_id,
        [e.head_id for e in entries],
        today,
        settings.fee_overdue_grace_days,
    )


# --- Generation ---
def _add_history(
    db: AsyncSession,
    academic_year_id: UUID,
    student_id: Optional[UUID],
    generation_type: GenerationType,
    result: GenerationResult,
    error_message: Optional[str] = None,
) -> None:
    failed = bool(result.failed) or error_message is not None
    db.add(
        FeeGenerationHistory(
            academic_year_id=academic_year_id,
            student_id=student_id,
            generation_type=generation_type.value,
            status=(GenerationStatus.FAILED if failed else GenerationStatus.COMPLETED).value,
            generated=result.generated,
            skipped=result.skipped,
            failed=len(result.failed) or (1 if error_message else 0),
            error_message=error_message or ("; ".join(f.reason for f in result.failed) or None),
        )
    )


async def _record_failed_run(
    db: AsyncSession,
    academic_year_id: UUID,
    student_id: UUID,
    generation_type: GenerationType,
    message: str,
) -> None:
    """History row for a run that was rolled back; written in its own transaction."""
    try:
        _add_history(db, academic_year_id, student_id, generation_type, GenerationResult(), message)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Could not record failed generation run for student %s", student_id)


async def generate_obligations(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: UUID,
    options: GenerationOptions,
    today: Optional[date] = None,
    generation_type: GenerationType = GenerationType.MANUAL,
) -> GenerationResult:
    """Materialize obligations for one student and year in a single transaction."""
    today = today or date.today()
    student = await get_student(db, student_id)
    ay = await _get_academic_year(db, academic_year_id, writable=True)
    try:
        entries = await resolve_catalog(db, student)
        result = await materialize_obligations(db, student, ay, entries, options, today)
        _add_history(db, ay.id, student.id, generation_type, result)
        await db.commit()
    except ServiceError as e:
        await db.rollback()
        await _record_failed_run(db, academic_year_id, student_id, generation_type, e.message)
        raise
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Fee generation failed for student %s", student_id)
        raise PersistenceFailure()
    logger.info(
        "Fee generation for student %s, year %s: generated=%d skipped=%d failed=%d",
        student_id, academic_year_id, result.generated, result.skipped, len(result.failed),
    )
    return result


async def generate_obligations_response(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: UUID,
    options: GenerationOptions,
    today: Optional[date] = None,
) -> GenerationResultResponse:
    return _result_to_response(await generate_obligations(db, student_id, academic_year_id, options, today))


async def generate_for_students(
    db: AsyncSession,
    academic_year_id: UUID,
    options: GenerationOptions,
    student_ids: Optional[Sequence[UUID]] = None,
    class_id: Optional[UUID] = None,
    today: Optional[date] = None,
) -> GenerationResultResponse:
    """
    Batch generation. Every student is its own transaction; one student's failure is
    reported in ``failed`` and does not undo the others.
    """
    await _get_academic_year(db, academic_year_id, writable=True)
    ids: List[UUID] = list(dict.fromkeys(student_ids or []))
    if class_id is not None:
        rows = await db.execute(select(Student.id).where(Student.class_id == class_id).order_by(Student.full_name))
        ids.extend(i for i in rows.scalars().all() if i not in ids)
    if not ids:
        raise ServiceError("No students found for fee generation", status.HTTP_400_BAD_REQUEST)

    total = GenerationResult()
    for sid in ids:
        try:
            result = await generate_obligations(
                db, sid, academic_year_id, options, today, generation_type=GenerationType.BATCH
            )
        except ServiceError as e:
            total.failed.append(GenerationFailure(ref=str(sid), reason=e.message))
            continue
        total.generated += result.generated
        total.skipped += result.skipped
        total.failed.extend(GenerationFailure(ref=str(sid), reason=f.reason) for f in result.failed)
    return _result_to_response(total)


async def list_generation_history(
    db: AsyncSession,
    academic_year_id: UUID,
    student_id: Optional[UUID] = None,
) -> List[GenerationHistoryResponse]:
    stmt = select(FeeGenerationHistory).where(FeeGenerationHistory.academic_year_id == academic_year_id)
    if student_id is not None:
        stmt = stmt.where(FeeGenerationHistory.student_id == student_id)
    stmt = stmt.order_by(FeeGenerationHistory.created_at.desc())
    result = await db.execute(stmt)
    return [GenerationHistoryResponse.model_validate(h) for h in result.scalars().all()]


# --- Breakdown ---
async def get_breakdown(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: UUID,
    today: Optional[date] = None,
) -> List[FeeBreakdownRowResponse]:
    student = await get_student(db, student_id)
    await _get_academic_year(db, academic_year_id)
    rows = await _current_breakdown(db, student, academic_year_id, today or date.today())
    return [_row_to_response(r) for r in rows]


async def preview_allocation(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: UUID,
    amount_received: Decimal,
    discount: Decimal,
    selected_heads: Sequence[str],
    today: Optional[date] = None,
) -> AllocationPreviewResponse:
    """What record_payment would do right now, without writing anything."""
    student = await get_student(db, student_id)
    await _get_academic_year(db, academic_year_id)
    rows = await _current_breakdown(db, student, academic_year_id, today or date.today())
    plan = allocate(amount_received, discount, selected_heads, rows)
    return AllocationPreviewResponse(**_plan_fields(plan))


# --- Payment ---
def _check_expected_balances(rows: List[FeeBreakdownRow], expected: Dict[str, Decimal]) -> None:
    """A head the operator saw that is no longer in the breakdown counts as stale."""
    current = {r.head_id: r.balance for r in rows}
    stale = [h for h, balance in expected.items() if h not in current or current[h] != to_money(balance)]
    if stale:
        raise StaleBreakdown(stale)


async def record_payment(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: UUID,
    amount_received: Decimal,
    discount: Decimal,
    selected_heads: Sequence[str],
    payment_method: PaymentMethod,
    payment_date: Optional[date] = None,
    transaction_reference: Optional[str] = None,
    notes: Optional[str] = None,
    expected_balances: Optional[Dict[str, Decimal]] = None,
    today: Optional[date] = None,
) -> PaymentResultResponse:
    """
    Allocate a received amount across the selected heads and persist it as payments,
    atomically. Unallocated money is reported back, never absorbed.
    """
    today = today or date.today()
    student = await get_student(db, student_id)
    await _get_academic_year(db, academic_year_id, writable=True)
    try:
        rows = await _current_breakdown(db, student, academic_year_id, today)
        if expected_balances:
            _check_expected_balances(rows, expected_balances)
        plan = allocate(amount_received, discount, selected_heads, rows)
        details = PaymentDetails(
            payment_method=payment_method,
            payment_date=payment_date or today,
            transaction_reference=transaction_reference,
            notes=notes,
        )
        payments = await write_allocation(db, student, academic_year_id, plan, details, today)
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Payment recording failed for student %s", student_id)
        raise PersistenceFailure()

    if plan.unallocated > 0:
        logger.info("Payment for student %s left %s unallocated", student_id, plan.unallocated)
    # Snapshot before the re-read; a rollback there expires the committed rows
    receipt_number = payments[0].receipt_number if payments else None
    created = [PaymentResponse.model_validate(p) for p in payments]
    # The payment is committed; a failed re-read must not look like a failed payment
    try:
        after = await _current_breakdown(db, student, academic_year_id, today)
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Breakdown reload failed after receipt %s", receipt_number)
        after = []
    return PaymentResultResponse(
        **_plan_fields(plan),
        receipt_number=receipt_number,
        created_payments=created,
        breakdown=[_row_to_response(r) for r in after],
    )


async def list_payments(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: Optional[UUID] = None,
) -> List[PaymentResponse]:
    await get_student(db, student_id)
    stmt = select(Payment).where(Payment.student_id == student_id)
    if academic_year_id is not None:
        stmt = stmt.where(Payment.academic_year_id == academic_year_id)
    stmt = stmt.order_by(Payment.payment_date.desc(), Payment.created_at.desc())
    result = await db.execute(stmt)
    return [PaymentResponse.model_validate(p) for p in result.scalars().all()]


async def validate_catalog(
    db: AsyncSession,
    class_id: UUID,
    category_head_id: UUID,
    route_id: UUID,
) -> CatalogValidationResponse:
    return CatalogValidationResponse(**await _validate_catalog(db, class_id, category_head_id, route_id))
