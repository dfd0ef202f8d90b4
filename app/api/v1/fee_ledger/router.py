"""Fee ledger router: generate obligations, breakdown, allocation preview, payments, history."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ServiceError
from app.db.session import get_db

from .materializer import GenerationOptions
from .schemas import (
    AllocationPreviewRequest,
    AllocationPreviewResponse,
    BatchGenerateObligationsRequest,
    CatalogValidationResponse,
    FeeBreakdownRowResponse,
    GenerateObligationsRequest,
    GenerationHistoryResponse,
    GenerationResultResponse,
    PaymentCreate,
    PaymentResponse,
    PaymentResultResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/fee-ledger", tags=["fee-ledger"])


def _http_error(e: ServiceError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.detail)


def _to_options(payload: GenerateObligationsRequest) -> GenerationOptions:
    return GenerationOptions(
        due_date=payload.due_date,
        regenerate_existing=payload.regenerate_existing,
        head_ids=set(payload.head_ids) if payload.head_ids is not None else None,
        installment_count=payload.installment.count if payload.installment else None,
        installment_start_date=payload.installment.start_date if payload.installment else None,
        discount_percentage=payload.discount.percentage if payload.discount else None,
        discount_fixed_amount=payload.discount.fixed_amount if payload.discount else None,
    )


# --- Generation ---
@router.post(
    "/students/{student_id}/obligations",
    response_model=GenerationResultResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_obligations(
    student_id: UUID,
    payload: GenerateObligationsRequest,
    db: AsyncSession = Depends(get_db),
) -> GenerationResultResponse:
    try:
        return await service.generate_obligations_response(
            db, student_id, payload.academic_year_id, _to_options(payload)
        )
    except ServiceError as e:
        raise _http_error(e)


@router.post(
    "/obligations/batch",
    response_model=GenerationResultResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_obligations_batch(
    payload: BatchGenerateObligationsRequest,
    db: AsyncSession = Depends(get_db),
) -> GenerationResultResponse:
    try:
        return await service.generate_for_students(
            db,
            payload.academic_year_id,
            _to_options(payload),
            student_ids=payload.student_ids,
            class_id=payload.class_id,
        )
    except ServiceError as e:
        raise _http_error(e)


@router.get("/generation-history", response_model=List[GenerationHistoryResponse])
async def list_generation_history(
    academic_year_id: UUID,
    student_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> List[GenerationHistoryResponse]:
    return await service.list_generation_history(db, academic_year_id, student_id=student_id)


# --- Breakdown ---
@router.get("/students/{student_id}/breakdown", response_model=List[FeeBreakdownRowResponse])
async def get_breakdown(
    student_id: UUID,
    academic_year_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> List[FeeBreakdownRowResponse]:
    try:
        return await service.get_breakdown(db, student_id, academic_year_id)
    except ServiceError as e:
        raise _http_error(e)


# --- Allocation / Payment ---
@router.post("/students/{student_id}/allocation-preview", response_model=AllocationPreviewResponse)
async def preview_allocation(
    student_id: UUID,
    payload: AllocationPreviewRequest,
    db: AsyncSession = Depends(get_db),
) -> AllocationPreviewResponse:
    try:
        return await service.preview_allocation(
            db,
            student_id,
            payload.academic_year_id,
            payload.amount_received,
            payload.discount,
            payload.selected_heads,
        )
    except ServiceError as e:
        raise _http_error(e)


@router.post(
    "/students/{student_id}/payments",
    response_model=PaymentResultResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    student_id: UUID,
    payload: PaymentCreate,
    db: AsyncSession = Depends(get_db),
) -> PaymentResultResponse:
    try:
        return await service.record_payment(
            db,
            student_id,
            payload.academic_year_id,
            payload.amount_received,
            payload.discount,
            payload.selected_heads,
            payload.payment_method,
            payment_date=payload.payment_date,
            transaction_reference=payload.transaction_reference,
            notes=payload.notes,
            expected_balances=payload.expected_balances,
        )
    except ServiceError as e:
        raise _http_error(e)


@router.get("/students/{student_id}/payments", response_model=List[PaymentResponse])
async def list_payments(
    student_id: UUID,
    academic_year_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> List[PaymentResponse]:
    try:
        return await service.list_payments(db, student_id, academic_year_id=academic_year_id)
    except ServiceError as e:
        raise _http_error(e)


# --- Catalog ---
@router.get("/catalog/validate", response_model=CatalogValidationResponse)
async def validate_catalog(
    class_id: UUID,
    category_head_id: UUID,
    route_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> CatalogValidationResponse:
    return await service.validate_catalog(db, class_id, category_head_id, route_id)
