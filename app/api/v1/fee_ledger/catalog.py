"""Catalog resolver: which fee heads apply to a student, with amounts and applicable months. Read-only."""

from typing import FrozenSet, List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import FeeCategoryType, FeeHeadKind
from app.core.exceptions import CatalogMissing, ServiceError
from app.core.models import FeeCategory, FeeStructure, RoutePrice, Student

from .domain import ALL_MONTHS, TRANSPORT_HEAD_ID, FeeHeadCatalogEntry, fee_head_id, to_money


async def get_student(db: AsyncSession, student_id: UUID) -> Student:
    student = await db.get(Student, student_id)
    if not student:
        raise ServiceError("Student not found", status.HTTP_404_NOT_FOUND)
    return student


async def lock_student(db: AsyncSession, student_id: UUID) -> None:
    """Row lock on the student. Generation and payment writes for one student take it first."""
    await db.execute(select(Student.id).where(Student.id == student_id).with_for_update())


async def list_active_fee_structures(
    db: AsyncSession,
    class_id: UUID,
    category_head_id: UUID,
) -> List[FeeStructure]:
    stmt = (
        select(FeeStructure)
        .where(
            FeeStructure.class_id == class_id,
            FeeStructure.category_head_id == category_head_id,
            FeeStructure.is_active.is_(True),
        )
        .order_by(FeeStructure.display_order, FeeStructure.name, FeeStructure.id)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


def _months_from(raw) -> FrozenSet[int]:
    if raw is None:
        return ALL_MONTHS
    return frozenset(int(m) for m in raw if 1 <= int(m) <= 12)


async def get_applicable_months(db: AsyncSession, fee_category_id: Optional[UUID]) -> FrozenSet[int]:
    """Months (1..12) a fee category bills for. All 12 when the category or its months are unset."""
    if fee_category_id is None:
        return ALL_MONTHS
    category = await db.get(FeeCategory, fee_category_id)
    if not category:
        return ALL_MONTHS
    return _months_from(category.applicable_months)


async def find_route_price(db: AsyncSession, route_id: UUID, class_id: UUID) -> Optional[RoutePrice]:
    """
    Transport price for a route. Preference order:
    1. price for this exact class
    2. route-general price (no class)
    3. first available price for the route
    """
    result = await db.execute(
        select(RoutePrice)
        .where(RoutePrice.route_id == route_id, RoutePrice.is_active.is_(True))
        .order_by(RoutePrice.created_at, RoutePrice.id)
    )
    prices = list(result.scalars().all())
    if not prices:
        return None
    for price in prices:
        if price.class_id == class_id:
            return price
    for price in prices:
        if price.class_id is None:
            return price
    return prices[0]


def _require_placement(student: Student) -> None:
    missing = [
        label
        for label, value in (
            ("class", student.class_id),
            ("category head", student.category_head_id),
            ("route", student.route_id),
        )
        if value is None
    ]
    if missing:
        raise ServiceError(
            f"Student has no {', '.join(missing)} assigned",
            status.HTTP_400_BAD_REQUEST,
        )


async def resolve_catalog(db: AsyncSession, student: Student) -> List[FeeHeadCatalogEntry]:
    """FEE heads in catalog order, then at most one TRANSPORT head."""
    _require_placement(student)

    structures = await list_active_fee_structures(db, student.class_id, student.category_head_id)
    if not structures:
        raise CatalogMissing(
            "No fee structures found for this class and category. "
            "Please create fee plans for this class and category combination first."
        )

    entries: List[FeeHeadCatalogEntry] = []
    for fs in structures:
        entries.append(
            FeeHeadCatalogEntry(
                head_id=fee_head_id(fs.id),
                kind=FeeHeadKind.FEE,
                name=fs.name,
                amount=to_money(fs.amount),
                applicable_months=await get_applicable_months(db, fs.fee_category_id),
                fee_structure_id=fs.id,
                fee_category_id=fs.fee_category_id,
            )
        )

    route_price = await find_route_price(db, student.route_id, student.class_id)
    if route_price is not None:
        entries.append(
            FeeHeadCatalogEntry(
                head_id=TRANSPORT_HEAD_ID,
                kind=FeeHeadKind.TRANSPORT,
                name="Transport Fee",
                amount=to_money(route_price.amount),
                applicable_months=await get_applicable_months(db, route_price.fee_category_id),
                route_price_id=route_price.id,
                fee_category_id=route_price.fee_category_id,
            )
        )
    return entries


async def validate_catalog(
    db: AsyncSession,
    class_id: UUID,
    category_head_id: UUID,
    route_id: UUID,
) -> dict:
    """Pre-flight check: every active school fee category priced for the class/category, and a route price."""
    missing: List[str] = []
    categories = (
        await db.execute(
            select(FeeCategory)
            .where(
                FeeCategory.is_active.is_(True),
                FeeCategory.category_type == FeeCategoryType.SCHOOL.value,
            )
            .order_by(FeeCategory.name)
        )
    ).scalars().all()
    priced = {fs.fee_category_id for fs in await list_active_fee_structures(db, class_id, category_head_id)}
    for category in categories:
        if category.id not in priced:
            missing.append(f"School fee: {category.name} (fee structure missing)")
    if await find_route_price(db, route_id, class_id) is None:
        missing.append("Transport fee: no route price for this route")
    return {"valid": not missing, "missing": missing}
