from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.fee_ledger.catalog import (
    find_route_price,
    get_applicable_months,
    get_student,
    resolve_catalog,
    validate_catalog,
)
from app.api.v1.fee_ledger.domain import ALL_MONTHS, TRANSPORT_HEAD_ID
from app.core.enums import FeeCategoryType, FeeHeadKind
from app.core.exceptions import CatalogMissing, ServiceError
from app.core.models import FeeCategory, RoutePrice, Student

from .conftest import add_student

D = Decimal


@pytest.mark.asyncio
async def test_resolve_catalog_orders_fee_heads_then_transport(
    db_session: AsyncSession, catalog: SimpleNamespace
) -> None:
    student = await get_student(db_session, catalog.student_id)

    entries = await resolve_catalog(db_session, student)

    assert [e.head_id for e in entries] == [catalog.tuition_head, catalog.exam_head, TRANSPORT_HEAD_ID]
    tuition, exam, transport = entries
    assert (tuition.name, tuition.amount, tuition.applicable_months) == ("Tuition", D("200.00"), ALL_MONTHS)
    assert exam.applicable_months == frozenset({6, 9})
    assert transport.kind == FeeHeadKind.TRANSPORT
    assert transport.amount == D("100.00")
    assert transport.fee_structure_id is None


@pytest.mark.asyncio
async def test_route_price_prefers_exact_class(db_session: AsyncSession, catalog: SimpleNamespace) -> None:
    price = await find_route_price(db_session, catalog.route_id, catalog.class_id)
    assert price.amount == D("100.00")


@pytest.mark.asyncio
async def test_route_price_falls_back_to_route_general(db_session: AsyncSession, catalog: SimpleNamespace) -> None:
    price = await find_route_price(db_session, catalog.route_id, uuid4())
    assert price.class_id is None
    assert price.amount == D("80.00")


@pytest.mark.asyncio
async def test_route_price_falls_back_to_any_price(db_session: AsyncSession) -> None:
    route_id, class_id = uuid4(), uuid4()
    db_session.add(RoutePrice(route_id=route_id, class_id=class_id, amount=D("90.00")))
    await db_session.commit()

    price = await find_route_price(db_session, route_id, uuid4())
    assert price.amount == D("90.00")

    assert await find_route_price(db_session, uuid4(), class_id) is None


@pytest.mark.asyncio
async def test_inactive_route_prices_are_ignored(db_session: AsyncSession) -> None:
    route_id, class_id = uuid4(), uuid4()
    db_session.add_all(
        [
            RoutePrice(route_id=route_id, class_id=class_id, amount=D("90.00"), is_active=False),
            RoutePrice(route_id=route_id, class_id=None, amount=D("70.00")),
        ]
    )
    await db_session.commit()

    price = await find_route_price(db_session, route_id, class_id)
    assert price.amount == D("70.00")


@pytest.mark.asyncio
async def test_applicable_months_default_to_all(db_session: AsyncSession, catalog: SimpleNamespace) -> None:
    assert await get_applicable_months(db_session, None) == ALL_MONTHS
    assert await get_applicable_months(db_session, catalog.tuition_category_id) == ALL_MONTHS
    assert await get_applicable_months(db_session, catalog.exam_category_id) == frozenset({6, 9})


@pytest.mark.asyncio
async def test_student_without_route_price_has_no_transport_head(
    db_session: AsyncSession, catalog: SimpleNamespace
) -> None:
    student_id = await add_student(db_session, catalog, name="Walker", route_id=uuid4())
    student = await get_student(db_session, student_id)

    entries = await resolve_catalog(db_session, student)

    assert TRANSPORT_HEAD_ID not in [e.head_id for e in entries]


@pytest.mark.asyncio
async def test_missing_fee_structures_raise_catalog_missing(
    db_session: AsyncSession, catalog: SimpleNamespace
) -> None:
    student_id = await add_student(db_session, catalog, name="New Class", class_id=uuid4())
    student = await get_student(db_session, student_id)

    with pytest.raises(CatalogMissing) as exc:
        await resolve_catalog(db_session, student)
    assert exc.value.status_code == 409


@pytest.mark.asyncio
async def test_unknown_student_is_not_found(db_session: AsyncSession) -> None:
    with pytest.raises(ServiceError) as exc:
        await get_student(db_session, uuid4())
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_validate_catalog_reports_missing_pieces(db_session: AsyncSession, catalog: SimpleNamespace) -> None:
    report = await validate_catalog(db_session, catalog.class_id, catalog.category_head_id, catalog.route_id)
    assert report == {"valid": True, "missing": []}

    db_session.add(FeeCategory(name="Sports", category_type=FeeCategoryType.SCHOOL.value))
    await db_session.commit()

    report = await validate_catalog(db_session, catalog.class_id, catalog.category_head_id, uuid4())
    assert report["valid"] is False
    assert report["missing"] == [
        "School fee: Sports (fee structure missing)",
        "Transport fee: no route price for this route",
    ]


@pytest.mark.asyncio
async def test_student_without_route_is_rejected(db_session: AsyncSession, catalog: SimpleNamespace) -> None:
    student = Student(full_name="No Route", class_id=catalog.class_id, category_head_id=catalog.category_head_id)
    db_session.add(student)
    await db_session.commit()

    with pytest.raises(ServiceError) as exc:
        await resolve_catalog(db_session, student)
    assert exc.value.status_code == 400
    assert exc.value.message == "Student has no route assigned"
