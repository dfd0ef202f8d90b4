import os
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace
from typing import AsyncGenerator, Iterable, Optional
from uuid import UUID, uuid4

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.api.v1.fee_ledger.domain import TRANSPORT_HEAD_ID, fee_head_id
from app.api.v1.fee_ledger.materializer import add_months
from app.core.enums import FeeCategoryType
from app.core.models import AcademicYear, FeeCategory, FeeStructure, RoutePrice, Student
from app.db.session import Base, get_db
from app.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed calendar for service tests: academic year Apr 2025 - Mar 2026, "today" mid October,
# so the billing window is Apr..Sep 2025 (6 months).
YEAR_START = date(2025, 4, 1)
YEAR_END = date(2026, 3, 31)
TODAY = date(2025, 10, 15)


@pytest_asyncio.fixture()
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory SQLite database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override FastAPI dependency."""
    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def add_student(
    db: AsyncSession,
    catalog: SimpleNamespace,
    name: str = "Asha Verma",
    opening_balance: Decimal = Decimal("0"),
    route_id=None,
    class_id=None,
) -> UUID:
    student = Student(
        full_name=name,
        class_id=class_id or catalog.class_id,
        category_head_id=catalog.category_head_id,
        route_id=route_id if route_id is not None else catalog.route_id,
        opening_balance=opening_balance,
    )
    db.add(student)
    await db.commit()
    return student.id


async def seed_catalog(
    db: AsyncSession,
    year_start: date = YEAR_START,
    year_end: date = YEAR_END,
    exam_months: Optional[Iterable[int]] = (6, 9),
    opening_balance: Decimal = Decimal("0"),
) -> SimpleNamespace:
    """
    Class/category with Tuition (200 every month) and Exam (150 in the exam months),
    plus a route priced 100 for the class, 80 route-general and 90 for another class.
    Returns plain ids so tests never touch expired ORM instances.
    """
    class_id, other_class_id, category_head_id, route_id = uuid4(), uuid4(), uuid4(), uuid4()

    ay = AcademicYear(name=f"{year_start.year}-{year_end.year}", start_date=year_start, end_date=year_end)
    tuition_cat = FeeCategory(name="Tuition", category_type=FeeCategoryType.SCHOOL.value)
    exam_cat = FeeCategory(
        name="Exam",
        category_type=FeeCategoryType.SCHOOL.value,
        applicable_months=list(exam_months) if exam_months is not None else None,
    )
    transport_cat = FeeCategory(name="Transport", category_type=FeeCategoryType.TRANSPORT.value)
    db.add_all([ay, tuition_cat, exam_cat, transport_cat])
    await db.flush()

    tuition = FeeStructure(
        name="Tuition",
        class_id=class_id,
        category_head_id=category_head_id,
        fee_category_id=tuition_cat.id,
        amount=Decimal("200.00"),
        display_order=1,
    )
    exam = FeeStructure(
        name="Exam",
        class_id=class_id,
        category_head_id=category_head_id,
        fee_category_id=exam_cat.id,
        amount=Decimal("150.00"),
        display_order=2,
    )
    db.add_all(
        [
            tuition,
            exam,
            RoutePrice(route_id=route_id, class_id=other_class_id, fee_category_id=transport_cat.id, amount=Decimal("90.00")),
            RoutePrice(route_id=route_id, class_id=None, fee_category_id=transport_cat.id, amount=Decimal("80.00")),
            RoutePrice(route_id=route_id, class_id=class_id, fee_category_id=transport_cat.id, amount=Decimal("100.00")),
        ]
    )
    await db.flush()

    catalog = SimpleNamespace(
        academic_year_id=ay.id,
        class_id=class_id,
        other_class_id=other_class_id,
        category_head_id=category_head_id,
        route_id=route_id,
        tuition_category_id=tuition_cat.id,
        exam_category_id=exam_cat.id,
        transport_category_id=transport_cat.id,
        tuition_head=fee_head_id(tuition.id),
        exam_head=fee_head_id(exam.id),
        transport_head=TRANSPORT_HEAD_ID,
    )
    await db.commit()
    catalog.student_id = await add_student(db, catalog, opening_balance=opening_balance)
    return catalog


def rolling_year(today: date) -> tuple:
    """Academic year that started six months before the current month."""
    start = add_months(today.replace(day=1), -6, day=1)
    end = add_months(start, 12, day=1) - timedelta(days=1)
    return start, end


@pytest_asyncio.fixture()
async def catalog(db_session: AsyncSession) -> SimpleNamespace:
    return await seed_catalog(db_session)
