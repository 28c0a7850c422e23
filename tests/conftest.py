import os

# Settings are read on import; point them at an in-memory database before the app loads
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "false"

from collections.abc import AsyncGenerator
from datetime import date
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.core.auth.jwt import create_access_token
from src.core.auth.models import User, UserRole
from src.core.clock import get_today
from src.core.database.base import Base
from src.core.database import get_db
from src.core.schools.models import School
from src.main import app
from src.modules.fees.models import FeeStructure, StudentFeeAssignment
from src.modules.fees.schemas import FeeComponentInput, FeeStructureCreate
from src.modules.fees.service import FeeStructureService
from src.modules.inventory.models import InventoryItem
from src.modules.invoices.models import Invoice
from src.modules.invoices.schemas import InvoiceCreate, InvoiceItemCreate
from src.modules.invoices.service import InvoiceService
from src.modules.students.models import Student

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Business date used by every test
TODAY = date(2026, 3, 2)


@pytest.fixture
async def test_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Get test database session."""
    session_factory = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Get test HTTP client with overridden database and clock dependencies."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_today] = lambda: TODAY

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


# --- Tenancy and actors ---


@pytest.fixture
async def school(db_session: AsyncSession) -> School:
    school = School(name="Test School", subdomain="test-school", currency_code="KES")
    db_session.add(school)
    await db_session.commit()
    return school


@pytest.fixture
async def other_school(db_session: AsyncSession) -> School:
    school = School(name="Other School", subdomain="other-school", currency_code="KES")
    db_session.add(school)
    await db_session.commit()
    return school


async def _create_user(
    db_session: AsyncSession, school: School, email: str, role: UserRole
) -> User:
    user = User(
        school_id=school.id,
        email=email,
        full_name=email.split("@")[0].title(),
        role=role.value,
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def admin_user(db_session: AsyncSession, school: School) -> User:
    return await _create_user(db_session, school, "admin@test-school.com", UserRole.SCHOOL_ADMIN)


@pytest.fixture
async def secretary_user(db_session: AsyncSession, school: School) -> User:
    return await _create_user(db_session, school, "secretary@test-school.com", UserRole.SECRETARY)


def token_headers(user: User) -> dict[str, str]:
    token = create_access_token(user.id, user.school_id, user.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin_user: User) -> dict[str, str]:
    return token_headers(admin_user)


@pytest.fixture
def secretary_headers(secretary_user: User) -> dict[str, str]:
    return token_headers(secretary_user)


# --- Factories ---


@pytest.fixture
def make_student(db_session: AsyncSession, school: School):
    """Factory: student of the test school."""
    counter = {"n": 0}

    async def _make(
        first_name: str = "Amina",
        last_name: str = "Otieno",
        class_id: int | None = 1,
        school_level_id: int | None = None,
        school_id: int | None = None,
    ) -> Student:
        counter["n"] += 1
        student = Student(
            school_id=school_id or school.id,
            student_number=f"STU-{counter['n']:04d}",
            first_name=first_name,
            last_name=last_name,
            class_id=class_id,
            school_level_id=school_level_id,
        )
        db_session.add(student)
        await db_session.commit()
        return student

    return _make


@pytest.fixture
def make_inventory_item(db_session: AsyncSession, school: School):
    """Factory: stocked item with a given quantity on hand."""
    counter = {"n": 0}

    async def _make(
        quantity_in_stock: int = 10,
        name: str = "School Sweater",
        unit_price: Decimal | None = Decimal("300.00"),
    ) -> InventoryItem:
        counter["n"] += 1
        item = InventoryItem(
            school_id=school.id,
            sku=f"SKU-{counter['n']:03d}",
            name=name,
            unit_price=unit_price,
            quantity_in_stock=quantity_in_stock,
            is_active=True,
        )
        db_session.add(item)
        await db_session.commit()
        return item

    return _make


@pytest.fixture
def make_fee_structure(db_session: AsyncSession, school: School, admin_user: User):
    """Factory: fee structure created through the service (validated)."""

    async def _make(
        name: str = "Term 1 Tuition",
        amount: Decimal | None = None,
        components: list[tuple[str, str, int | None]] | None = None,
        academic_year_id: int = 2026,
        class_id: int | None = 1,
        school_level_id: int | None = None,
    ) -> FeeStructure:
        data = FeeStructureCreate(
            name=name,
            amount=amount,
            academic_year_id=academic_year_id,
            class_id=class_id,
            school_level_id=school_level_id,
            components=[
                FeeComponentInput(name=c_name, amount=Decimal(c_amount), inventory_item_id=item_id)
                for c_name, c_amount, item_id in (components or [])
            ],
        )
        return await FeeStructureService(db_session).create_fee_structure(
            school.id, data, admin_user.id
        )

    return _make


@pytest.fixture
def assign(db_session: AsyncSession, school: School, admin_user: User):
    """Factory: assign a student directly (bypasses placement copying)."""

    async def _assign(
        structure: FeeStructure,
        student: Student,
        is_active: bool = True,
        class_id: int | None = None,
    ) -> StudentFeeAssignment:
        assignment = StudentFeeAssignment(
            school_id=school.id,
            student_id=student.id,
            fee_structure_id=structure.id,
            academic_year_id=structure.academic_year_id,
            class_id=class_id if class_id is not None else student.class_id,
            school_level_id=student.school_level_id,
            is_active=is_active,
            assigned_by_id=admin_user.id,
        )
        db_session.add(assignment)
        await db_session.commit()
        return assignment

    return _assign


@pytest.fixture
def make_invoice(db_session: AsyncSession, school: School, admin_user: User):
    """Factory: ad-hoc invoice with (description, quantity, unit_price, inventory_item_id) items."""

    async def _make(
        student: Student,
        items: list[tuple[str, int, str, int | None]],
        issue_date: date = TODAY,
        due_date: date | None = None,
    ) -> Invoice:
        data = InvoiceCreate(
            student_id=student.id,
            issue_date=issue_date,
            due_date=due_date,
            items=[
                InvoiceItemCreate(
                    description=description,
                    quantity=quantity,
                    unit_price=Decimal(unit_price),
                    inventory_item_id=item_id,
                )
                for description, quantity, unit_price, item_id in items
            ],
        )
        return await InvoiceService(db_session).create_invoice(
            school.id, data, admin_user.id, TODAY
        )

    return _make
