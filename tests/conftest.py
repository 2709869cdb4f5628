import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOG_FORMAT", "text")
# Batch tests run students one at a time against SQLite
os.environ.setdefault("VOUCHER_GENERATION_CONCURRENCY", "1")

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.auth.models import User
from app.auth.security import create_access_token
from app.core.models import AcademicYear, Institution, SchoolClass
from app.db.session import Base, get_db, get_session_factory
from app.main import app
from tests.factories import SeedData, add_fee_head, add_student

# SQLite has no schemas; render every table unqualified
SCHEMA_MAP = {"core": None, "auth": None, "school": None}


@pytest.fixture()
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database file per test with all tables created."""
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
    ).execution_options(schema_translate_map=SCHEMA_MAP)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override the FastAPI session dependencies."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with session_factory() as session:
        yield session
    app.dependency_overrides.clear()


@pytest.fixture()
async def seed(db_session: AsyncSession) -> SeedData:
    """One institution, an admin, one enrolled student and a Rs. 5000 monthly tuition head."""
    institution = Institution(organization_code="SCH-A3K9", name="Acme School", status="ACTIVE")
    db_session.add(institution)
    await db_session.flush()

    admin = User(
        institution_id=institution.id,
        full_name="Office Admin",
        email="admin@acme.test",
        role="ADMIN",
        status="ACTIVE",
    )
    ay = AcademicYear(
        institution_id=institution.id,
        name="2025-2026",
        start_date=date(2025, 4, 1),
        end_date=date(2026, 3, 31),
        is_current=True,
        status="ACTIVE",
    )
    school_class = SchoolClass(institution_id=institution.id, name="Grade 5", display_order=5, is_active=True)
    db_session.add_all([admin, ay, school_class])
    await db_session.commit()

    data = SeedData(
        institution_id=institution.id,
        admin_id=admin.id,
        academic_year_id=ay.id,
        class_id=school_class.id,
    )
    data.student_id = await add_student(db_session, data, "Ali Raza", "ali@acme.test")
    data.tuition_head_id = await add_fee_head(db_session, data, "Tuition Fee", 1, Decimal("5000.00"))
    return data


@pytest.fixture()
def auth_headers(seed: SeedData) -> dict:
    token = create_access_token(
        subject={
            "user_id": str(seed.admin_id),
            "institution_id": str(seed.institution_id),
            "role": "ADMIN",
        }
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
