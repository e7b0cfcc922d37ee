"""Test configuration and fixtures."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_results.db")

from collections.abc import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.config import settings
from app.core.database import Base, get_db
from app.core.permissions import Role
from app.core.security import get_password_hash
from app.models import School, SchoolClass, ScoreMetric, Student, Subject, User
from main import app

# File-backed SQLite so that separate sessions share one database
TEST_DATABASE_URL = settings.DATABASE_URL

# Create test engine with NullPool to avoid connection issues
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=NullPool,
)
test_session_maker = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

PASSWORD = "password123"
LOGO = "data:image/png;base64,iVBORw0KGgo="


async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
    """Override database dependency for tests."""
    async with test_session_maker() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def setup_database() -> AsyncGenerator[None, None]:
    """Create test database tables before each test that needs it."""
    app.dependency_overrides[get_db] = override_get_db

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    app.dependency_overrides.pop(get_db, None)


@pytest_asyncio.fixture
async def db(setup_database: None) -> AsyncGenerator[AsyncSession, None]:
    """Get database session for tests."""
    async with test_session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def client(setup_database: None) -> AsyncGenerator[AsyncClient, None]:
    """Get async HTTP client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


async def _add(db: AsyncSession, obj):
    db.add(obj)
    await db.commit()
    await db.refresh(obj)
    return obj


@pytest_asyncio.fixture
async def school(db: AsyncSession) -> School:
    """A school with a logo, so approvals are allowed."""
    return await _add(
        db, School(name="Test Academy", code="TA", logo=LOGO, motto="Knowledge is light")
    )


@pytest_asyncio.fixture
async def other_school(db: AsyncSession) -> School:
    return await _add(db, School(name="Other School", code="OS", logo=LOGO))


@pytest_asyncio.fixture
async def school_class(db: AsyncSession, school: School) -> SchoolClass:
    return await _add(db, SchoolClass(school_id=school.id, name="JSS 1", arm="A"))


@pytest_asyncio.fixture
async def mathematics(db: AsyncSession, school: School) -> Subject:
    return await _add(db, Subject(school_id=school.id, name="Mathematics", code="MTH"))


@pytest_asyncio.fixture
async def english(db: AsyncSession, school: School) -> Subject:
    return await _add(db, Subject(school_id=school.id, name="English", code="ENG"))


@pytest_asyncio.fixture
async def metrics(db: AsyncSession, school: School) -> list[ScoreMetric]:
    """CA1, CA2 and Exam components."""
    items = [
        ScoreMetric(school_id=school.id, name="CA1", max_score=20, order=1),
        ScoreMetric(school_id=school.id, name="CA2", max_score=20, order=2),
        ScoreMetric(school_id=school.id, name="Exam", max_score=60, order=3),
    ]
    db.add_all(items)
    await db.commit()
    return items


@pytest_asyncio.fixture
async def students(db: AsyncSession, school: School, school_class: SchoolClass) -> list[Student]:
    """Three students in JSS 1A."""
    items = [
        Student(
            school_id=school.id,
            school_class_id=school_class.id,
            admission_number=f"TA/2024/00{i}",
            first_name=first_name,
            last_name="Okafor",
        )
        for i, first_name in enumerate(["Ada", "Bola", "Chidi"], start=1)
    ]
    db.add_all(items)
    await db.commit()
    for item in items:
        await db.refresh(item)
    return items


def _user(phone: str, role: Role, school_id, first_name: str) -> User:
    return User(
        phone_number=phone,
        password_hash=get_password_hash(PASSWORD),
        first_name=first_name,
        last_name="User",
        role=role,
        school_id=school_id,
    )


@pytest_asyncio.fixture
async def teacher(db: AsyncSession, school: School) -> User:
    return await _add(db, _user("+2348010000001", Role.TEACHER, school.id, "Teacher"))


@pytest_asyncio.fixture
async def other_teacher(db: AsyncSession, school: School) -> User:
    return await _add(db, _user("+2348010000002", Role.TEACHER, school.id, "Second"))


@pytest_asyncio.fixture
async def school_admin(db: AsyncSession, school: School) -> User:
    return await _add(db, _user("+2348010000003", Role.SCHOOL_ADMIN, school.id, "Admin"))


@pytest_asyncio.fixture
async def other_admin(db: AsyncSession, school: School) -> User:
    """A second admin of the same school."""
    return await _add(db, _user("+2348010000004", Role.SCHOOL_ADMIN, school.id, "Deputy"))


@pytest_asyncio.fixture
async def foreign_admin(db: AsyncSession, other_school: School) -> User:
    return await _add(db, _user("+2348010000005", Role.SCHOOL_ADMIN, other_school.id, "Foreign"))


@pytest_asyncio.fixture
async def super_admin(db: AsyncSession) -> User:
    return await _add(db, _user("+2348010000009", Role.SUPER_ADMIN, None, "Super"))


async def login(client: AsyncClient, user: User) -> str:
    response = await client.post(
        "/api/v1/auth/login",
        json={"phone_number": user.phone_number, "password": PASSWORD},
    )
    return response.json()["access_token"]


@pytest_asyncio.fixture
async def teacher_token(client: AsyncClient, teacher: User) -> str:
    return await login(client, teacher)


@pytest_asyncio.fixture
async def admin_token(client: AsyncClient, school_admin: User) -> str:
    return await login(client, school_admin)


@pytest_asyncio.fixture
async def super_admin_token(client: AsyncClient, super_admin: User) -> str:
    return await login(client, super_admin)


def auth_header(token: str) -> dict[str, str]:
    """Create authorization header."""
    return {"Authorization": f"Bearer {token}"}
