"""
Test fixtures shared across the test suite.

Architecture:
- Tests run against SQLite (aiosqlite) unless TEST_DATABASE_URL points
  somewhere else. The models only use portable column types, so the same
  schema works on both. DATABASE_URL must be set before the app is
  imported because the engine is created at import time.
- pyproject sets asyncio_default_fixture_loop_scope = session so all
  tests share ONE event loop.
- The schema is dropped and recreated for every test that touches the
  database, because the PDF worker picks "the oldest queued record" and
  leftovers from another test would change what it picks.
- Seed data is committed via the app's own AsyncSessionLocal, and the
  HTTP client uses the real FastAPI app with its own sessions.
"""

import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone

os.environ["DATABASE_URL"] = os.environ.get(
    "TEST_DATABASE_URL", "sqlite+aiosqlite:///./test_reports.db"
)
os.environ["LOCAL_STORAGE_PATH"] = tempfile.mkdtemp(prefix="report-pdfs-")
os.environ["STORAGE_BACKEND"] = "local"
os.environ["SERVICE_ROLE_TOKEN"] = "test-token/with+chars"
os.environ["APP_BASE_URL"] = "http://viewer.test"
os.environ["DEBUG"] = "false"

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from assessment_reports.database import AsyncSessionLocal, Base, engine  # noqa: E402
from assessment_reports.main import app  # noqa: E402
from assessment_reports.models import (  # noqa: E402
    Assessment,
    Assignment,
    AssignmentDimensionScore,
    Benchmark,
    Client,
    Dimension,
    Group,
    GroupMember,
    Industry,
    Profile,
)

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


async def add_rows(*rows):
    """Commit rows one at a time, in the order given.

    We set raw UUID foreign keys rather than ORM relationships, so
    SQLAlchemy can't work out the insert order on its own.
    """
    async with AsyncSessionLocal() as session:
        for row in rows:
            session.add(row)
            await session.commit()
    return rows


async def add_scores(assignment, scores: dict):
    """Store precomputed dimension scores: {dimension: avg_score}."""
    await add_rows(
        *[
            AssignmentDimensionScore(
                assignment_id=assignment.id,
                dimension_id=dimension.id,
                avg_score=score,
                answer_count=1,
            )
            for dimension, score in scores.items()
        ]
    )


def make_profile(name: str, client=None) -> Profile:
    return Profile(
        id=uuid.uuid4(),
        name=name,
        email=f"{name.lower().replace(' ', '.')}_{uuid.uuid4().hex[:6]}@example.com",
        client_id=client.id if client else None,
    )


def make_assignment(user, assessment, target=None, group=None, completed=True, offset=0) -> Assignment:
    created = BASE_TIME + timedelta(minutes=offset)
    return Assignment(
        id=uuid.uuid4(),
        user_id=user.id,
        assessment_id=assessment.id,
        target_id=target.id if target else None,
        group_id=group.id if group else None,
        completed=completed,
        completed_at=created if completed else None,
        created_at=created,
        updated_at=created,
    )


@pytest_asyncio.fixture
async def setup_db():
    """Fresh schema for each test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest_asyncio.fixture
async def client(setup_db):
    """Async HTTP test client against the real app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# --- Seed data fixtures ---

@pytest_asyncio.fixture
async def test_industry(setup_db):
    industry = Industry(id=uuid.uuid4(), name="Healthcare")
    await add_rows(industry)
    return industry


@pytest_asyncio.fixture
async def test_client_org(test_industry):
    client = Client(id=uuid.uuid4(), name="Acme Health", industry_id=test_industry.id)
    await add_rows(client)
    return client


@pytest_asyncio.fixture
async def test_target(test_client_org):
    """The person the 360 is about."""
    target = make_profile("Tara Target", test_client_org)
    await add_rows(target)
    return target


@pytest_asyncio.fixture
async def test_assessment(setup_db):
    assessment = Assessment(id=uuid.uuid4(), title="Leadership 360", is_360=True)
    await add_rows(assessment)
    return assessment


@pytest_asyncio.fixture
async def test_dimensions(test_assessment):
    """Two root dimensions. Returned by name."""
    leadership = Dimension(
        id=uuid.uuid4(),
        assessment_id=test_assessment.id,
        name="Leadership",
        code="LEAD",
        description="Sets direction and builds commitment.",
    )
    communication = Dimension(
        id=uuid.uuid4(),
        assessment_id=test_assessment.id,
        name="Communication",
        code="COMM",
    )
    await add_rows(leadership, communication)
    return {"Leadership": leadership, "Communication": communication}


@pytest_asyncio.fixture
async def test_raters(test_client_org):
    """One rater per role, keyed by role."""
    raters = {
        "peer": make_profile("Pat Peer", test_client_org),
        "manager": make_profile("Max Manager", test_client_org),
        "subordinate": make_profile("Sam Subordinate", test_client_org),
    }
    await add_rows(*raters.values())
    return raters


@pytest_asyncio.fixture
async def test_group(test_target, test_raters):
    """Rating group around the target, containing every rater."""
    group = Group(id=uuid.uuid4(), name="Tara's raters", target_id=test_target.id)
    members = [
        GroupMember(id=uuid.uuid4(), group_id=group.id, profile_id=rater.id, role=role)
        for role, rater in test_raters.items()
    ]
    await add_rows(group, *members)
    return group


@pytest_asyncio.fixture
async def test_benchmarks(test_dimensions, test_industry):
    """Communication benchmark 4.0; Leadership benchmark exactly 0."""
    rows = [
        Benchmark(
            id=uuid.uuid4(),
            dimension_id=test_dimensions["Communication"].id,
            industry_id=test_industry.id,
            value=4.0,
        ),
        Benchmark(
            id=uuid.uuid4(),
            dimension_id=test_dimensions["Leadership"].id,
            industry_id=test_industry.id,
            value=0.0,
        ),
    ]
    await add_rows(*rows)
    return rows


@pytest_asyncio.fixture
async def peer_assignment(test_raters, test_assessment, test_target, test_group):
    """Completed peer assignment about the target."""
    assignment = make_assignment(
        test_raters["peer"], test_assessment, target=test_target, group=test_group
    )
    await add_rows(assignment)
    return assignment
