"""Pytest configuration and shared fixtures."""

import os
import re
from typing import Dict, List, Optional, Union

# Set required environment variables for testing BEFORE importing the app
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./.pytest-rto-validator.db")
os.environ.setdefault("OUTBOX_RUN_IN_API", "false")

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rto_validator.core.database import Base, build_engine
from rto_validator.database import models  # noqa: F401
from rto_validator.main import app
from rto_validator.repositories.requirement_repository import RequirementRepository
from rto_validator.schemas.validation import (
    IndexingOperationStatus,
    IndexingStatus,
    ModelResponse,
    RequirementCategory,
)

_NUMBER_PATTERN = re.compile(r"^Requirement number: (.+)$", re.MULTILINE)

Behaviour = Union[str, Exception]


class FakeProvider:
    """AI provider double keyed by requirement number.

    Each number maps to a list of behaviours consumed one per call: a string
    is returned as the model text, an exception is raised. The last behaviour
    repeats once the list is exhausted.
    """

    def __init__(
        self,
        behaviours: Optional[Dict[str, List[Behaviour]]] = None,
        default: Behaviour = '{"status": "met", "reasoning": "Covered by Q1"}',
        question: str = '{"question": "Describe the hazard controls.", "benchmark_answer": "Elimination first."}',
        grounding_metadata: Optional[dict] = None,
    ):
        self.behaviours = {k: list(v) for k, v in (behaviours or {}).items()}
        self.default = default
        self.question = question
        self.grounding_metadata = grounding_metadata
        self.calls: List[dict] = []

    def calls_for(self, number: str) -> int:
        return sum(1 for c in self.calls if c["number"] == number)

    async def generate(self, prompt, document_refs, metadata_filter=None, temperature=0.2, system_instruction=None):
        match = _NUMBER_PATTERN.search(prompt)
        number = match.group(1).strip() if match else None
        self.calls.append({
            "number": number,
            "prompt": prompt,
            "document_refs": document_refs,
            "metadata_filter": metadata_filter,
            "temperature": temperature,
        })
        if number is None:
            return ModelResponse(text=self.question)

        queue = self.behaviours.get(number)
        behaviour = (queue.pop(0) if len(queue) > 1 else queue[0]) if queue else self.default
        if isinstance(behaviour, Exception):
            raise behaviour
        return ModelResponse(text=behaviour, grounding_metadata=self.grounding_metadata)


class FakeIndexer:
    def __init__(self, statuses: Optional[List[IndexingOperationStatus]] = None):
        self.statuses = list(statuses or [IndexingOperationStatus(status=IndexingStatus.PROCESSING)])
        self.submitted: List[tuple] = []
        self.status_calls = 0

    async def submit_for_indexing(self, storage_ref, namespace, display_name=None):
        self.submitted.append((storage_ref, namespace))
        return f"operations/op-{len(self.submitted)}"

    async def get_operation_status(self, operation_id):
        self.status_calls += 1
        return self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]


@pytest.fixture
def make_provider():
    return FakeProvider


@pytest.fixture
def make_indexer():
    return FakeIndexer


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Engine on a throwaway SQLite file with the full schema."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'rto_validator.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


async def _seed_requirements(
    session_factory,
    unit_code: str = "BSBWHS211",
    count: int = 5,
    category: RequirementCategory = RequirementCategory.KNOWLEDGE_EVIDENCE,
) -> None:
    async with session_factory() as session:
        repo = RequirementRepository(session)
        for number in range(1, count + 1):
            await repo.add_requirement(
                unit_code,
                category,
                str(number),
                f"Knowledge of workplace hazard {number}",
                display_order=number,
            )
        await session.commit()


@pytest.fixture
def seed_requirements(session_factory):
    """Returns a coroutine seeding ``count`` knowledge-evidence rows for a unit."""
    async def seed(unit_code: str = "BSBWHS211", count: int = 5, **kwargs):
        await _seed_requirements(session_factory, unit_code, count, **kwargs)
    return seed


@pytest.fixture
def test_client() -> TestClient:
    """Create FastAPI test client.

    Not used as a context manager, so the lifespan (database init, outbox
    dispatcher) does not run.
    """
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}
