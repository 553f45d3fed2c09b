import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rto_validator.database.models import RequirementOutcome
from rto_validator.repositories.base_repository import BaseRepository
from rto_validator.schemas.validation import RequirementCategory

_KEY_COLUMNS = ["session_id", "category", "requirement_number", "namespace"]

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class OutcomeRepository(BaseRepository[RequirementOutcome]):
    """Repository for per-requirement validation outcomes."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, RequirementOutcome)

    async def upsert(self, values: Dict[str, Any]) -> RequirementOutcome:
        """Insert an outcome or overwrite the one stored under the same key.

        ``values`` must contain every key column.
        """
        dialect = self.session.get_bind().dialect.name
        insert_fn = _INSERTS.get(dialect)
        if insert_fn is None:
            raise NotImplementedError(f"Outcome upsert is not supported on {dialect}")

        now = datetime.now(timezone.utc)
        row = dict(values)
        row.setdefault("id", uuid.uuid4())
        row["updated_at"] = now

        stmt = insert_fn(RequirementOutcome).values(**row)
        update_columns = {
            name: stmt.excluded[name]
            for name in row
            if name not in _KEY_COLUMNS and name != "id"
        }
        stmt = stmt.on_conflict_do_update(index_elements=_KEY_COLUMNS, set_=update_columns)

        try:
            await self.session.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Error upserting outcome: {str(e)}", exc_info=True)
            raise

        outcome = await self.get_by_key(
            row["session_id"],
            RequirementCategory(row["category"]),
            row["requirement_number"],
            row["namespace"],
        )
        return outcome

    async def get_by_key(
        self,
        session_id: uuid.UUID,
        category: RequirementCategory,
        requirement_number: str,
        namespace: str,
    ) -> Optional[RequirementOutcome]:
        query = (
            select(RequirementOutcome)
            .where(
                RequirementOutcome.session_id == session_id,
                RequirementOutcome.category == category.value,
                RequirementOutcome.requirement_number == requirement_number,
                RequirementOutcome.namespace == namespace,
            )
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_by_session(self, session_id: uuid.UUID) -> List[RequirementOutcome]:
        query = (
            select(RequirementOutcome)
            .where(RequirementOutcome.session_id == session_id)
            .order_by(RequirementOutcome.category, RequirementOutcome.requirement_number)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def existing_keys(self, session_id: uuid.UUID) -> Set[Tuple[str, str]]:
        """(category, requirement_number) pairs that already have an outcome."""
        query = select(
            RequirementOutcome.category, RequirementOutcome.requirement_number
        ).where(RequirementOutcome.session_id == session_id)
        result = await self.session.execute(query)
        return {(category, number) for category, number in result.all()}

    async def count_completed(self, session_id: uuid.UUID) -> int:
        """Number of distinct requirements with a stored outcome."""
        distinct_keys = (
            select(RequirementOutcome.category, RequirementOutcome.requirement_number)
            .where(RequirementOutcome.session_id == session_id)
            .distinct()
            .subquery()
        )
        result = await self.session.execute(select(func.count()).select_from(distinct_keys))
        return result.scalar_one()

    async def count_errors(self, session_id: uuid.UUID) -> int:
        query = (
            select(func.count())
            .select_from(RequirementOutcome)
            .where(
                RequirementOutcome.session_id == session_id,
                RequirementOutcome.validation_error.is_(True),
            )
        )
        result = await self.session.execute(query)
        return result.scalar_one()

    async def set_smart_questions(
        self, outcome: RequirementOutcome, questions: List[Dict[str, Any]]
    ) -> RequirementOutcome:
        """Replace an outcome's smart questions, leaving its verdict alone."""
        outcome.smart_questions = questions
        outcome.updated_at = datetime.now(timezone.utc)
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating smart questions: {str(e)}", exc_info=True)
            raise
        return outcome
