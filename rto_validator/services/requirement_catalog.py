"""Read-only access to a unit's requirements."""

from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from rto_validator.database.models import Requirement
from rto_validator.repositories.requirement_repository import RequirementRepository
from rto_validator.schemas.validation import RequirementCategory, RequirementInput


def to_requirement_input(requirement: Requirement) -> RequirementInput:
    return RequirementInput(
        category=RequirementCategory(requirement.category),
        number=requirement.number,
        text=requirement.text,
        element_text=requirement.element_text,
    )


class RequirementCatalog:
    def __init__(self, session: AsyncSession):
        self.repo = RequirementRepository(session)

    async def requirements_for_unit(self, unit_code: str) -> List[RequirementInput]:
        """Every requirement of the unit, across all categories, in catalog order."""
        rows = await self.repo.list_for_unit(unit_code)
        return [to_requirement_input(row) for row in rows]

    async def get_requirement(
        self, unit_code: str, category: RequirementCategory, number: str
    ) -> Optional[RequirementInput]:
        row = await self.repo.get_requirement(unit_code, category, number)
        return to_requirement_input(row) if row else None

    async def count_for_unit(self, unit_code: str) -> int:
        return await self.repo.count_for_unit(unit_code)
