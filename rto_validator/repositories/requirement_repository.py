import re
from typing import Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rto_validator.database.models import Requirement
from rto_validator.repositories.base_repository import BaseRepository
from rto_validator.schemas.validation import RequirementCategory

_CATEGORY_ORDER = {category.value: index for index, category in enumerate(RequirementCategory)}


def _number_sort_key(number: str) -> tuple:
    # "1.10" sorts after "1.9"
    return tuple(int(part) if part.isdigit() else part for part in re.split(r"[.\s]+", number) if part)


class RequirementRepository(BaseRepository[Requirement]):
    """Read access to the requirement catalog."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Requirement)

    async def list_for_unit(
        self,
        unit_code: str,
        categories: Optional[Iterable[RequirementCategory]] = None,
    ) -> List[Requirement]:
        """All requirements of a unit in catalog order."""
        query = select(Requirement).where(Requirement.unit_code == unit_code)
        if categories is not None:
            query = query.where(Requirement.category.in_([c.value for c in categories]))

        result = await self.session.execute(query)
        rows = list(result.scalars().all())
        rows.sort(
            key=lambda r: (
                _CATEGORY_ORDER.get(r.category, len(_CATEGORY_ORDER)),
                r.display_order,
                _number_sort_key(r.number),
            )
        )
        return rows

    async def count_for_unit(self, unit_code: str) -> int:
        query = select(func.count()).select_from(Requirement).where(Requirement.unit_code == unit_code)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def get_requirement(
        self,
        unit_code: str,
        category: RequirementCategory,
        number: str,
    ) -> Optional[Requirement]:
        query = select(Requirement).where(
            Requirement.unit_code == unit_code,
            Requirement.category == category.value,
            Requirement.number == number,
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def add_requirement(
        self,
        unit_code: str,
        category: RequirementCategory,
        number: str,
        text: str,
        element_text: Optional[str] = None,
        display_order: int = 0,
    ) -> Requirement:
        """Insert a catalog row. Used when loading a unit's requirements."""
        return await self.create(
            unit_code=unit_code,
            category=category.value,
            number=number,
            text=text,
            element_text=element_text,
            display_order=display_order,
        )
