"""FastAPI dependency providers."""

from typing import Annotated, Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rto_validator.core.database import get_async_session
from rto_validator.core.exceptions import ConfigurationError
from rto_validator.core.indexer_client import IndexerClient
from rto_validator.services.factory import build_indexer, build_orchestrator
from rto_validator.services.orchestrator import ValidationOrchestrator
from rto_validator.services.session_service import SessionService
from rto_validator.utils.logging import get_logger

LOGGER = get_logger(__name__)


def get_indexer() -> Optional[IndexerClient]:
    return build_indexer()


def get_orchestrator() -> Optional[ValidationOrchestrator]:
    """Orchestrator for synchronous re-validation, or None without an API key."""
    try:
        return build_orchestrator()
    except ConfigurationError as e:
        LOGGER.debug(f"Orchestrator unavailable: {e}")
        return None


async def get_session_service(
    db_session: Annotated[AsyncSession, Depends(get_async_session)],
    indexer: Annotated[Optional[IndexerClient], Depends(get_indexer)],
    orchestrator: Annotated[Optional[ValidationOrchestrator], Depends(get_orchestrator)],
) -> SessionService:
    """Get session service instance.

    Args:
        db_session: Database session from dependency injection
        indexer: Document indexer, if configured
        orchestrator: Validation orchestrator, if an AI provider is configured

    Returns:
        SessionService: Facade over the validation pipeline
    """
    return SessionService(db_session, indexer=indexer, orchestrator=orchestrator)
