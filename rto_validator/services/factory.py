"""Builds pipeline components from application settings."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rto_validator.core.config import Settings, settings as default_settings
from rto_validator.core.database import async_session_maker
from rto_validator.core.exceptions import ConfigurationError
from rto_validator.core.indexer_client import GeminiFileSearchIndexer, IndexerClient
from rto_validator.core.llm_client import GeminiClient
from rto_validator.core.retry import RetryPolicy
from rto_validator.services.orchestrator import ValidationOrchestrator
from rto_validator.services.validation_client import ValidationClient
from rto_validator.utils.logging import get_logger

LOGGER = get_logger(__name__)


def build_retry_policy(config: Settings = default_settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=config.validation.retry_max_attempts,
        base_delay=config.validation.retry_base_delay,
        multiplier=2.0,
        max_delay=config.validation.retry_max_delay,
    )


def build_poll_policy(config: Settings = default_settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=config.validation.poll_max_attempts,
        base_delay=config.validation.poll_interval_seconds,
        multiplier=1.0,
        max_delay=None,
    )


def build_validation_client(config: Settings = default_settings) -> ValidationClient:
    if not config.llm.gemini_api_key:
        raise ConfigurationError("GEMINI_API_KEY is not set")
    provider = GeminiClient(
        api_key=config.llm.gemini_api_key,
        model=config.llm.gemini_model,
        max_output_tokens=config.llm.max_output_tokens,
    )
    return ValidationClient(
        provider,
        retry_policy=build_retry_policy(config),
        timeout_seconds=config.llm.request_timeout_seconds,
    )


def build_orchestrator(
    session_factory: async_sessionmaker[AsyncSession] = async_session_maker,
    config: Settings = default_settings,
    client: Optional[ValidationClient] = None,
) -> ValidationOrchestrator:
    document_refs = [config.llm.file_search_store] if config.llm.file_search_store else []
    return ValidationOrchestrator(
        session_factory,
        client or build_validation_client(config),
        document_refs=document_refs,
        max_concurrency=config.validation.max_concurrency,
        generate_smart_questions=config.validation.generate_smart_questions,
        validation_temperature=config.llm.validation_temperature,
        question_temperature=config.llm.question_temperature,
    )


def build_indexer(config: Settings = default_settings) -> Optional[IndexerClient]:
    """File Search indexer, or None when no store is configured."""
    if not config.llm.file_search_store or not config.llm.gemini_api_key:
        LOGGER.debug("File Search store not configured; documents will not be submitted for indexing")
        return None
    return GeminiFileSearchIndexer(config.llm.gemini_api_key, config.llm.file_search_store)
