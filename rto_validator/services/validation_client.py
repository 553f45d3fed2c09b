"""AI validation client: one requirement in, one raw model response out."""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional

from rto_validator.core.exceptions import APITimeoutError, is_retryable_error
from rto_validator.core.llm_client import AIProvider
from rto_validator.core.retry import RetryPolicy, retry_async
from rto_validator.schemas.validation import (
    ModelResponse,
    RequirementInput,
    RequirementOutcomeData,
    SmartQuestion,
    ValidationContext,
)
from rto_validator.services.prompts import (
    VALIDATION_SYSTEM_INSTRUCTION,
    build_smart_question_prompt,
    build_validation_prompt,
)
from rto_validator.services.response_parser import normalize_keys
from rto_validator.utils.json_parser import parse_json_safely
from rto_validator.utils.logging import get_logger

LOGGER = get_logger(__name__)


class ValidationClient:
    """Calls the AI provider for a requirement, retrying transient failures."""

    def __init__(
        self,
        provider: AIProvider,
        retry_policy: Optional[RetryPolicy] = None,
        timeout_seconds: float = 60.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the client.

        Args:
            provider: Model provider implementing ``generate``
            retry_policy: Backoff for transient errors (3 attempts, 1s base, x2 by default)
            timeout_seconds: Upper bound for a single provider call
            sleep: Sleep used between retries (injectable for tests)
        """
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep

    async def _call(
        self,
        prompt: str,
        context: ValidationContext,
        temperature: float,
        system_instruction: Optional[str] = None,
    ) -> ModelResponse:
        try:
            return await asyncio.wait_for(
                self.provider.generate(
                    prompt,
                    document_refs=list(context.document_refs),
                    metadata_filter=context.metadata_filter,
                    temperature=temperature,
                    system_instruction=system_instruction,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise APITimeoutError(
                f"Model call exceeded {self.timeout_seconds}s", original_error=e
            ) from e

    async def validate(
        self, context: ValidationContext, requirement: RequirementInput
    ) -> ModelResponse:
        """Validate one requirement.

        Returns:
            ModelResponse with ``attempts`` set to the number of calls made

        Raises:
            RetryExhaustedError: All attempts failed with retryable errors
            APIClientError: A non-retryable provider error
        """
        prompt = build_validation_prompt(context, requirement)
        label = f"validate {requirement.category.value} {requirement.number}"

        result = await retry_async(
            lambda: self._call(
                prompt, context, context.validation_temperature, VALIDATION_SYSTEM_INSTRUCTION
            ),
            self.retry_policy,
            is_retryable=is_retryable_error,
            sleep=self._sleep,
            operation_name=label,
        )
        response = result.value
        return response.model_copy(update={"attempts": result.attempts})

    async def generate_smart_questions(
        self,
        context: ValidationContext,
        requirement: RequirementInput,
        outcome: RequirementOutcomeData,
        user_context: Optional[str] = None,
    ) -> List[SmartQuestion]:
        """Generate a gap-closing question for a non-met requirement.

        Uses the higher question temperature. ``user_context`` carries
        reviewer feedback when a question is being regenerated. Returns an
        empty list when the model gives nothing usable.
        """
        prompt = build_smart_question_prompt(context, requirement, outcome, user_context)
        result = await retry_async(
            lambda: self._call(prompt, context, context.question_temperature),
            self.retry_policy,
            is_retryable=is_retryable_error,
            sleep=self._sleep,
            operation_name=f"smart question {requirement.category.value} {requirement.number}",
        )

        parsed = parse_json_safely(result.value.text)
        if isinstance(parsed, list):
            parsed = parsed[0] if parsed else None
        if not isinstance(parsed, dict):
            return []

        parsed = normalize_keys(parsed)
        question = str(parsed.get("question") or parsed.get("smart_question") or "").strip()
        if not question:
            return []
        answer = str(parsed.get("benchmark_answer") or parsed.get("model_answer") or "").strip()
        return [SmartQuestion(question=question, benchmark_answer=answer)]
