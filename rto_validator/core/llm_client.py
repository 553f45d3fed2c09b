"""Gemini client used for requirement validation.

Retrieval is scoped with Gemini File Search: the session's documents live in
one or more File Search stores and are filtered down to the session by the
``namespace`` custom metadata set at upload time.
"""

from typing import Any, Dict, List, Optional, Protocol

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from rto_validator.core.exceptions import APIClientError, APINetworkError, APITimeoutError
from rto_validator.schemas.validation import ModelResponse
from rto_validator.utils.logging import get_logger

LOGGER = get_logger(__name__)


class AIProvider(Protocol):
    """Narrow contract for the model: prompt plus document scope in, text out."""

    async def generate(
        self,
        prompt: str,
        document_refs: List[str],
        metadata_filter: Optional[str] = None,
        temperature: float = 0.2,
        system_instruction: Optional[str] = None,
    ) -> ModelResponse:
        ...


def translate_provider_error(error: Exception) -> APIClientError:
    """Map SDK and transport errors onto the application's error taxonomy."""
    if isinstance(error, APIClientError):
        return error
    if isinstance(error, genai_errors.APIError):
        return APIClientError(
            f"Gemini API error {error.code}: {error.message}",
            status_code=error.code,
            original_error=error,
        )
    if isinstance(error, httpx.TimeoutException):
        return APITimeoutError(f"Gemini request timed out: {error}", original_error=error)
    if isinstance(error, (httpx.NetworkError, ConnectionError)):
        return APINetworkError(f"Gemini network error: {error}", original_error=error)
    return APIClientError(f"Gemini generation failed: {error}", original_error=error)


class GeminiClient:
    """Wrapper for the Google Gemini API client with File Search grounding."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        max_output_tokens: int = 8192,
        client: Optional[genai.Client] = None,
    ):
        """Initialize Gemini client.

        Args:
            api_key: Gemini API key
            model: Model name to use
            max_output_tokens: Output token cap per call
            client: Pre-built SDK client (tests)
        """
        self.api_key = api_key
        self.model = model
        self.max_output_tokens = max_output_tokens

        if client is not None:
            self.client = client
        else:
            try:
                self.client = genai.Client(api_key=self.api_key)
                LOGGER.info(f"Initialized Gemini client with model {self.model}")
            except Exception as e:
                LOGGER.error(f"Failed to initialize Gemini client: {e}")
                raise APIClientError(f"Failed to initialize Gemini client: {e}", original_error=e)

    def _build_config(
        self,
        document_refs: List[str],
        metadata_filter: Optional[str],
        temperature: float,
        system_instruction: Optional[str],
    ) -> types.GenerateContentConfig:
        config = types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=self.max_output_tokens,
        )
        if document_refs:
            config.tools = [
                types.Tool(
                    file_search=types.FileSearch(
                        file_search_store_names=list(document_refs),
                        metadata_filter=metadata_filter,
                    )
                )
            ]
        if system_instruction:
            config.system_instruction = system_instruction
        return config

    async def generate(
        self,
        prompt: str,
        document_refs: List[str],
        metadata_filter: Optional[str] = None,
        temperature: float = 0.2,
        system_instruction: Optional[str] = None,
    ) -> ModelResponse:
        """Generate a response grounded in the given File Search stores.

        Raises:
            APIClientError: On any provider failure. ``retryable`` tells the
                caller whether another attempt makes sense.
        """
        config = self._build_config(document_refs, metadata_filter, temperature, system_instruction)

        LOGGER.debug(
            "Calling Gemini",
            extra={"model": self.model, "stores": len(document_refs), "filter": metadata_filter},
        )
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=config,
            )
        except Exception as e:
            raise translate_provider_error(e) from e

        text = response.text or ""
        if not text:
            LOGGER.warning("Empty response from Gemini")

        return ModelResponse(text=text, grounding_metadata=extract_grounding_metadata(response))


def extract_grounding_metadata(response: Any) -> Optional[Dict[str, Any]]:
    """Pull the first candidate's grounding metadata out as a plain dict."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None
    metadata = getattr(candidates[0], "grounding_metadata", None)
    if metadata is None:
        return None
    if hasattr(metadata, "model_dump"):
        return metadata.model_dump(exclude_none=True)
    if isinstance(metadata, dict):
        return metadata
    return None
