import asyncio
from typing import Any, Dict, List, Optional, Union

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from app.core.exceptions import (
    APIClientError,
    ExtractionTimeoutError,
    PipelineError,
    RateLimitedError,
)
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

RATE_LIMIT_STATUS = "RESOURCE_EXHAUSTED"
RATE_LIMIT_MARKERS = ("429", RATE_LIMIT_STATUS, "rate limit")


def is_rate_limit_error(error: Exception) -> bool:
    """Detect provider rate limiting.

    Prefers the structured code/status carried by the SDK error and only falls
    back to message inspection for errors that carry neither.
    """
    if isinstance(error, genai_errors.APIError):
        if error.code == 429 or error.status == RATE_LIMIT_STATUS:
            return True
        if error.code is not None or error.status:
            return False

    status_code = getattr(error, "status_code", None) or getattr(error, "code", None)
    if isinstance(status_code, int):
        return status_code == 429

    message = str(error)
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def classify_provider_error(error: Exception, model: str) -> Exception:
    """Map an SDK exception onto the pipeline error taxonomy."""
    if isinstance(error, PipelineError):
        return error
    if is_rate_limit_error(error):
        return RateLimitedError(
            f"Rate limited by {model}: {error}",
            original_error=error,
            status_code=429,
        )
    return APIClientError(f"Gemini call to {model} failed: {error}", original_error=error)


class GeminiClient:
    """Wrapper for Google Gemini API client.

    Calls are time-bounded but never retried here; retry policy belongs to
    the batch orchestrator.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        timeout: float = 120.0,
        client: Optional[genai.Client] = None,
    ):
        """Initialize Gemini client.

        Args:
            api_key: Gemini API key
            model: Default model name
            timeout: Per-call timeout in seconds
            client: Pre-built SDK client (tests)
        """
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

        if client is not None:
            self.client = client
            return

        try:
            self.client = genai.Client(api_key=self.api_key)
            LOGGER.info(f"Initialized Gemini client with model {self.model}")
        except Exception as e:
            LOGGER.error(f"Failed to initialize Gemini client: {e}")
            raise APIClientError(f"Failed to initialize Gemini client: {e}", original_error=e)

    async def generate_content(
        self,
        contents: Union[str, List[Any]],
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Generate content using a Gemini model.

        Args:
            contents: Input content (string, parts or multi-turn Content list)
            system_instruction: Optional system instruction
            generation_config: Optional generation config (temperature, etc.)
            model: Model override for this call
            timeout: Timeout override in seconds

        Returns:
            Generated text response

        Raises:
            ExtractionTimeoutError: If the call exceeds its timeout
            RateLimitedError: If the provider rate limited the call
            APIClientError: If generation fails for any other reason
        """
        model_name = model or self.model
        call_timeout = timeout or self.timeout

        config = types.GenerateContentConfig(
            temperature=0.0,  # Default to deterministic
        )

        if generation_config:
            if "temperature" in generation_config:
                config.temperature = generation_config["temperature"]
            if "max_output_tokens" in generation_config:
                config.max_output_tokens = generation_config["max_output_tokens"]
            if "response_mime_type" in generation_config:
                config.response_mime_type = generation_config["response_mime_type"]

        if system_instruction:
            config.system_instruction = system_instruction

        try:
            response = await asyncio.wait_for(
                self.client.aio.models.generate_content(
                    model=model_name,
                    contents=contents,
                    config=config,
                ),
                timeout=call_timeout,
            )
        except asyncio.TimeoutError as e:
            LOGGER.warning(
                "Gemini call timed out",
                extra={"model": model_name, "timeout_seconds": call_timeout},
            )
            raise ExtractionTimeoutError(
                f"Gemini call to {model_name} timed out after {call_timeout}s", original_error=e
            )
        except Exception as e:
            LOGGER.warning(f"Gemini API error from {model_name}: {e}")
            raise classify_provider_error(e, model_name) from e

        if not response.text:
            LOGGER.warning("Empty response from Gemini", extra={"model": model_name})
            return ""

        return response.text

    async def embed_content(
        self,
        text: str,
        model: str,
        output_dimensionality: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> List[float]:
        """Embed a single text and return its vector."""
        config = types.EmbedContentConfig(
            task_type="RETRIEVAL_DOCUMENT",
            output_dimensionality=output_dimensionality,
        )

        try:
            response = await asyncio.wait_for(
                self.client.aio.models.embed_content(
                    model=model,
                    contents=text,
                    config=config,
                ),
                timeout=timeout or self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise ExtractionTimeoutError(f"Embedding call to {model} timed out", original_error=e)
        except Exception as e:
            raise classify_provider_error(e, model) from e

        if not response.embeddings or response.embeddings[0].values is None:
            raise APIClientError(f"Embedding model {model} returned no vector")

        return list(response.embeddings[0].values)
