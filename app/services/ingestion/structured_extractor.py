"""LLM-based structured extraction of repair invoices.

The fast model runs first. When it reports a ``parse_confidence`` below the
configured threshold the same exchange is replayed against the strong
model, whose result is kept unconditionally.
"""

import json
import time
from typing import List, Optional

from google.genai import types
from pydantic import ValidationError

from app.core.config import LLMSettings
from app.core.exceptions import InvalidJsonError, SchemaViolationError
from app.core.llm_client import GeminiClient
from app.prompts.invoice_prompts import (
    EXEMPLAR_ACKNOWLEDGEMENT,
    EXEMPLAR_INTRO,
    EXTRACTION_REQUEST,
    build_system_prompt,
)
from app.schemas.ingestion import ExtractionOutcome
from app.schemas.invoice_extraction import InvoiceExtraction, sanitize_payload
from app.utils.json_parser import parse_json_safely
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

PDF_MIME_TYPE = "application/pdf"
RAW_TEXT_LIMIT = 8000


def parse_extraction(text: str) -> InvoiceExtraction:
    """Parse, sanitize and validate a raw model response.

    Raises:
        InvalidJsonError: If no JSON value can be recovered from ``text``
        SchemaViolationError: If the JSON does not fit the extraction schema
    """
    try:
        payload = parse_json_safely(text)
    except json.JSONDecodeError as e:
        raise InvalidJsonError(f"Model returned invalid JSON: {e}", original_error=e)

    payload = sanitize_payload(payload)
    if not isinstance(payload, dict):
        raise SchemaViolationError(
            f"Expected a JSON object, got {type(payload).__name__}"
        )

    try:
        return InvoiceExtraction.model_validate(payload)
    except ValidationError as e:
        raise SchemaViolationError(
            f"Extraction failed schema validation ({e.error_count()} errors): {e}",
            original_error=e,
        )


def apply_output_defaults(result: InvoiceExtraction, raw_text_limit: int = RAW_TEXT_LIMIT) -> InvoiceExtraction:
    """Fill positional sort orders and cap the raw text."""
    for service_index, service in enumerate(result.services):
        if service.sort_order is None:
            service.sort_order = service_index
        for item_index, item in enumerate(service.line_items):
            if item.sort_order is None:
                item.sort_order = item_index

    if result.raw_text and len(result.raw_text) > raw_text_limit:
        result.raw_text = result.raw_text[:raw_text_limit]

    return result


class StructuredExtractor:
    """Turns PDF bytes into a validated ``InvoiceExtraction``."""

    def __init__(
        self,
        llm: GeminiClient,
        settings: LLMSettings,
        system_prompt: Optional[str] = None,
    ):
        self.llm = llm
        self.settings = settings
        self.system_prompt = system_prompt or build_system_prompt()

    def build_contents(self, document: bytes, exemplar: Optional[bytes] = None) -> List[types.Content]:
        """Multi-turn exchange: optional exemplar + acknowledgement, then the target document."""
        contents: List[types.Content] = []

        if exemplar:
            contents.append(
                types.Content(
                    role="user",
                    parts=[
                        types.Part.from_bytes(data=exemplar, mime_type=PDF_MIME_TYPE),
                        types.Part.from_text(text=EXEMPLAR_INTRO),
                    ],
                )
            )
            contents.append(
                types.Content(role="model", parts=[types.Part.from_text(text=EXEMPLAR_ACKNOWLEDGEMENT)])
            )

        contents.append(
            types.Content(
                role="user",
                parts=[
                    types.Part.from_bytes(data=document, mime_type=PDF_MIME_TYPE),
                    types.Part.from_text(text=EXTRACTION_REQUEST),
                ],
            )
        )
        return contents

    async def extract(self, document: bytes, exemplar: Optional[bytes] = None) -> ExtractionOutcome:
        """Extract an invoice, escalating to the strong model on low confidence."""
        started = time.monotonic()
        contents = self.build_contents(document, exemplar)
        threshold = self.settings.confidence_threshold

        model_used = self.settings.fast_model
        result = await self._invoke(contents, model_used)
        escalated = False

        if result.parse_confidence < threshold:
            LOGGER.info(
                "Low confidence extraction, escalating to strong model",
                extra={
                    "confidence": result.parse_confidence,
                    "threshold": threshold,
                    "fast_model": model_used,
                    "strong_model": self.settings.strong_model,
                },
            )
            model_used = self.settings.strong_model
            result = await self._invoke(contents, model_used)
            escalated = True

            if result.parse_confidence < threshold:
                LOGGER.warning(
                    "Extraction still below confidence threshold after escalation; needs human review",
                    extra={"confidence": result.parse_confidence, "model": model_used},
                )

        elapsed_ms = int((time.monotonic() - started) * 1000)
        LOGGER.info(
            "Invoice extracted",
            extra={
                "model": model_used,
                "elapsed_ms": elapsed_ms,
                "confidence": result.parse_confidence,
                "services": len(result.services),
            },
        )

        return ExtractionOutcome(
            result=apply_output_defaults(result),
            elapsed_ms=elapsed_ms,
            model_used=model_used,
            escalated=escalated,
        )

    async def _invoke(self, contents: List[types.Content], model: str) -> InvoiceExtraction:
        text = await self.llm.generate_content(
            contents,
            system_instruction=self.system_prompt,
            generation_config={"response_mime_type": "application/json", "temperature": 0.0},
            model=model,
            timeout=self.settings.timeout_seconds,
        )
        return parse_extraction(text)
