"""
Receipt Extraction using Gemini Vision

DESIGN DECISION: The vision model is a black box that returns a
CANDIDATE parse. This service only:
1. Rejects payloads the model can't take (non-images, oversized files)
2. Sends the image with a fixed extraction prompt
3. Reads the textual answer into a CandidateParse

It does NOT validate amounts or apply defaults. That is the job of
ReceiptParseValidator, which every candidate must pass through.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

import google.generativeai as genai
import structlog
from google.api_core import exceptions as google_exceptions
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from splitbook.config import get_settings
from splitbook.validation.parser import CandidateParse, InvalidParse, parse_candidate_text


logger = structlog.get_logger(__name__)


EXTRACTION_PROMPT = """Analyze this receipt image and extract the following information in JSON format:
{
  "title": "Store/Restaurant name or description",
  "totalAmount": "Total amount as number",
  "currency": "Currency code (USD, EUR, etc.)",
  "date": "Date in YYYY-MM-DD format",
  "items": [
    {
      "name": "Item name",
      "quantity": "Quantity as number",
      "price": "Price per item as number",
      "category": "Item category (optional)"
    }
  ]
}

Guidelines:
- Extract all individual items with their names, quantities, and prices
- If quantity is not specified, leave it out
- Give the price per single unit when a line shows a total for several units
- Leave out the date if none is visible
- Leave out the currency if none is visible
- For restaurant receipts, categorize items as 'food', 'drink', 'dessert', etc.
- For grocery receipts, use categories like 'produce', 'dairy', 'meat', etc.
- Return only valid JSON, no additional text"""


class ExtractionError(Exception):
    """Base exception for receipt extraction errors."""
    pass


class UnsupportedImageError(ExtractionError):
    """The upload is not an image we can send to the model."""
    pass


class ExtractionFailedError(ExtractionError):
    """The model call failed or returned nothing usable."""
    pass


class _TransientModelError(Exception):
    """Model call failed in a way worth retrying."""
    pass


_TRANSIENT_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.ResourceExhausted,
    google_exceptions.DeadlineExceeded,
    google_exceptions.InternalServerError,
)


class ReceiptExtractorInterface(ABC):
    """Anything that turns a receipt image into a candidate parse."""

    @abstractmethod
    async def extract_receipt(self, image_bytes: bytes, mime_type: str) -> CandidateParse:
        """
        Extract a candidate parse from an image.

        Raises:
            ExtractionError: If the image is rejected or extraction fails
        """
        pass


class GeminiReceiptExtractor(ReceiptExtractorInterface):
    """
    Receipt extraction with a Gemini vision model.

    IMPORTANT BOUNDARIES:
    1. This service ONLY extracts - the result is untrusted
    2. Oversized and non-image uploads are rejected before any API call
    """

    def __init__(self, model: Optional[Any] = None):
        """
        Args:
            model: A configured GenerativeModel. Built from GEMINI_*
                   settings when omitted.
        """
        self._app_settings = get_settings().app
        self._model = model or self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        settings = get_settings().gemini
        genai.configure(api_key=settings.api_key)
        return genai.GenerativeModel(
            model_name=settings.model_name,
            generation_config={
                "temperature": settings.temperature,
                "max_output_tokens": settings.max_tokens,
            }
        )

    def check_upload(self, image_bytes: bytes, mime_type: str) -> None:
        """
        Reject uploads the model can't take.

        Raises:
            UnsupportedImageError
        """
        mime = (mime_type or "").lower()
        if not mime.startswith("image/"):
            raise UnsupportedImageError(f"File must be an image, got {mime_type!r}")
        if mime not in self._app_settings.supported_image_types_list:
            raise UnsupportedImageError(
                f"Unsupported image type: {mime_type}. "
                f"Allowed: {', '.join(self._app_settings.supported_image_types_list)}"
            )
        if not image_bytes:
            raise UnsupportedImageError("Image is empty")
        if len(image_bytes) > self._app_settings.max_upload_size_bytes:
            raise UnsupportedImageError(
                f"Image too large. Max {self._app_settings.max_upload_size_mb}MB allowed for AI processing."
            )

    @retry(
        retry=retry_if_exception_type(_TransientModelError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _generate(self, image_bytes: bytes, mime_type: str) -> str:
        try:
            response = await self._model.generate_content_async(
                [EXTRACTION_PROMPT, {"mime_type": mime_type, "data": image_bytes}]
            )
        except _TRANSIENT_ERRORS as e:
            raise _TransientModelError(str(e)) from e
        except Exception as e:
            # Permanent failure (e.g. InvalidArgument, PermissionDenied): no retry
            raise ExtractionFailedError(f"Failed to analyze receipt with AI: {e}") from e

        try:
            text = response.text
        except ValueError as e:
            # Blocked or empty candidates raise on .text
            raise ExtractionFailedError(f"No response from model: {e}") from e
        if not text or not text.strip():
            raise ExtractionFailedError("No response from model")
        return text

    async def extract_receipt(self, image_bytes: bytes, mime_type: str) -> CandidateParse:
        self.check_upload(image_bytes, mime_type)

        try:
            text = await self._generate(image_bytes, mime_type.lower())
        except _TransientModelError as e:
            logger.error("receipt_extraction_failed", error=str(e))
            raise ExtractionFailedError(f"Failed to analyze receipt with AI: {e}") from e

        try:
            candidate = parse_candidate_text(text)
        except InvalidParse as e:
            logger.warning("receipt_extraction_unreadable", error=str(e))
            raise ExtractionFailedError(
                "Failed to parse receipt data from AI response"
            ) from e

        logger.info(
            "receipt_extracted",
            item_count=len(candidate.items) if isinstance(candidate.items, list) else 0,
        )
        return candidate
