# services/heather_main/lib/document_analyzer.py
"""
Health document analysis - forwards a patient's PDF and description to Gemini
"""
import logging
from datetime import datetime, timezone
from typing import Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from heather_main.lib.errors import AnalysisError, ConfigurationError
from heather_main.lib.utils import decode_base64_payload, exponential_backoff_retry

logger = logging.getLogger(__name__)

GEMINI_MODEL = "gemini-1.5-flash"
NO_ANALYSIS = "No analysis available"

# Worth another attempt; everything else fails immediately
TRANSIENT_ERRORS = (
    google_exceptions.ResourceExhausted,
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.InternalServerError,
)

ANALYSIS_PROMPT = """Please analyze this medical document and provide insights based on the patient's description: "{description}".

Please provide:
1. Summary of key findings from the document
2. Potential health concerns or abnormalities
3. Recommendations for follow-up care
4. Important notes or warnings

Remember to be professional and note that this analysis is for informational purposes only and should not replace professional medical advice."""


class DocumentAnalysis(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    analysis: str
    file_name: str
    timestamp: str


class HealthDocumentAnalyzer:
    def __init__(self, api_key: Optional[str] = None, model=None, max_retries: int = 4, base_delay: float = 1.0):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.gemini_client = model

        if self.gemini_client is None and api_key:
            genai.configure(api_key=api_key)
            self.gemini_client = genai.GenerativeModel(GEMINI_MODEL)
            logger.info(f"Gemini client initialized ({GEMINI_MODEL})")

    @property
    def available(self) -> bool:
        return self.gemini_client is not None

    async def analyze(self, description: str, pdf_data: str, file_name: str) -> DocumentAnalysis:
        if not description or not description.strip():
            raise ValueError("Please provide a description of your health issue")
        pdf_bytes = decode_base64_payload(pdf_data)

        if not self.gemini_client:
            raise ConfigurationError("GEMINI_API_KEY not configured")

        prompt = ANALYSIS_PROMPT.format(description=description.strip())

        async def _call():
            return await self.gemini_client.generate_content_async(
                [prompt, {"mime_type": "application/pdf", "data": pdf_bytes}],
                generation_config=genai.GenerationConfig(
                    temperature=0.3,
                    max_output_tokens=1024,
                ),
            )

        try:
            response = await exponential_backoff_retry(
                _call,
                max_retries=self.max_retries,
                base_delay=self.base_delay,
                retry_on=TRANSIENT_ERRORS,
            )
        except Exception as e:
            logger.error(f"Gemini API error for {file_name}: {e}")
            raise AnalysisError(f"Gemini API error: {e}") from e

        return DocumentAnalysis(
            analysis=response_text(response),
            file_name=file_name,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )


def response_text(response, fallback: str = NO_ANALYSIS) -> str:
    # .text raises when the candidate was blocked or empty
    try:
        text = response.text
    except (ValueError, AttributeError, IndexError):
        return fallback
    return text.strip() if text and text.strip() else fallback
