# services/heather_main/lib/health_chat.py
"""
General health chat - single-turn questions answered by Gemini
"""
import logging
from datetime import datetime, timezone
from typing import Optional

import google.generativeai as genai
from pydantic import BaseModel

from heather_main.lib.document_analyzer import TRANSIENT_ERRORS, response_text
from heather_main.lib.errors import AnalysisError, ConfigurationError
from heather_main.lib.utils import exponential_backoff_retry

logger = logging.getLogger(__name__)

CHAT_MODEL = "gemini-pro"
FALLBACK_REPLY = "Sorry, I couldn't understand that."


class ChatReply(BaseModel):
    reply: str
    timestamp: str


class HealthChatService:
    def __init__(self, api_key: Optional[str] = None, model=None, max_retries: int = 4, base_delay: float = 1.0):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.gemini_client = model

        if self.gemini_client is None and api_key:
            genai.configure(api_key=api_key)
            self.gemini_client = genai.GenerativeModel(CHAT_MODEL)
            logger.info(f"Gemini chat client initialized ({CHAT_MODEL})")

    @property
    def available(self) -> bool:
        return self.gemini_client is not None

    async def send_message(self, message: str) -> ChatReply:
        if not message or not message.strip():
            raise ValueError("Please enter a message")
        if not self.gemini_client:
            raise ConfigurationError("GEMINI_API_KEY not configured")

        async def _call():
            return await self.gemini_client.generate_content_async(
                message.strip(),
                generation_config=genai.GenerationConfig(
                    temperature=0.7,
                    top_k=40,
                    top_p=0.95,
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
            logger.error(f"Gemini chat error: {e}")
            raise AnalysisError(f"There was an error contacting Gemini API: {e}") from e

        return ChatReply(
            reply=response_text(response, fallback=FALLBACK_REPLY),
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
