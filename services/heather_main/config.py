# File: services/heather_main/config.py
"""
Environment configuration for the HEATHER service.
Values come from the process environment, optionally seeded from a .env file.
"""
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from heather_main.lib.errors import ConfigurationError


class Settings(BaseModel):
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    site_url: str = "http://localhost:3000"
    profile_fetch_timeout: float = 8.0
    allowed_origins: List[str] = []
    log_level: str = "INFO"

    def require_supabase(self) -> None:
        """Raise ConfigurationError naming every missing backend credential."""
        missing = [
            name for name, value in (
                ("SUPABASE_URL", self.supabase_url),
                ("SUPABASE_KEY", self.supabase_key),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Missing backend configuration: {', '.join(missing)}. "
                "Set them in the environment or in a .env file."
            )


def load_settings() -> Settings:
    load_dotenv()

    # Same "guest list" as the other services; localhost is always allowed
    origins = [
        os.getenv("FRONTEND_URL_VERCEL"),
        os.getenv("FRONTEND_URL_EC2"),
        "http://localhost:3000",
    ]

    return Settings(
        supabase_url=os.getenv("SUPABASE_URL") or None,
        supabase_key=os.getenv("SUPABASE_KEY") or None,
        gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or None,
        site_url=os.getenv("SITE_URL", "http://localhost:3000"),
        profile_fetch_timeout=float(os.getenv("PROFILE_FETCH_TIMEOUT", "8")),
        allowed_origins=[origin for origin in origins if origin],
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
