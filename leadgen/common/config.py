"""
Environment-driven settings for the lead generation pipeline.

Values come from the process environment, with a local .env file read once
at import time. Nothing secret has a default.
"""

import os
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Pipeline settings as class attributes, read once at import."""

    # ===== MongoDB =====
    MONGODB_URI: str = os.getenv("MONGODB_URI", "")
    MONGO_DB_NAME: str = os.getenv("MONGO_DB_NAME", "leadgen")

    # ===== LLM =====
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-4o-mini")
    LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.1"))
    MESSAGE_TEMPERATURE: float = float(os.getenv("MESSAGE_TEMPERATURE", "0.7"))

    # ===== Profile/Company Provider (Unipile) =====
    UNIPILE_API_KEY: str = os.getenv("UNIPILE_API_KEY", "")
    UNIPILE_BASE_URL: str = os.getenv(
        "UNIPILE_BASE_URL",
        "https://api9.unipile.com:13946/api/v1"
    )
    HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

    # ===== Rate Limiting =====
    # Delay is drawn uniformly from [min, max] before every provider call
    RATE_LIMIT_MIN_DELAY_MS: int = int(os.getenv("RATE_LIMIT_MIN_DELAY_MS", "2000"))
    RATE_LIMIT_MAX_DELAY_MS: int = int(os.getenv("RATE_LIMIT_MAX_DELAY_MS", "8000"))

    # ===== Retry Policy =====
    # Items reaching the cap are flagged for an operator, never dropped
    MAX_RETRY_ATTEMPTS: int = int(os.getenv("MAX_RETRY_ATTEMPTS", "3"))
    RETRY_DELAY_SECONDS: int = int(os.getenv("RETRY_DELAY_SECONDS", "300"))
    STUCK_ITEM_THRESHOLD_SECONDS: int = int(os.getenv("STUCK_ITEM_THRESHOLD_SECONDS", "900"))

    # ===== Workflow Automation (n8n) =====
    N8N_WEBHOOK_URL: str = os.getenv("N8N_WEBHOOK_URL", "")
    COMPANY_ENRICHMENT_WEBHOOK_URL: str = os.getenv("COMPANY_ENRICHMENT_WEBHOOK_URL", "")

    # ===== Logging =====
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "text")

    @classmethod
    def validate(cls) -> None:
        """Raise ValueError naming every unset credential or an inverted delay window."""
        missing = [
            name
            for name in ("MONGODB_URI", "OPENAI_API_KEY", "UNIPILE_API_KEY")
            if not getattr(cls, name)
        ]
        if missing:
            raise ValueError(f"Required settings not set: {', '.join(missing)} (see .env)")

        if cls.RATE_LIMIT_MIN_DELAY_MS > cls.RATE_LIMIT_MAX_DELAY_MS:
            raise ValueError(
                "RATE_LIMIT_MIN_DELAY_MS must not exceed RATE_LIMIT_MAX_DELAY_MS."
            )

    @classmethod
    def get_llm_api_key(cls) -> str:
        return cls.OPENAI_API_KEY

    @classmethod
    def get_enrichment_webhook_url(cls) -> Optional[str]:
        """Webhook used for async company enrichment (None for direct scraping)."""
        return cls.COMPANY_ENRICHMENT_WEBHOOK_URL or None

    @classmethod
    def summary(cls) -> str:
        """Human-readable settings overview with credentials reduced to set/unset."""
        def flag(value: str, on: str = "✓ Configured", off: str = "✗ Missing") -> str:
            return on if value else off

        return f"""
Configuration Summary:
  MongoDB: {flag(cls.MONGODB_URI)} (db={cls.MONGO_DB_NAME})
  LLM: {cls.LLM_MODEL} {flag(cls.get_llm_api_key(), '✓', '✗ Missing')}
  Unipile: {flag(cls.UNIPILE_API_KEY)}
  Rate limit window: {cls.RATE_LIMIT_MIN_DELAY_MS}-{cls.RATE_LIMIT_MAX_DELAY_MS}ms
  Retry cap: {cls.MAX_RETRY_ATTEMPTS} (delay {cls.RETRY_DELAY_SECONDS}s)
  Workflow webhook: {flag(cls.N8N_WEBHOOK_URL, '✓ Configured', '✗ Disabled')}
  Async enrichment: {flag(cls.COMPANY_ENRICHMENT_WEBHOOK_URL, '✓ Enabled', '✗ Direct scraping')}
"""
