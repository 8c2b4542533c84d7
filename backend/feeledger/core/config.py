# ============================================================
# feeledger/core/config.py
#
# All configuration is read from environment variables (or a
# local .env file during development). Nothing secret is ever
# hardcoded here.
#
# Usage anywhere in the app:
#   from feeledger.core.config import settings
#   print(settings.STORE_BACKEND)
# ============================================================

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
from pathlib import Path


class Settings(BaseSettings):
    """
    All settings come from environment variables.
    Pydantic automatically reads .env file when running locally.
    """

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[3] / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── App Identity ─────────────────────────────────────────
    APP_NAME: str = "FeeLedger"
    APP_VERSION: str = "1.0.0"

    ENVIRONMENT: str = "development"        # development | production
    DEBUG: bool = False
    # Keep production logs at INFO and suppress verbose HTTP wire logs by default.
    HTTP_CLIENT_DEBUG_LOGS: bool = False

    # ── API Settings ─────────────────────────────────────────
    API_PREFIX: str = "/api/v1"
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # ── Persistence ──────────────────────────────────────────
    # supabase → SupabaseStore (production)
    # memory   → MemoryStore (local development, tests)
    STORE_BACKEND: str = "supabase"
    DB_SCHEMA: str = "public"

    # Get these from: Supabase Dashboard → Settings → API
    SUPABASE_URL: str
    SUPABASE_SERVICE_KEY: str               # Service key, backend only

    # Bounded retry for transient connectivity failures only.
    # Delays grow as BASE * 2^n: 1s, 2s, 4s, 8s for five attempts.
    RETRY_MAX_ATTEMPTS: int = 5
    RETRY_BASE_DELAY_SECONDS: float = 1.0

    # ── JWT Authentication ────────────────────────────────────
    # Tokens are issued by the external login service; we only verify them.
    JWT_SECRET_KEY: str                     # Generate: openssl rand -hex 32
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 8

    # ── Academic calendar ────────────────────────────────────
    # A year named "2025-2026" runs from June 1st 2025 to April 30th 2026.
    ACADEMIC_YEAR_START_MONTH: int = 6
    ACADEMIC_YEAR_START_DAY: int = 1
    ACADEMIC_YEAR_END_MONTH: int = 4
    ACADEMIC_YEAR_END_DAY: int = 30

    # ── Receipts ─────────────────────────────────────────────
    RECEIPT_PREFIX: str = "RCP"             # RCP/2025/000042

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


# Single instance, import this everywhere
settings = Settings()
