"""
Application Configuration
"""
from pydantic_settings import BaseSettings
from typing import List, Optional
import warnings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "Facility Ledger API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Database
    DATABASE_URL: str = "sqlite:///./facility_ledger.db"

    # Webhook credentials
    BOOTSTRAP_API_KEY: Optional[str] = None  # Seeded on startup when set
    BOOTSTRAP_API_KEY_ROLE: str = "ACCOUNTANT"

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    WEBHOOK_RATE_LIMIT_PER_MINUTE: int = 60

    # CORS
    CORS_ORIGINS: str = "http://localhost:5000,http://127.0.0.1:5000"

    # Staff name matching
    STAFF_MATCH_CONFIDENCE: float = 0.75  # Minimum score to auto-choose a staff member
    STAFF_MATCH_MARGIN: float = 0.1  # Lead required over the runner-up
    STAFF_MATCH_MIN_SCORE: float = 0.3  # Candidates below this are dropped
    STAFF_MATCH_LIMIT: int = 8

    # Listing
    LIST_DEFAULT_LIMIT: int = 10
    LIST_MAX_LIMIT: int = 50

    # Numbering
    CLAIM_INVOICE_PREFIX: str = "CLM"

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def database_url(self) -> str:
        """Get properly formatted database URL"""
        url = self.DATABASE_URL
        if url.startswith("file:"):
            path = url[5:]
            return f"sqlite:///{path}"
        return url

    @property
    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.ENVIRONMENT.lower() == "production"

    def validate_security_settings(self):
        """Validate security settings and warn about insecure defaults"""
        weak_keys = [
            "change-me",
            "secret",
            "test",
            "api-key",
        ]

        if self.BOOTSTRAP_API_KEY:
            if self.BOOTSTRAP_API_KEY in weak_keys or len(self.BOOTSTRAP_API_KEY) < 24:
                if self.is_production:
                    raise ValueError(
                        "CRITICAL: BOOTSTRAP_API_KEY is weak! "
                        "Use a random value of at least 24 characters."
                    )
                else:
                    warnings.warn(
                        "WARNING: BOOTSTRAP_API_KEY is weak. "
                        "Use a random value of at least 24 characters for production.",
                        UserWarning
                    )

        if self.BOOTSTRAP_API_KEY_ROLE not in ("ACCOUNTANT", "ADMIN"):
            warnings.warn(
                f"WARNING: BOOTSTRAP_API_KEY_ROLE={self.BOOTSTRAP_API_KEY_ROLE} "
                "cannot call the accountant webhook.",
                UserWarning
            )

        if self.is_production and self.DEBUG:
            raise ValueError(
                "CRITICAL: DEBUG mode is enabled in production! "
                "Set DEBUG=False for production environment."
            )

        if not 0 < self.STAFF_MATCH_CONFIDENCE <= 1:
            raise ValueError("STAFF_MATCH_CONFIDENCE must be in (0, 1]")

        return True

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()

# Validate security settings on import (but don't crash in development)
try:
    settings.validate_security_settings()
except ValueError as e:
    if settings.is_production:
        raise
    else:
        warnings.warn(str(e), UserWarning)
