"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.03.00"

    # Database
    DATABASE_URL: str

    # Session Token (issued by the auth layer, verified here; supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Token Encryption (for storing HighLevel OAuth tokens)
    FERNET_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

    # HighLevel CRM
    # V1 API (location API key): contacts lookup
    HIGHLEVEL_API_KEY: str = ""
    HIGHLEVEL_LOCATION_ID: str = ""
    # V2 API (OAuth): conversations/messages. Tokens live in highlevel_oauth.
    HIGHLEVEL_CLIENT_ID: str = ""
    HIGHLEVEL_CLIENT_SECRET: str = ""
    HIGHLEVEL_TIMEOUT_SECONDS: float = 8.0

    # Mailgun
    MAILGUN_API_KEY: str = ""
    MAILGUN_DOMAIN: str = ""
    MAILGUN_FROM_EMAIL: str = ""
    MAILGUN_API_BASE: str = "https://api.mailgun.net/v3"
    MAILGUN_WEBHOOK_SIGNING_KEY: str = ""

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Rate Limiting (requests per minute; Redis shares counters across workers)
    RATE_LIMIT_API: int = 60
    REDIS_URL: str = "redis://localhost:6379/0"

    # Test runs: in-memory limiter, no limits
    TESTING: bool = False

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def cookie_secure(self) -> bool:
        """Secure cookies only in production."""
        return self.ENV != "dev"


settings = Settings()
