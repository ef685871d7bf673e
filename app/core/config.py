from functools import lru_cache
import logging

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.logger import setup_logger, init_sentry


class Settings(BaseSettings):
    # Application settings
    ENVIRONMENT: str = "development"  # Options: development, production, test
    APP_NAME: str = "Trainer Auth Service"
    APP_VERSION: str = "1.0.0"
    APP_DESCRIPTION: str = """
Identity and session lifecycle for trainers.

Trainers authenticate with email and password, a phone one-time code, or a
Google account. The service resolves all three channels to a single trainer
identity, issues rotating JWT access/refresh pairs and enforces lockout and
one-time-code expiry across every running instance.
"""
    DEBUG: bool = False

    # JWT settings
    JWT_SECRET_KEY: str = "access_token_secret_change_in_production"
    JWT_REFRESH_SECRET_KEY: str = "refresh_token_secret_change_in_production"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30
    TOKEN_ROLE: str = "trainer"

    # Password hashing
    BCRYPT_ROUNDS: int = 12

    # Database settings
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 30

    # Redis settings
    REDIS_URL: str = "redis://localhost:6379/0"

    # OTP settings
    OTP_LENGTH: int = 6
    OTP_EXPIRY_MINUTES: int = 10
    OTP_HMAC_SECRET: str = "otp_hmac_secret_key_change_in_production"
    OTP_MAX_ATTEMPTS: int = 5

    # Lockout settings
    LOCKOUT_MAX_ATTEMPTS: int = 5
    LOCKOUT_DURATION_MINUTES: int = 15
    LOCKOUT_ATTEMPT_WINDOW_MINUTES: int = 60

    # Session / refresh rotation settings
    SESSION_TTL_SECONDS: int = 30 * 24 * 60 * 60
    REFRESH_LOCK_TTL_SECONDS: int = 5
    REFRESH_LOCK_WAIT_SECONDS: float = 5.0
    REFRESH_REUSE_GRACE_SECONDS: int = 5
    MAX_REFRESH_TOKENS_PER_TRAINER: int = 10
    REFRESH_TOKEN_RETENTION_DAYS: int = 7

    # Retry settings for transient store failures
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BACKOFF_BASE_SECONDS: float = 1.0
    RETRY_BACKOFF_CAP_SECONDS: float = 5.0

    # OAuth settings
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_NATIVE_CLIENT_IDS: list[str] = []
    GOOGLE_JWKS_URL: str = "https://www.googleapis.com/oauth2/v3/certs"
    OAUTH_STATE_SECRET_KEY: str = "oauth_state_secret_change_in_production"

    # Brevo settings
    BREVO_API_KEY: str = ""
    BREVO_BASE_URL: str = "https://api.brevo.com/v3"
    BREVO_SENDER_EMAIL: str = "no-reply@example.com"
    BREVO_SENDER_NAME: str = "Trainer Auth"

    # MSG91 settings
    MSG91_AUTH_KEY: str = ""
    MSG91_BASE_URL: str = "https://control.msg91.com/api/v5"
    MSG91_TEMPLATE_ID: str = ""
    MSG91_DEFAULT_COUNTRY_CODE: str = "91"

    # Infrastructure flags
    ENABLE_SCHEDULER: bool = True

    # Sentry settings
    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_TRACES_SAMPLE_RATE: float = 0.1

    model_config: SettingsConfigDict = SettingsConfigDict(  # type: ignore
        env_file=".env",
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @model_validator(mode="after")
    def _validate_bcrypt_rounds(self) -> "Settings":
        """Refuse to start with a bcrypt cost below the environment's floor."""
        floor = 12 if self.is_production else 10
        if self.BCRYPT_ROUNDS < floor:
            raise ValueError(
                f"BCRYPT_ROUNDS must be at least {floor} in the "
                f"'{self.ENVIRONMENT}' environment (got {self.BCRYPT_ROUNDS})."
            )
        return self

    @model_validator(mode="after")
    def _validate_production_secrets(self) -> "Settings":
        """Ensure insecure default secrets are overridden in production."""
        if not self.is_production:
            return self

        insecure_defaults: dict[str, str] = {
            "JWT_SECRET_KEY": "access_token_secret_change_in_production",
            "JWT_REFRESH_SECRET_KEY": "refresh_token_secret_change_in_production",
            "OTP_HMAC_SECRET": "otp_hmac_secret_key_change_in_production",
            "OAUTH_STATE_SECRET_KEY": "oauth_state_secret_change_in_production",
        }

        still_default = [
            name
            for name, default_val in insecure_defaults.items()
            if getattr(self, name) == default_val
        ]

        if still_default:
            raise ValueError(
                f"ENVIRONMENT is 'production' but the following secrets still "
                f"have their insecure default values: {', '.join(still_default)}. "
                f"Set them via environment variables or .env file."
            )

        return self


@lru_cache()
def get_settings() -> Settings:
    return Settings()  # type: ignore


settings = get_settings()

# Initialize Sentry once globally (non-blocking, runs in background threads)
if not settings.DEBUG:
    init_sentry(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
    )


def _component_logger(component: str, sentry_tag: str | None = None) -> logging.Logger:
    """Logger named `<component>_logger` writing to logs/<component>.log."""
    return setup_logger(
        name=f"{component}_logger",
        log_file=f"logs/{component}.log",
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        sentry_tag=sentry_tag or component,
    )


app_logger = _component_logger("app")
database_logger = _component_logger("database")
request_logger = _component_logger("request")
auth_logger = _component_logger("auth")
otp_logger = _component_logger("otp")
redis_logger = _component_logger("redis")
brevo_logger = _component_logger("brevo", sentry_tag="email")
msg91_logger = _component_logger("msg91", sentry_tag="sms")
oauth_logger = _component_logger("oauth")
utils_logger = _component_logger("utils")
scheduler_logger = _component_logger("scheduler")

__all__ = [
    "Settings",
    "get_settings",
    "settings",
    "app_logger",
    "database_logger",
    "request_logger",
    "auth_logger",
    "otp_logger",
    "redis_logger",
    "brevo_logger",
    "msg91_logger",
    "oauth_logger",
    "scheduler_logger",
    "utils_logger",
]
