"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    APP_NAME: str = "Workflow Automation Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production, testing

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./workflow.db"
    SQLALCHEMY_ECHO: bool = False

    # Runtime Settings
    EXECUTION_STORE: str = "sql"  # sql or memory
    SWEEP_INTERVAL_SECONDS: float = 30.0  # wake-up poller period, 0 disables it

    # Engine Settings
    ENGINE_MAX_STEPS: int = 10000  # per run, guards against runaway traversal
    LOOP_MAX_ITERATIONS: int = 1000
    DELAY_RECHECK_CLOCK: bool = True  # re-check resumeAt on resume instead of trusting the caller

    # Approval Settings
    APPROVAL_ENABLED: bool = True
    APPROVAL_DEFAULT_TIMEOUT_HOURS: int = 72
    APPROVAL_EXPIRY_POLICY: str = "reject"  # reject or approve

    # HTTP / Webhook Settings
    HTTP_TIMEOUT_SECONDS: float = 30.0
    HTTP_BLOCK_PRIVATE_HOSTS: bool = True

    # Email (SMTP)
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_ADDRESS: str = "workflows@localhost"
    SMTP_USE_TLS: bool = True

    # SMS / WhatsApp provider (HTTP API)
    SMS_API_URL: str = ""
    SMS_API_KEY: str = ""
    WHATSAPP_API_URL: str = ""
    WHATSAPP_API_KEY: str = ""

    # Chat (Slack-compatible incoming webhook)
    CHAT_WEBHOOK_URL: str = ""

    # Push notifications
    PUSH_API_URL: str = ""
    PUSH_API_KEY: str = ""

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def approval_expiry_approves(self) -> bool:
        """Whether an expired approval resolves down the approved edge."""
        return self.APPROVAL_EXPIRY_POLICY.lower() == "approve"

    def channel_config(self) -> dict:
        """Build the messaging channel config consumed by NotificationManager."""
        return {
            "email": {
                "smtp_host": self.SMTP_HOST,
                "smtp_port": self.SMTP_PORT,
                "smtp_user": self.SMTP_USER,
                "smtp_password": self.SMTP_PASSWORD,
                "from_address": self.SMTP_FROM_ADDRESS,
                "use_tls": self.SMTP_USE_TLS,
            },
            "sms": {"api_url": self.SMS_API_URL, "api_key": self.SMS_API_KEY},
            "whatsapp": {"api_url": self.WHATSAPP_API_URL, "api_key": self.WHATSAPP_API_KEY},
            "chat": {"webhook_url": self.CHAT_WEBHOOK_URL},
            "push": {"api_url": self.PUSH_API_URL, "api_key": self.PUSH_API_KEY},
        }

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
