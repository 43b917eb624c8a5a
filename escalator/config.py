"""Configuration management for Escalator."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Escalator"
    VERSION: str = "0.1.0"
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    ENVIRONMENT: str = Field(default="development", description="Environment")

    # API Configuration
    API_V1_STR: str = "/api/v1"
    HOST: str = Field(default="0.0.0.0", description="Host to bind")
    PORT: int = Field(default=8000, description="Port to bind")

    # Twilio
    TWILIO_ACCOUNT_SID: str = Field(default="", description="Twilio Account SID")
    TWILIO_AUTH_TOKEN: str = Field(default="", description="Twilio Auth Token")
    TWILIO_FROM_NUMBER: str = Field(default="", description="Twilio phone number")
    TWILIO_VALIDATE_SIGNATURES: bool = Field(
        default=False,
        description="Reject webhooks without a valid X-Twilio-Signature"
    )

    # Callbacks
    CALLBACK_URL_BASE: str = Field(
        default="http://localhost:8000/api/v1/plans",
        description="Public base URL Twilio uses to reach per-plan callbacks"
    )
    SENDER_NAME: str = Field(
        default="Escalator",
        description="Name announced at the start of notification calls"
    )

    # Escalation
    ACK_CODE_DIGITS: int = Field(
        default=3,
        description="Number of digits in SMS acknowledgment codes"
    )
    CALL_TIMEOUT_SECONDS: int = Field(
        default=20,
        description="How long an outbound call rings before giving up"
    )
    GATHER_TIMEOUT_SECONDS: int = Field(
        default=15,
        description="How long a call waits for a key press"
    )
    SHUTDOWN_TIMEOUT_SECONDS: float = Field(
        default=5.0,
        description="Bounded wait for executors to exit on shutdown"
    )
    CONVERSATION_TTL_MINUTES: int = Field(
        default=1440,
        description="Age after which unanswered SMS conversations are swept"
    )
    SWEEP_INTERVAL_SECONDS: int = Field(
        default=300,
        description="How often housekeeping jobs run"
    )

    # Reply texts
    ACK_CONFIRMATION_MESSAGE: str = Field(
        default="Your acknowledgment has been received.  Thanks!",
        description="SMS reply sent after a successful acknowledgment"
    )
    UNRECOGNIZED_REPLY_MESSAGE: str = Field(
        default=(
            "I'm sorry but I don't recognize that response.  Please acknowledge "
            "with the code from the notification you received."
        ),
        description="SMS reply sent when a reply matches no pending notification"
    )

    # Monitoring
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    @field_validator("ACK_CODE_DIGITS")
    @classmethod
    def validate_ack_code_digits(cls, v: int) -> int:
        """Keep codes typeable on a phone keypad and reasonably unique."""
        if not 3 <= v <= 9:
            raise ValueError("ACK_CODE_DIGITS must be between 3 and 9")
        return v

    @field_validator("CALLBACK_URL_BASE")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


# Global settings instance
settings = Settings()
