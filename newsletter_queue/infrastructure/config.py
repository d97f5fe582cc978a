"""Configuration management for the AI newsletter generation queue."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class ApplicationConfig(BaseSettings):
    """Application configuration with environment variable support."""

    # Database
    database_url: str = Field(
        default="sqlite:///newsletter_queue.db",
        description="Database connection URL"
    )

    # OpenAI Configuration
    openai_api_key: str = Field(
        default="",
        description="OpenAI API key for content and image generation"
    )
    openai_model: str = Field(
        default="gpt-4",
        description="Chat completion model used for section content"
    )
    openai_image_model: str = Field(
        default="dall-e-3",
        description="Image generation model used for section images"
    )
    openai_image_size: str = Field(
        default="1024x1024",
        description="Size of generated section images"
    )
    openai_temperature: float = Field(
        default=0.7,
        description="Temperature setting for section generation"
    )
    openai_max_tokens: int = Field(
        default=1500,
        description="Upper bound on output tokens for one section"
    )
    openai_context_window: int = Field(
        default=2048,
        description="Token budget shared by the rendered prompt and the output"
    )
    openai_token_buffer: int = Field(
        default=200,
        description="Tokens reserved for system instructions and overhead"
    )
    openai_max_retries: int = Field(
        default=5,
        description="Retries after the first failed provider call"
    )
    openai_retry_base_delay: float = Field(
        default=60.0,
        description="First backoff delay in seconds, doubled on each retry"
    )
    request_timeout: int = Field(
        default=60,
        description="HTTP request timeout in seconds"
    )

    # Image generation
    image_generation_enabled: bool = Field(
        default=True,
        description="Generate an illustrative image for each section"
    )
    image_requests_per_minute: int = Field(
        default=15,
        description="Maximum image generation calls in any 60 second window"
    )

    # Queue
    max_attempts: int = Field(
        default=3,
        description="Processing attempts before a queue item fails permanently"
    )
    stale_processing_minutes: int = Field(
        default=30,
        description="Age after which a processing item is reported as stuck"
    )

    # Worker
    worker_poll_interval: float = Field(
        default=1.0,
        description="Seconds to wait when no pending item is available"
    )
    worker_initial_retry_delay: float = Field(
        default=5.0,
        description="First delay after a failed iteration"
    )
    worker_max_retry_delay: float = Field(
        default=60.0,
        description="Cap on the delay between failed iterations"
    )
    worker_max_consecutive_errors: int = Field(
        default=5,
        description="Consecutive failed iterations before cooling down"
    )
    worker_error_cooldown: float = Field(
        default=300.0,
        description="Cooldown in seconds after a failure storm"
    )
    auto_send_drafts: bool = Field(
        default=True,
        description="Email the draft recipient once every section is completed"
    )

    # Email Settings
    brevo_api_key: str = Field(
        default="",
        description="Brevo API key for transactional email"
    )
    brevo_api_url: str = Field(
        default="https://api.brevo.com/v3",
        description="Brevo REST API base URL"
    )
    sender_email: str = Field(
        default="",
        description="From email address for newsletters"
    )
    sender_name: str = Field(
        default="AI Newsletter",
        description="From name for newsletters"
    )
    max_concurrent_sends: int = Field(
        default=5,
        description="Maximum concurrent recipient sends"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_format: str = Field(
        default="structured",
        description="Log format: structured or text"
    )
    log_file: bool = Field(
        default=False,
        description="Also write logs to logs/newsletter_queue.log"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format."""
        if v not in ("structured", "text"):
            raise ValueError("log_format must be 'structured' or 'text'")
        return v

    @field_validator("max_attempts", "image_requests_per_minute", "max_concurrent_sends")
    @classmethod
    def validate_positive(cls, v):
        """Counters and limits must be at least one."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @property
    def async_database_url(self) -> str:
        """Database URL with an async driver for SQLite."""
        if self.database_url.startswith("sqlite:///"):
            return self.database_url.replace("sqlite:///", "sqlite+aiosqlite:///")
        return self.database_url

    @property
    def openai_available(self) -> bool:
        """Check if an OpenAI key is configured."""
        return bool(self.openai_api_key)

    class Config:
        env_prefix = "NEWSLETTER_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


def load_config() -> ApplicationConfig:
    """Load application configuration from environment and files."""
    return ApplicationConfig()


def get_project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent.parent


def get_templates_dir() -> Path:
    """Get the email templates directory shipped with the package."""
    return Path(__file__).parent.parent / "templates"


def get_logs_dir() -> Path:
    """Get the logs directory."""
    logs_dir = get_project_root() / "logs"
    logs_dir.mkdir(exist_ok=True)
    return logs_dir
