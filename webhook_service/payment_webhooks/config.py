"""
Application Configuration Management

Loads configuration from environment variables (and a local .env file).
In AWS Lambda, secrets referenced by ARN environment variables are pulled
from AWS Secrets Manager before the settings object is built.
"""

import os
from functools import lru_cache
from typing import List, Optional

import boto3
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Secret environment variable -> ARN environment variable
SECRET_ARN_VARIABLES = {
    "RAZORPAY_WEBHOOK_SECRET": "RAZORPAY_WEBHOOK_SECRET_ARN",
    "RESEND_API_KEY": "RESEND_API_KEY_ARN",
    "DATABASE_URL": "DATABASE_URL_ARN",
    "ADMIN_API_KEY": "ADMIN_API_KEY_ARN",
}


class Settings(BaseSettings):
    """Application settings with validation"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = Field(default="development", description="Environment name")

    # Application
    app_name: str = Field(default="Client Portal Payment Webhooks")
    app_version: str = Field(default="1.0.0")
    log_level: str = Field(default="INFO")

    # FastAPI
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./payments.db",
        description="SQLAlchemy async URL (postgresql+asyncpg://... in production)",
    )
    database_echo: bool = Field(default=False)
    database_auto_create: bool = Field(
        default=False, description="Create tables on startup (local development only)"
    )
    database_pool_size: int = Field(default=2)
    database_max_overflow: int = Field(default=0)
    database_pool_timeout: int = Field(default=30)
    database_pool_recycle: int = Field(default=1800)

    # Razorpay
    razorpay_webhook_secret: Optional[str] = Field(
        default=None, description="Razorpay webhook signing secret"
    )

    # AWS
    aws_region: str = Field(default="ap-south-1")
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)
    aws_endpoint_url: Optional[str] = Field(default=None)

    # Notification queue (payment emails are delivered by notification_worker)
    notification_queue_url: Optional[str] = Field(
        default=None, description="SQS queue URL for notification intents"
    )
    sqs_connect_timeout: float = Field(default=2.0)
    sqs_read_timeout: float = Field(default=3.0)
    sqs_max_attempts: int = Field(default=2)

    # Email (Resend)
    resend_api_key: Optional[str] = Field(default=None)
    resend_from_email: str = Field(default="Client Portal <onboarding@resend.dev>")
    resend_api_url: str = Field(default="https://api.resend.com/emails")
    email_timeout_seconds: float = Field(default=10.0)
    admin_notification_email: str = Field(default="admin@example.com")
    portal_url: str = Field(default="http://localhost:5173")

    # Admin review API
    admin_api_key: Optional[str] = Field(default=None)

    # Retry Configuration
    max_retry_attempts: int = Field(default=3)
    retry_backoff_base: int = Field(default=2)
    retry_backoff_max: int = Field(default=32)

    # CORS
    cors_origins: List[str] = Field(default=["http://localhost:5173"])
    cors_allow_credentials: bool = Field(default=True)
    cors_allow_methods: List[str] = Field(default=["GET", "POST"])
    cors_allow_headers: List[str] = Field(default=["*"])

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v_upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid_envs = ["development", "test", "staging", "production"]
        v_lower = v.lower()
        if v_lower not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}")
        return v_lower

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_lambda(self) -> bool:
        """Check if running in AWS Lambda environment"""
        return bool(os.getenv("AWS_LAMBDA_FUNCTION_NAME"))

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.notification_queue_url)

    def validate_required_secrets(self) -> None:
        """
        Validate that required secrets are present.

        The webhook secret is required everywhere except local development,
        where the endpoint still refuses requests while it is unset.

        Raises:
            ValueError: If any required secret is missing
        """
        missing = []

        if not self.razorpay_webhook_secret and not self.is_development:
            missing.append("razorpay_webhook_secret")
        if self.is_production and self.database_url.startswith("sqlite"):
            missing.append("database_url")
        if self.is_production and self.notifications_enabled and not self.resend_api_key:
            missing.append("resend_api_key")

        if missing:
            raise ValueError(
                f"Missing required configuration: {', '.join(missing)}. "
                f"In Lambda, ensure ARN environment variables are set. "
                f"Locally, ensure .env file or environment variables are configured."
            )


def _fetch_secret_by_arn(arn: str, region: str) -> str:
    """
    Fetch a secret value from AWS Secrets Manager using its ARN.

    Raises:
        RuntimeError: If the secret cannot be retrieved
    """
    try:
        client = boto3.client("secretsmanager", region_name=region)
        response = client.get_secret_value(SecretId=arn)
        return response.get("SecretString", "")
    except Exception as e:
        raise RuntimeError(f"Failed to retrieve secret from ARN {arn}: {e}") from e


def load_lambda_secrets() -> None:
    """
    Inject secrets referenced by *_ARN variables into the environment.

    Only runs inside Lambda; values already present in the environment win.
    """
    if not os.getenv("AWS_LAMBDA_FUNCTION_NAME"):
        return

    region = os.getenv("AWS_REGION", "ap-south-1")
    for env_name, arn_name in SECRET_ARN_VARIABLES.items():
        arn = os.getenv(arn_name)
        if arn and not os.getenv(env_name):
            os.environ[env_name] = _fetch_secret_by_arn(arn, region)


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Fails fast when a required secret is missing so that a misconfigured
    deployment never starts accepting webhooks.
    """
    load_lambda_secrets()
    settings = Settings()
    settings.validate_required_secrets()
    return settings
