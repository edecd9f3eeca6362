from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error logging
    debug: bool = False

    # Shared secret the frontend submits as password_hash (64 hex chars)
    access_password_hash: str = ""

    # ElevenLabs Conversational AI settings
    elevenlabs_api_key: str = ""
    elevenlabs_agent_id: str = ""
    elevenlabs_base_url: str = "https://api.elevenlabs.io/v1"
    elevenlabs_call_path: str = "/convai/phone-calls"
    # Only needed for the Twilio outbound-call endpoint
    elevenlabs_phone_number_id: str = ""

    # Offline provider for local development
    mock_provider: bool = Field(default=False, validation_alias="CALLGATE_MOCK_PROVIDER")

    # HTTP Client connection pool settings
    httpx_connect_timeout: float = 10.0  # Time to establish connection
    httpx_read_timeout: float = 60.0  # Time to read response data
    httpx_write_timeout: float = 10.0  # Time to send request data
    httpx_pool_timeout: float = 5.0  # Time to acquire connection from pool
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Rate limiting settings
    rate_limit_max_requests: int = 10
    rate_limit_window_seconds: int = 60
    rate_limit_sweep_interval_seconds: float = 300.0
    rate_limit_idle_seconds: float = 600.0
    rate_limit_max_keys: int = 10000
    rate_limit_fail_closed: bool = (
        False  # If True, deny requests when Redis is unavailable
    )

    # Redis settings (optional, for multi-instance deployments)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("rate_limit_max_requests", "rate_limit_window_seconds", "rate_limit_max_keys")
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("rate_limit_sweep_interval_seconds", "rate_limit_idle_seconds")
    @classmethod
    def validate_sweep_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Sweep intervals must be positive")
        return v

    @field_validator("httpx_connect_timeout", "httpx_read_timeout", "httpx_write_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    def missing_provider_settings(self) -> list[str]:
        """Names of provider settings that must be set but are empty."""
        if self.mock_provider:
            return []
        missing = []
        if not self.elevenlabs_api_key:
            missing.append("ELEVENLABS_API_KEY")
        if not self.elevenlabs_agent_id:
            missing.append("ELEVENLABS_AGENT_ID")
        return missing

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
