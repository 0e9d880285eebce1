"""
Configuration Management

Centralized configuration system using Pydantic settings with
environment variable support and validation.
"""

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class ReplicateSettings(BaseSettings):
    """Remote inference service configuration."""

    model_config = SettingsConfigDict(
        env_prefix="REPLICATE_",
        env_file=".env",
        extra="ignore",
        protected_namespaces=()
    )

    api_base_url: str = Field(
        default="https://api.replicate.com/v1",
        description="Base URL of the predictions API"
    )

    # Supplied by the credential provider; never defaulted
    api_token: Optional[SecretStr] = Field(
        default=None,
        description="Bearer token sent as 'Authorization: Token <token>'"
    )

    model_version: str = Field(
        default="ad59ca21177f9e217b9075e7300cf6e14f7e5b4505b478b3a1700d1ccd3d8517"
    )

    prompt: str = Field(
        default="Studio Ghibli style, Hayao Miyazaki"
    )

    negative_prompt: str = Field(
        default="bad quality, low quality"
    )

    optimized_inference_steps: int = Field(
        default=20,
        gt=0
    )

    full_inference_steps: int = Field(
        default=30,
        gt=0
    )

    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Per-request timeout in seconds"
    )

    @field_validator('api_base_url')
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip('/')


class PollingSettings(BaseSettings):
    """Job status polling configuration."""

    model_config = SettingsConfigDict(env_prefix="POLL_", env_file=".env", extra="ignore")

    initial_backoff_seconds: float = Field(
        default=2.0,
        gt=0
    )

    max_backoff_seconds: float = Field(
        default=15.0,
        gt=0
    )

    backoff_multiplier: float = Field(
        default=1.5,
        ge=1.0
    )

    max_attempts: int = Field(
        default=30,
        gt=0
    )


class CacheSettings(BaseSettings):
    """Result cache configuration."""

    model_config = SettingsConfigDict(env_prefix="CACHE_", env_file=".env", extra="ignore")

    capacity: int = Field(
        default=100,
        gt=0
    )

    key_strategy: str = Field(
        default="rolling",
        description="'rolling' (sampled 32-bit hash) or 'sha256' (full digest)"
    )

    sample_chars: int = Field(
        default=10240,
        gt=0
    )

    @field_validator('key_strategy')
    @classmethod
    def validate_key_strategy(cls, v):
        valid_strategies = ['rolling', 'sha256']
        if v.lower() not in valid_strategies:
            raise ValueError(f"Key strategy must be one of {valid_strategies}")
        return v.lower()


class ProcessingSettings(BaseSettings):
    """Image preprocessing configuration."""

    model_config = SettingsConfigDict(env_prefix="PROCESSING_", env_file=".env", extra="ignore")

    max_dimension: int = Field(
        default=800,
        gt=0
    )

    optimized_max_dimension: int = Field(
        default=600,
        gt=0
    )

    jpeg_quality: int = Field(
        default=85,
        ge=1,
        le=100
    )

    optimize_by_default: bool = Field(
        default=True
    )

    retry_without_optimization: bool = Field(
        default=False
    )


class MonitoringSettings(BaseSettings):
    """Monitoring and observability configuration."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    log_level: str = Field(
        default="INFO"
    )

    log_format: str = Field(
        default="console"
    )

    prometheus_port: int = Field(
        default=9090
    )

    enable_metrics: bool = Field(
        default=False
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v):
        valid_formats = ['json', 'console']
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}")
        return v.lower()


class AppSettings(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_assignment=True,
        extra="ignore"
    )

    # Basic app settings
    app_name: str = Field(
        default="Photo Stylizer"
    )

    app_version: str = Field(
        default="1.0.0"
    )

    environment: str = Field(
        default="development"
    )

    debug: bool = Field(
        default=False
    )

    # Nested settings
    replicate: ReplicateSettings = Field(default_factory=ReplicateSettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    processing: ProcessingSettings = Field(default_factory=ProcessingSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        valid_envs = ['development', 'staging', 'production']
        if v not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment == "development"


# Global settings instance
_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    """Get application settings (singleton pattern)."""
    global _settings

    if _settings is None:
        _settings = AppSettings()

    return _settings


def reload_settings() -> AppSettings:
    """Reload settings from environment."""
    global _settings
    _settings = AppSettings()
    return _settings


# Configuration validation
def validate_config(settings: AppSettings) -> List[str]:
    """Validate configuration and return list of warnings."""

    warnings = []

    if settings.replicate.api_token is None:
        warnings.append("REPLICATE_API_TOKEN is not set; a token must be passed per call")

    if not settings.replicate.api_base_url.startswith("https://") and settings.is_production:
        warnings.append("Remote API base URL is not HTTPS in production")

    polling = settings.polling
    if polling.max_backoff_seconds < polling.initial_backoff_seconds:
        warnings.append("Maximum poll backoff is smaller than the initial backoff")

    processing = settings.processing
    if processing.optimized_max_dimension > processing.max_dimension:
        warnings.append("Optimized max dimension exceeds the general max dimension")

    if settings.replicate.optimized_inference_steps > settings.replicate.full_inference_steps:
        warnings.append("Optimized inference steps exceed full-quality inference steps")

    if settings.cache.key_strategy == "rolling" and settings.is_production:
        warnings.append("Rolling cache keys are collision-prone; consider CACHE_KEY_STRATEGY=sha256")

    return warnings


def create_config_file(env: str = "development") -> str:
    """Create a sample configuration file."""

    config_content = f"""# Photo Stylizer Configuration
# Environment: {env}

# Application Settings
APP_NAME=Photo Stylizer
APP_VERSION=1.0.0
ENVIRONMENT={env}
DEBUG={'true' if env == 'development' else 'false'}

# Remote Service
REPLICATE_API_BASE_URL=https://api.replicate.com/v1
REPLICATE_API_TOKEN=your_replicate_token
REPLICATE_OPTIMIZED_INFERENCE_STEPS=20
REPLICATE_FULL_INFERENCE_STEPS=30
REPLICATE_REQUEST_TIMEOUT=30

# Polling
POLL_INITIAL_BACKOFF_SECONDS=2.0
POLL_MAX_BACKOFF_SECONDS=15.0
POLL_BACKOFF_MULTIPLIER=1.5
POLL_MAX_ATTEMPTS=30

# Result Cache
CACHE_CAPACITY={'20' if env == 'development' else '100'}
CACHE_KEY_STRATEGY={'rolling' if env == 'development' else 'sha256'}

# Image Processing
PROCESSING_MAX_DIMENSION=800
PROCESSING_OPTIMIZED_MAX_DIMENSION=600
PROCESSING_JPEG_QUALITY=85
PROCESSING_OPTIMIZE_BY_DEFAULT=true
PROCESSING_RETRY_WITHOUT_OPTIMIZATION=false

# Monitoring Settings
LOG_LEVEL={'DEBUG' if env == 'development' else 'INFO'}
LOG_FORMAT={'console' if env == 'development' else 'json'}
PROMETHEUS_PORT=9090
ENABLE_METRICS={'false' if env == 'development' else 'true'}
"""

    return config_content
