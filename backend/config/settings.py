"""
Centralized Settings Management using Pydantic Settings
Environment-driven configuration for the SprintSense API and analysis core.
"""

from typing import List
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Use .env file for local development.
    """

    # Application
    APP_NAME: str = "SprintSense Coach API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    ENVIRONMENT: str = Field(default="development", description="Environment: development, staging, production")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")
    LOG_JSON: bool = Field(default=False, description="Emit JSON logs (production)")
    LOG_FILE: str = Field(default="", description="Optional JSON log file path")

    # CORS
    CORS_ORIGINS: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed origins"
    )
    CORS_ALLOW_CREDENTIALS: bool = False

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_ANALYZE: str = "30/hour"
    RATE_LIMIT_UPLOAD: str = "10/hour"
    RATE_LIMIT_GLOBAL: str = "1000/hour"
    RATE_LIMIT_STORAGE: str = Field(default="memory://", description="slowapi storage URI, e.g. redis://localhost:6379")

    # Requests slower than this are logged as warnings
    SLOW_REQUEST_MS: float = Field(default=5000.0, gt=0)

    # Calibration defaults (read by the core, never computed by it)
    PIXELS_PER_METER: float = Field(default=200.0, gt=0, description="Calibrated pixels per meter")
    FRAME_WIDTH_PX: int = Field(default=1920, gt=0)
    FRAME_HEIGHT_PX: int = Field(default=1080, gt=0)
    CAMERA_ANGLE_DEG: float = Field(default=0.0, ge=0, lt=90)

    # Real-time processing
    CAMERA_FPS: int = Field(default=30, gt=0)
    PROCESSING_FPS: int = Field(default=15, gt=0, description="Analysis rate; frames above it are skipped")
    MULTI_PERSON_ENABLED: bool = False
    MAX_PERSONS: int = Field(default=4, ge=1)
    KALMAN_SMOOTHING_ENABLED: bool = True
    VOICE_FEEDBACK_ENABLED: bool = True
    SPLIT_INTERVAL_M: float = Field(default=10.0, gt=0)

    # File Upload (offline video analysis)
    MAX_VIDEO_SIZE_MB: int = 500
    UPLOAD_DIR: str = "./data/uploads"

    @property
    def allowed_origins(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        if self.CORS_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def max_video_size_bytes(self) -> int:
        """Get max video size in bytes"""
        return self.MAX_VIDEO_SIZE_MB * 1024 * 1024

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def frame_stride(self) -> int:
        """Process every Nth camera frame"""
        return max(1, self.CAMERA_FPS // self.PROCESSING_FPS)

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Reject unknown log levels at startup"""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown LOG_LEVEL: {v}")
        return level

    @field_validator("PROCESSING_FPS")
    @classmethod
    def validate_processing_fps(cls, v: int, info) -> int:
        """Processing rate can't exceed the camera rate"""
        camera_fps = info.data.get("CAMERA_FPS")
        if camera_fps is not None and v > camera_fps:
            raise ValueError("PROCESSING_FPS must not exceed CAMERA_FPS")
        return v

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore"
    }


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache for performance - settings are loaded once.
    """
    return Settings()


# Convenience function for direct access
settings = get_settings()
