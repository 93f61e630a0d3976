"""
Application configuration using Pydantic Settings
Reads from environment variables and .env file
"""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    db_user: str = Field(default="financepro", alias="DB_USER")
    db_password: str = Field(default="financepro", alias="DB_PASSWORD")
    db_name: str = Field(default="financepro", alias="DB_NAME")
    db_host: str = Field(default="postgres", alias="DB_HOST")
    db_port: int = Field(default=5432, alias="DB_PORT")
    database_url_override: Optional[str] = Field(default=None, alias="DATABASE_URL")

    @property
    def database_url(self) -> str:
        """Construct database URL (DATABASE_URL wins over the DB_* parts)"""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Redis / Celery
    redis_url: str = Field(default="redis://redis:6379/0", alias="REDIS_URL")
    celery_broker_url: str = Field(default="redis://redis:6379/1", alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(default="redis://redis:6379/2", alias="CELERY_RESULT_BACKEND")

    # Application
    environment: str = Field(default="production", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Storage
    storage_path: str = Field(default="/srv/financepro/documents", alias="STORAGE_PATH")
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")
    allowed_mime_types: List[str] = Field(
        default=[
            "application/pdf",
            "image/jpeg",
            "image/jpg",
            "image/png",
            "image/tiff",
        ],
        alias="ALLOWED_MIME_TYPES",
    )

    # OCR
    tesseract_cmd: str = Field(default="/usr/bin/tesseract", alias="TESSERACT_CMD")
    tesseract_lang: str = Field(default="por", alias="TESSERACT_LANG")
    ocr_timeout_seconds: float = Field(default=120.0, alias="OCR_TIMEOUT_SECONDS")
    pdf_text_min_chars: int = Field(default=50, alias="PDF_TEXT_MIN_CHARS")

    # Classification
    max_candidates: int = Field(default=5, alias="MAX_CANDIDATES")
    min_confidence: int = Field(default=30, alias="MIN_CONFIDENCE")
    high_confidence: int = Field(default=80, alias="HIGH_CONFIDENCE")
    custom_category_threshold: int = Field(default=80, alias="CUSTOM_CATEGORY_THRESHOLD")
    lexicon_capacity: int = Field(default=200, alias="LEXICON_CAPACITY")
    capitalization_threshold: int = Field(default=500000, alias="CAPITALIZATION_THRESHOLD")  # Kz
    max_items_per_document: int = Field(default=200, alias="MAX_ITEMS_PER_DOCUMENT")

    # Pipeline
    max_processing_retries: int = Field(default=3, alias="MAX_PROCESSING_RETRIES")

    # Monitoring
    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED")

    # Development
    debug: bool = Field(default=False, alias="DEBUG")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment"""
        valid_envs = ["development", "staging", "production", "test"]
        if v.lower() not in valid_envs:
            raise ValueError(f"ENVIRONMENT must be one of {valid_envs}")
        return v.lower()

    @field_validator("min_confidence", "high_confidence", "custom_category_threshold")
    @classmethod
    def validate_confidence(cls, v):
        """Confidence thresholds live on the 0-100 scale"""
        if not 0 <= v <= 100:
            raise ValueError("confidence thresholds must be within [0, 100]")
        return v

    @field_validator("max_candidates", "lexicon_capacity")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
