"""
Application Settings Management
Centralized configuration using environment variables with validation
"""

from pathlib import Path
from typing import Optional
from functools import lru_cache
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

class Settings(BaseSettings):
    """Lifecycle engine settings with environment variable support.

    Every field can be overridden with a ``NERLOOP_``-prefixed environment
    variable, e.g. ``NERLOOP_MIN_SAMPLES_FOR_TRAINING=10``.
    """

    model_config = SettingsConfigDict(
        env_prefix="NERLOOP_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        protected_namespaces=(),
    )

    # Environment
    environment: str = Field("development")
    log_level: str = Field("info")
    log_file: Optional[str] = Field(None)
    json_logs: bool = Field(False)

    # Storage Paths
    data_dir: Path = Field(Path("./data"))
    models_dir: Path = Field(Path("./data/models"))
    database_url_override: Optional[str] = Field(None, alias="DATABASE_URL")

    # Active model
    active_model_name: str = Field("ner_model")

    # Training / quality gate
    min_samples_for_training: int = Field(3, ge=1)
    quality_gate_min_delta: float = Field(0.0, ge=0.0)
    quality_gate_target_f1: float = Field(0.95, ge=0.0, le=1.0)
    evaluation_folds: int = Field(5, ge=2)

    # Registry
    publish_to_registry: bool = Field(True)
    block_on_regression: bool = Field(True)
    regression_threshold: float = Field(0.03, ge=0.0)

    # Uncertainty sampling
    uncertain_top_n: int = Field(50, ge=1)
    paragraph_min_length: int = Field(5, ge=1)
    max_paragraphs: int = Field(50, ge=1)

    @property
    def database_url(self) -> str:
        """Explicit DATABASE_URL wins, otherwise a SQLite file under data_dir"""
        if self.database_url_override:
            return self.database_url_override
        return f"sqlite:///{self.data_dir}/nerloop.db"

    @property
    def active_model_path(self) -> Path:
        return self.models_dir / f"{self.active_model_name}.zip"

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        allowed = ["development", "staging", "production", "testing"]
        if v not in allowed:
            raise ValueError(f"Environment must be one of {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        allowed = ["debug", "info", "warning", "error", "critical"]
        if v.lower() not in allowed:
            raise ValueError(f"Log level must be one of {allowed}")
        return v.lower()

    @field_validator("data_dir", "models_dir", mode="before")
    @classmethod
    def resolve_path(cls, v):
        if isinstance(v, str):
            return Path(v).resolve()
        return v

    def ensure_directories(self):
        """Create required directories if they don't exist"""
        for dir_path in [self.data_dir, self.models_dir, self.models_dir / "versions"]:
            dir_path.mkdir(parents=True, exist_ok=True)

@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    from config.settings import get_settings

    settings = get_settings()
    orchestrator = create_orchestrator(settings)
    """
    settings = Settings()
    settings.ensure_directories()
    return settings
