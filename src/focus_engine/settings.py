"""Environment configuration."""
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from focus_engine.db import DEFAULT_DB_PATH


class Settings(BaseSettings):
    gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
    # Primary model; quota failures fall through to the fallback list in order
    gemini_model: str = Field(default="gemini-2.0-flash-lite", validation_alias="GEMINI_MODEL")
    gemini_fallback_models: str = Field(
        default="gemini-2.0-flash,gemini-flash-latest", validation_alias="GEMINI_FALLBACK_MODELS",
    )
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/models",
        validation_alias="GEMINI_BASE_URL",
    )
    gemini_throttle_seconds: float = Field(default=10.0, validation_alias="GEMINI_THROTTLE_SECONDS")
    gemini_timeout_seconds: float = Field(default=30.0, validation_alias="GEMINI_TIMEOUT_SECONDS")

    db_path: str = Field(default=DEFAULT_DB_PATH, validation_alias="FOCUS_DB_PATH")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def models(self) -> list[str]:
        fallbacks = [m.strip() for m in self.gemini_fallback_models.split(",") if m.strip()]
        return [self.gemini_model] + [m for m in fallbacks if m != self.gemini_model]
