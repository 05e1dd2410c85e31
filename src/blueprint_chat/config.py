"""Configuration models for the blueprint chat service."""

from __future__ import annotations

from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GatewayConfig(BaseModel):
    """Configures the remote model gateway and model choices per call."""

    base_url: str = "https://openrouter.ai/api/v1"
    api_key: str = ""
    chat_model: str = "anthropic/claude-sonnet-4"
    classifier_model: str = "google/gemini-2.0-flash-001"
    embedding_model: str = "openai/text-embedding-3-small"
    timeout_seconds: float = Field(default=45.0, gt=0.0)
    research_timeout_seconds: float = Field(default=60.0, gt=0.0)
    app_url: str = "http://localhost:3000"
    app_title: str = "Blueprint Chat"


class BreakerConfig(BaseModel):
    """Configures the circuit breaker guarding gateway calls."""

    failure_threshold: int = Field(default=3, ge=1)
    reset_timeout_seconds: float = Field(default=30.0, gt=0.0)


class RetrievalConfig(BaseModel):
    """Configures chunk retrieval for grounding context."""

    top_k: int = Field(default=5, ge=1)
    min_similarity: float = Field(default=0.65, ge=0.0, le=1.0)


class ChatConfig(BaseModel):
    """Configures generation parameters for each response mode."""

    history_window: int = Field(default=6, ge=0)
    answer_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    answer_max_tokens: int = Field(default=1024, ge=1)
    edit_max_tokens: int = Field(default=2048, ge=1)
    explain_max_tokens: int = Field(default=1536, ge=1)
    classifier_max_tokens: int = Field(default=256, ge=1)
    stream_queue_size: int = Field(default=32, ge=1)


class Settings(BaseSettings):
    """Environment-driven settings used to assemble the service."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    OPENROUTER_API_KEY: str = Field(default="", description="Gateway API key")
    OPENROUTER_BASE_URL: str = Field(default="https://openrouter.ai/api/v1")
    CHAT_MODEL: str = Field(default="anthropic/claude-sonnet-4")
    CLASSIFIER_MODEL: str = Field(default="google/gemini-2.0-flash-001")
    EMBEDDING_MODEL: str = Field(default="openai/text-embedding-3-small")
    APP_URL: str = Field(default="http://localhost:3000")
    LOG_LEVEL: str = Field(default="INFO")

    def gateway_config(self) -> GatewayConfig:
        return GatewayConfig(
            base_url=self.OPENROUTER_BASE_URL,
            api_key=self.OPENROUTER_API_KEY,
            chat_model=self.CHAT_MODEL,
            classifier_model=self.CLASSIFIER_MODEL,
            embedding_model=self.EMBEDDING_MODEL,
            app_url=self.APP_URL,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
