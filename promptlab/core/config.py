from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, computed_field
from typing import List, Optional
import json
import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env before Settings reads the environment
load_dotenv()

class Settings(BaseSettings):
    # LLM provider: "openai" or "anthropic". Without a key for the selected
    # provider the app runs in demo mode.
    llm_provider: str = Field(default="openai")
    openai_api_key: Optional[str] = Field(default=None)
    anthropic_api_key: Optional[str] = Field(default=None)
    llm_model: Optional[str] = Field(default=None)

    # Classification calls
    classification_temperature: float = Field(default=0.0)
    classification_max_tokens: int = Field(default=4096)
    num_chunks: int = Field(default=4, ge=1)

    # Coaching feedback calls
    feedback_temperature: float = Field(default=0.7)
    feedback_max_tokens: int = Field(default=500)
    chat_history_limit: int = Field(default=10)

    # Storage
    database_url: Optional[str] = Field(default=None)

    @computed_field
    @property
    def cors_origins(self) -> List[str]:
        origins = [
            "http://localhost:5173",
            "http://localhost:3000",
            "http://localhost:3001",
        ]
        extra = os.getenv('CORS_ORIGINS', '') or os.getenv('FRONTEND_URL', '')

        if not extra.strip():
            return origins

        # ["a", "b"] or comma separated
        if extra.strip().startswith('[') and extra.strip().endswith(']'):
            try:
                return origins + json.loads(extra)
            except json.JSONDecodeError:
                cleaned = extra.strip().strip('[]')
                extra = cleaned.replace('"', '').replace("'", '')
        return origins + [o.strip() for o in extra.split(',') if o.strip()]

    @property
    def api_key(self) -> Optional[str]:
        """Key for whichever provider is selected."""
        if self.llm_provider == "anthropic":
            return self.anthropic_api_key
        return self.openai_api_key

    @property
    def resolved_model(self) -> str:
        if self.llm_model:
            return self.llm_model
        if self.llm_provider == "anthropic":
            return "claude-haiku-4-5-20251001"
        return "gpt-4o-mini"

    # File paths
    @property
    def base_dir(self) -> Path:
        return Path(__file__).parent.parent.parent

    @property
    def data_dir(self) -> Path:
        return Path(__file__).parent.parent / "data"

    @property
    def logs_dir(self) -> Path:
        return self.base_dir / "logs"

    @property
    def sqlalchemy_url(self) -> str:
        return self.database_url or f"sqlite:///{self.base_dir / 'promptlab.db'}"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

# Global settings instance
settings = Settings()

if __name__ == "__main__":
    print(settings.base_dir)
    print(settings.data_dir)
    print(settings.logs_dir)
    print(settings.llm_provider, settings.resolved_model, bool(settings.api_key))
