"""
Configuration settings using Pydantic
"""
from functools import lru_cache
from pathlib import Path
from pydantic_settings import BaseSettings

# Get the project root directory
PROJECT_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE = PROJECT_DIR / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # App
    APP_NAME: str = "Chatflow Engine"
    DEBUG: bool = False

    # Storage: "supabase" or "memory"
    STORAGE_BACKEND: str = "supabase"

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""

    # WhatsApp Cloud API
    WHATSAPP_API_BASE: str = "https://graph.facebook.com"
    WHATSAPP_API_VERSION: str = "v23.0"
    WHATSAPP_TIMEOUT_SECONDS: float = 15.0

    # Engine
    ENGINE_MAX_STEPS: int = 100  # Hard per-pass step budget
    ENGINE_LEASE_SECONDS: float = 60.0  # Renewed every third of the TTL while a pass runs

    # apiCall nodes
    API_CALL_DEFAULT_TIMEOUT_MS: int = 5000
    API_CALL_MAX_TIMEOUT_MS: int = 30000

    # Delay node resumes
    RESUME_WORKER_ENABLED: bool = True
    RESUME_CHECK_INTERVAL_SECONDS: float = 5.0

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    class Config:
        env_file = str(ENV_FILE)
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
