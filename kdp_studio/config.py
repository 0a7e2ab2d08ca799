import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')


def _env_bool(name, default="0"):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class Settings(BaseModel):
    """Runtime settings, read from the environment (and backend .env file)."""

    # Storage
    storage_backend: str = os.environ.get("STORAGE_BACKEND", "memory")  # "memory" or "mongo"
    mongo_url: Optional[str] = os.environ.get("MONGO_URL")
    db_name: str = os.environ.get("DB_NAME", "kdp_studio")

    # AI
    openai_api_key: Optional[str] = os.environ.get("OPENAI_API_KEY")
    text_model: str = os.environ.get("OPENAI_TEXT_MODEL", "gpt-5")
    image_model: str = os.environ.get("OPENAI_IMAGE_MODEL", "dall-e-3")
    ai_timeout: float = float(os.environ.get("AI_TIMEOUT", "60"))
    ai_max_retries: int = int(os.environ.get("AI_MAX_RETRIES", "2"))

    # Export
    cover_fetch_timeout: float = float(os.environ.get("COVER_FETCH_TIMEOUT", "20"))
    cover_fetch_retries: int = int(os.environ.get("COVER_FETCH_RETRIES", "2"))
    pdf_renderer: str = os.environ.get("PDF_RENDERER", "reportlab")  # "reportlab" or "none"

    # Sessions
    session_cookie_name: str = os.environ.get("SESSION_COOKIE_NAME", "kdp_studio_session")
    session_ttl_minutes: int = int(os.environ.get("SESSION_TTL_MINUTES", "720"))
    session_cookie_secure: bool = _env_bool("SESSION_COOKIE_SECURE")

    cors_origins: List[str] = [
        o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()
    ]
    log_level: str = os.environ.get("LOG_LEVEL", "INFO")


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
