from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "MAIA Maintenance Assistant"
    debug: bool = False

    # Paths
    data_dir: Path = Path(__file__).resolve().parent.parent.parent / "data"
    db_path: Path = Path(__file__).resolve().parent.parent.parent / "maintenance.db"
    cache_path: Path = Path(__file__).resolve().parent.parent.parent / "data" / "chat_cache.json"

    # LLM
    llm_provider: str = "gemini"  # gemini
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    llm_temperature: float = 0.8
    llm_max_tokens: int = 800

    # Answer service
    answer_service: str = "local"  # local | http
    assistant_url: str = "http://localhost:8000/api/assistant/"
    assistant_timeout: float = 60.0
    history_limit: int = 10
    manual_max_chars: int = 8000
    notice_max_chars: int = 8000

    # Chat sessions
    welcome_delay: float = 2.0  # seconds before the welcome replaces the init message
    reset_welcome_delay: float = 1.0
    dedup_window_ms: int = 5000

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]

    model_config = {
        "env_file": str(Path(__file__).resolve().parent.parent.parent / ".env"),
        "env_prefix": "MAIA_",
    }


settings = Settings()
