from dotenv import load_dotenv
from pydantic import BaseModel, Field
import os

load_dotenv()

def _to_bool(v: str | None, default: bool = False) -> bool:
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}

def _to_int(v: str | None, default: int) -> int:
    if v is None or not v.strip():
        return default
    return int(v.strip())

def _to_float(v: str | None, default: float) -> float:
    if v is None or not v.strip():
        return default
    return float(v.strip())



class Settings(BaseModel):
    database_url: str = Field(default="sqlite:///data/faie.db")
    log_level: str = Field(default="INFO")
    log_file: str = Field(default="logs/faie.log")

    ollama_base_url: str = Field(default="http://localhost:11434")
    ollama_model: str = Field(default="llama3.1:8b")
    ollama_embed_model: str = Field(default="nomic-embed-text")
    ollama_temperature: float = Field(default=0.1)
    ollama_timeout: int = Field(default=120)

    telegram_enabled: bool = Field(default=False)
    telegram_bot_token: str = Field(default="")
    telegram_chat_id: str = Field(default="")
    telegram_parse_mode: str = Field(default="MarkdownV2")

    dashboard_url: str = Field(default="http://localhost:8787")

    # webhook credentials; an empty secret rejects every request for that source
    support_api_key: str = Field(default="")
    github_webhook_secret: str = Field(default="")
    slack_signing_secret: str = Field(default="")

    alert_urgency_threshold: int = Field(default=9)
    alert_window_hours: int = Field(default=4)

    max_retries: int = Field(default=3)
    retry_batch_size: int = Field(default=20)
    retry_grace_minutes: int = Field(default=5)
    retry_interval_minutes: int = Field(default=5)

    enrich_workers: int = Field(default=4)
    data_dir: str = Field(default="data")


_settings: Settings | None = None

def get_settings() -> Settings:
    global _settings
    if _settings is not None:
        return _settings

    _settings = Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///data/faie.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_file=os.getenv("LOG_FILE", "logs/faie.log"),
        ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://localhost:11434"),
        ollama_model=os.getenv("OLLAMA_MODEL", "llama3.1:8b"),
        ollama_embed_model=os.getenv("OLLAMA_EMBED_MODEL", "nomic-embed-text"),
        ollama_temperature=_to_float(os.getenv("OLLAMA_TEMPERATURE"), 0.1),
        ollama_timeout=_to_int(os.getenv("OLLAMA_TIMEOUT"), 120),
        telegram_enabled=_to_bool(os.getenv("TELEGRAM_ENABLED"), False),
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
        telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID", ""),
        telegram_parse_mode=os.getenv("TELEGRAM_PARSE_MODE", "MarkdownV2"),
        dashboard_url=os.getenv("DASHBOARD_URL", "http://localhost:8787"),
        support_api_key=os.getenv("SUPPORT_API_KEY", ""),
        github_webhook_secret=os.getenv("GITHUB_WEBHOOK_SECRET", ""),
        slack_signing_secret=os.getenv("SLACK_SIGNING_SECRET", ""),

        alert_urgency_threshold=_to_int(os.getenv("ALERT_URGENCY_THRESHOLD"), 9),
        alert_window_hours=_to_int(os.getenv("ALERT_WINDOW_HOURS"), 4),

        max_retries=_to_int(os.getenv("MAX_RETRIES"), 3),
        retry_batch_size=_to_int(os.getenv("RETRY_BATCH_SIZE"), 20),
        retry_grace_minutes=_to_int(os.getenv("RETRY_GRACE_MINUTES"), 5),
        retry_interval_minutes=_to_int(os.getenv("RETRY_INTERVAL_MINUTES"), 5),

        enrich_workers=_to_int(os.getenv("ENRICH_WORKERS"), 4),
        data_dir=os.getenv("DATA_DIR", "data"),
    )
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
