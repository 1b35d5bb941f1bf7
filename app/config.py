from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    stream_api_key: str
    stream_api_secret: str
    anthropic_api_key: str
    openai_api_key: str = ""
    database_url: str = "sqlite+aiosqlite:///./coaching.db"
    log_level: str = "INFO"
    store_retry_attempts: int = 3
    store_retry_delay: float = 1.0
    llm_retry_attempts: int = 2
    llm_retry_delay: float = 2.0
    transcript_keepalive_seconds: float = 30.0
    stale_processing_minutes: int = 15
    max_analysis_jobs: int = 1000
