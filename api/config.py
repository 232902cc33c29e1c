from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from dotenv import load_dotenv
load_dotenv()


class Settings(BaseSettings):
    """Runtime configuration. Every field can be overridden by an env var of the same name (upper case)."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./tutor.db"
    ollama_base_url: str = "http://localhost:11434"

    teaching_model: str = "llama3.1:8b"
    router_model: str = "llama3.1:8b"
    validator_model: str = "qwen2.5:7b"
    evidence_model: str = "qwen2.5:7b"

    tts_base_url: str = "http://localhost:5002"
    tts_default_voice: str = "default"
    tts_max_chunk_length: int = 200
    max_parallel_tts_chunks: int = 6
    max_tts_failure_threshold: int = 3

    validation_timeout_seconds: float = 10.0
    validation_approval_threshold: float = 0.80

    agent_cache_ttl_seconds: float = 300
    profile_cache_ttl_seconds: float = 300
    mastery_cache_ttl_seconds: float = 60
    context_cache_ttl_seconds: int = 7200
    context_cache_renewal_seconds: float = 90 * 60

    history_limit: int = 5
    evidence_confidence_threshold: float = 0.7


settings = Settings()

connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
engine = create_engine(settings.database_url, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def reset_db():
    Base.metadata.drop_all(bind=engine)
    create_db()


def create_db():
    # Import models so every table is registered on Base.metadata.
    import api.models  # noqa: F401
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
