from dotenv import load_dotenv
from pydantic import BaseModel, Field
import os

load_dotenv()

def _to_int(v: str | None, default: int) -> int:
    if v is None or not v.strip():
        return default
    return int(v.strip())

def _to_float(v: str | None, default: float) -> float:
    if v is None or not v.strip():
        return default
    return float(v.strip())



class Settings(BaseModel):
    ollama_base_url: str = Field(default="http://localhost:11434")
    ollama_model: str = Field(default="llama3.1:8b")
    ollama_embed_model: str = Field(default="nomic-embed-text")
    ollama_timeout_seconds: int = Field(default=600)

    log_level: str = Field(default="INFO")
    log_file: str = Field(default="logs/run.log")

    database_url: str = Field(default="sqlite:///data/content_engine.db")

    dataforseo_login: str = Field(default="")
    dataforseo_password: str = Field(default="")
    dataforseo_location_code: int = Field(default=2840)
    dataforseo_language_code: str = Field(default="en")

    # batch caps, one external call per item
    score_batch_limit: int = Field(default=20)
    extract_batch_limit: int = Field(default=10)
    verify_batch_limit: int = Field(default=5)
    embed_batch_limit: int = Field(default=50)

    # prompt-size limits
    score_content_chars: int = Field(default=3000)
    extract_content_chars: int = Field(default=4000)
    embed_content_chars: int = Field(default=2000)

    verify_max_facts: int = Field(default=5)
    verify_query_max_chars: int = Field(default=80)
    verify_evidence_min_chars: int = Field(default=20)
    verify_confidence_boost: float = Field(default=0.1)

    cluster_sim_threshold: float = Field(default=0.75)
    cluster_candidate_cap: int = Field(default=20)
    cluster_label_sample: int = Field(default=10)

    selection_min_score: int = Field(default=60)
    selection_limit: int = Field(default=5)

    lock_dir: str = Field(default="data/locks")
    lock_timeout_seconds: int = Field(default=60 * 60)

    @property
    def has_dataforseo(self) -> bool:
        return bool(self.dataforseo_login and self.dataforseo_password)


_settings: Settings | None = None

def get_settings() -> Settings:
    global _settings
    if _settings is not None:
        return _settings

    _settings = Settings(
        ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://localhost:11434"),
        ollama_model=os.getenv("OLLAMA_MODEL", "llama3.1:8b"),
        ollama_embed_model=os.getenv("OLLAMA_EMBED_MODEL", "nomic-embed-text"),
        ollama_timeout_seconds=_to_int(os.getenv("OLLAMA_TIMEOUT_SECONDS"), 600),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_file=os.getenv("LOG_FILE", "logs/run.log"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///data/content_engine.db"),

        dataforseo_login=os.getenv("DATAFORSEO_LOGIN", ""),
        dataforseo_password=os.getenv("DATAFORSEO_PASSWORD", ""),
        dataforseo_location_code=_to_int(os.getenv("DATAFORSEO_LOCATION_CODE"), 2840),
        dataforseo_language_code=os.getenv("DATAFORSEO_LANGUAGE_CODE", "en"),

        score_batch_limit=_to_int(os.getenv("SCORE_BATCH_LIMIT"), 20),
        extract_batch_limit=_to_int(os.getenv("EXTRACT_BATCH_LIMIT"), 10),
        verify_batch_limit=_to_int(os.getenv("VERIFY_BATCH_LIMIT"), 5),
        embed_batch_limit=_to_int(os.getenv("EMBED_BATCH_LIMIT"), 50),

        score_content_chars=_to_int(os.getenv("SCORE_CONTENT_CHARS"), 3000),
        extract_content_chars=_to_int(os.getenv("EXTRACT_CONTENT_CHARS"), 4000),
        embed_content_chars=_to_int(os.getenv("EMBED_CONTENT_CHARS"), 2000),

        verify_max_facts=_to_int(os.getenv("VERIFY_MAX_FACTS"), 5),
        verify_query_max_chars=_to_int(os.getenv("VERIFY_QUERY_MAX_CHARS"), 80),
        verify_evidence_min_chars=_to_int(os.getenv("VERIFY_EVIDENCE_MIN_CHARS"), 20),
        verify_confidence_boost=_to_float(os.getenv("VERIFY_CONFIDENCE_BOOST"), 0.1),

        cluster_sim_threshold=_to_float(os.getenv("CLUSTER_SIM_THRESHOLD"), 0.75),
        cluster_candidate_cap=_to_int(os.getenv("CLUSTER_CANDIDATE_CAP"), 20),
        cluster_label_sample=_to_int(os.getenv("CLUSTER_LABEL_SAMPLE"), 10),

        selection_min_score=_to_int(os.getenv("SELECTION_MIN_SCORE"), 60),
        selection_limit=_to_int(os.getenv("SELECTION_LIMIT"), 5),

        lock_dir=os.getenv("LOCK_DIR", "data/locks"),
        lock_timeout_seconds=_to_int(os.getenv("LOCK_TIMEOUT_SECONDS"), 60 * 60),
    )
    return _settings
