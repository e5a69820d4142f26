from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenRouter (text generation)
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "openai/gpt-4o-mini"
    openrouter_model: str = ""
    synthesis_model: str = ""  # optional override for final synthesis only
    llm_timeout_seconds: float = 60.0

    # Embeddings
    embedding_backend: str = "local"  # local | openai
    local_embed_model: str = "BAAI/bge-small-en-v1.5"
    local_embed_batch_size: int = 32
    embedding_api_key: str = ""
    embedding_base_url: str = "https://api.openai.com/v1"
    embedding_model: str = "text-embedding-3-small"

    # Source clients
    brave_api_key: str = ""
    tavily_api_key: str = ""
    search_fallback_to_tavily: bool = True
    ncbi_api_key: str = ""
    ncbi_tool_email: str = ""
    web_timeout_seconds: float = 10.0
    literature_timeout_seconds: float = 15.0
    preprint_timeout_seconds: float = 15.0
    trials_timeout_seconds: float = 12.0
    preprint_lookback_days: int = 730

    # Round planning
    initial_round_total: int = 25
    follow_up_round_total: int = 15
    initial_round_web_count: int = 10
    follow_up_round_web_count: int = 6
    search_tier_total: int = 10
    search_tier_web_count: int = 5
    round_time_budget_seconds: float = 20.0

    # Ranking
    rank_top_n: int = 30
    rank_max_considered: int = 60
    rank_snippet_chars: int = 2000

    # Stopping policy
    max_rounds: int = 4
    comprehensive_threshold: int = 50
    session_time_budget_seconds: float = 240.0
    reflector_temperature: float = 0.2

    # Session lifecycle
    inactivity_timeout_seconds: float = 1800.0
    topic_shift_threshold: float = 0.2
    session_token_ceiling: int = 150_000

    # Recall
    recall_limit: int = 5
    recall_min_score: float = 0.3
    recall_strong_margin: float = 0.15

    # Session store
    session_backend: str = "json"  # json | postgres
    session_store_dir: str = ".cache/sessions"
    database_url: str = ""

    # App
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]


settings = Settings()
