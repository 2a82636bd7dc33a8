"""Configuration for the embeddings bot."""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class BotSettings(BaseSettings):
    """Bot settings with TVE_ environment variable prefix."""

    # GitHub
    github_token: str = ""
    github_api_url: str = "https://api.github.com"
    rate_limit_buffer: int = 10

    # Marker name used in "<!-- name update <timestamp> -->" comments
    bot_name: str = "text-vector-embeddings"

    # Store
    store_db_path: str = ".tve_documents.db"

    # Similarity thresholds
    dedupe_warning_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    dedupe_match_threshold: float = Field(default=0.95, ge=0.0, le=1.0)
    annotate_threshold: float = Field(default=0.65, ge=0.0, le=1.0)
    job_matching_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    always_recommend: int = Field(default=0, ge=0)

    # Scoping: global, org, repo
    dedupe_scope: str = "repo"
    annotate_scope: str = "org"

    dedupe_on_open: bool = False
    keep_update_comment: bool = False
    demo_mode: bool = False

    # Score blend: cosine_weight * (1 - cosine_distance) + l2_weight * 1 / (1 + l2_distance)
    match_cosine_weight: float = 0.8
    match_l2_weight: float = 0.2
    annotate_cosine_weight: float = 0.7
    annotate_l2_weight: float = 0.3

    dedupe_top_k: int = 5
    annotate_top_k: int = 5
    job_matching_top_k: int = 5
    requested_users_top_k: int = 50

    # Embeddings
    embedding_provider: str = "voyage"  # voyage, local
    voyage_api_key: str = ""
    voyage_api_url: str = "https://api.voyageai.com/v1"
    voyage_model: str = "voyage-large-2-instruct"
    local_embedding_model: str = "all-MiniLM-L6-v2"
    embedding_dimension: int = 1024
    embedding_timeout_seconds: int = 60
    embedding_mode: str = "sync"  # sync, async

    # Deferred embedding queue
    embedding_queue_max_per_run: int = Field(default=3, ge=1)
    embedding_queue_delay_seconds: int = Field(default=60, ge=5)
    embedding_queue_max_attempts: int = Field(default=6, ge=1)

    # Pending-document backfill
    backfill_enabled: bool = True
    backfill_batch_size: int = Field(default=50, ge=1)
    backfill_delay_ms: int = Field(default=1000, ge=0)
    backfill_max_retries: int = Field(default=3, ge=0)

    # Content gates
    min_issue_markdown_length: int = 32
    min_comment_markdown_length: int = 64

    model_config = {"env_prefix": "TVE_"}

    @model_validator(mode="after")
    def _check_choices(self) -> "BotSettings":
        for name in ("dedupe_scope", "annotate_scope"):
            if getattr(self, name) not in ("global", "org", "repo"):
                raise ValueError(f"{name} must be one of global, org, repo")
        if self.embedding_mode not in ("sync", "async"):
            raise ValueError("embedding_mode must be 'sync' or 'async'")
        if self.embedding_provider not in ("voyage", "local"):
            raise ValueError("embedding_provider must be 'voyage' or 'local'")
        return self


bot_settings = BotSettings()
