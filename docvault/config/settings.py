"""Application settings loaded from environment variables via pydantic-settings.

Two sources, in priority order:

  1. **Environment variables** -- e.g. ``OPENAI_API_KEY=sk-abc123``
  2. **.env file** -- key=value lines in the project root ``.env``

Field ``openai_api_key`` maps to env var ``OPENAI_API_KEY``.  Defaults
apply when neither source sets a value.  Static, non-secret structure
(the API-key principal map) lives in ``config/config.yaml`` instead; see
:mod:`docvault.config.loader`.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """DocVault settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Inference providers ===
    # Empty key = "not configured"; main.py then falls back to Ollama.
    openai_api_key: str = ""
    openai_base_url: str = ""  # Custom base URL for OpenAI-compatible APIs
    openai_text_model: str = ""
    openai_vision_model: str = ""
    openai_embedding_model: str = ""
    ollama_base_url: str = "http://localhost:11434"
    ollama_text_model: str = "llama3.1"
    ollama_vision_model: str = "llava"

    # Upper bound for any single inference call (embedding, tagging, generation).
    inference_timeout_seconds: float = 25.0
    # Per-fragment bound while streaming a chat answer.
    chat_timeout_seconds: float = 30.0

    # === Storage ===
    blob_root: str = "data/blobs"
    metadata_db_path: str = "data/docvault.db"
    chromadb_persist_dir: str = "./data/chromadb"
    chromadb_collection: str = "docvault_chunks"

    # === Ingestion ===
    chunk_target_tokens: int = 512
    chunk_overlap_tokens: int = 64
    # 1 = strictly sequential embed/upsert/persist per chunk.
    embed_concurrency: int = 1
    tag_vocabulary_size: int = 50
    tag_text_chars: int = 2000
    pdf_vision_max_pages: int = 3
    # "inline" runs the pipeline inside the upload call; "queued" hands it to workers.
    ingestion_mode: str = "inline"
    ingestion_workers: int = 2
    ingestion_max_attempts: int = 3
    # A processing document whose lease lapses is reclaimed to pending.
    processing_lease_seconds: int = 300
    reclaim_interval_seconds: int = 60
    # A pending document untouched this long and not held by this process is re-dispatched.
    pending_reclaim_seconds: int = 120

    # === Upload limits ===
    max_upload_bytes: int = 50 * 1024 * 1024
    max_files_per_upload: int = 100

    # === Chat ===
    chat_context_top_k: int = 10
    chat_max_context_documents: int = 5
    chat_history_messages: int = 10

    # === App config ===
    app_env: str = "development"
    log_level: str = "INFO"
    config_path: str = "config/config.yaml"

    def get_available_llm_providers(self) -> list[str]:
        """Return the LLM provider names that are configured."""
        providers: list[str] = []
        if self.openai_api_key:
            providers.append("openai")
        if self.ollama_base_url:
            providers.append("ollama")
        return providers
