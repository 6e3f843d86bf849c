"""Application settings loaded from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration — values come from .env or environment variables."""

    # Ollama
    ollama_base_url: str = "http://localhost:11434"
    ollama_embed_model: str = "nomic-embed-text"
    agent_model: str = "llama3.1"
    intent_model: str = "llama3.2"
    extraction_fast_model: str = "llama3.2"
    extraction_advanced_model: str = "llama3.1"
    curator_model: str = "llama3.1"
    suggestions_model: str = "llama3.2"
    llm_timeout: float = 140.0

    # Qdrant
    qdrant_url: str = "http://localhost:6333"
    chunks_collection: str = "patient_chunks"
    memory_collection: str = "conversation_memories"
    embedding_dim: int = 768

    # Conversation
    memory_k: int = 3
    max_suggestions: int = 3
    max_graph_steps: int = 25
    worker_threads: int = 8

    # Web search tool
    perplexity_api_key: str = ""
    perplexity_url: str = "https://api.perplexity.ai/chat/completions"
    perplexity_model: str = "sonar-pro"

    # Status channel and document summaries
    status_webhook_url: str = ""
    summaries_dir: Path = Path("data/summaries")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
