"""
Application configuration
"""
from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # API Configuration
    app_name: str = "PolicyLens - Insurance Policy Comparison Service"
    version: str = "1.0.0"
    debug: bool = False
    
    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000
    debug_mode: bool = False  # Enable verbose logging and auto-reload
    
    # Security
    bearer_token: str = ""  # Empty disables API authentication
    
    # Chapter Extraction
    min_chapter_length: int = 200  # Chapters shorter than this are discarded
    fallback_candidate_threshold: int = 3  # Below this many headers, search keyword literals too
    pages_per_chapter_min: int = 3  # Minimum pages grouped per synthetic chapter
    page_chapter_target: int = 7  # Target number of synthetic chapters in page fallback
    title_similarity_threshold: float = 0.7  # Titles at or above this are merged
    catch_all_chapter_title: str = "כללי"
    
    # Text Chunking Configuration
    chunk_min_length: int = 100
    chunk_max_length: int = 4000
    
    # Embedding Configuration
    embedding_max_tokens: int = 2500  # Token budget per embedding request
    embedding_retry_max_tokens: int = 1000  # Smaller budget for the single retry
    embedding_chars_per_token: int = 3  # Conservative estimate for Hebrew text
    embedding_cache_path: str = "cache/embedding-cache.json"
    embedding_cache_ttl_days: int = 7
    retrieval_top_k: int = 3
    
    # Gemini Embedding Configuration
    gemini_api_key: str = ""  # Set via environment variable GEMINI_API_KEY
    gemini_embedding_model: str = "gemini-embedding-001"
    gemini_embedding_dimension: int = 768  # Options: 128-3072
    gemini_task_type_document: str = "RETRIEVAL_DOCUMENT"
    gemini_task_type_query: str = "RETRIEVAL_QUERY"
    gemini_api_timeout: int = 30  # seconds
    
    # LLM Configuration
    llm_api_base: str = "https://api.githubcopilot.com"
    llm_model: str = "claude-sonnet-4"
    copilot_access_token: str = ""  # Set via environment variable COPILOT_ACCESS_TOKEN
    llm_temperature: float = 0.0  # Extraction and comparison want deterministic answers
    llm_request_timeout: float = 60.0  # Deadline for a single completion call
    
    # Extraction Queue (client-side backpressure)
    extraction_task_delay: float = 2.0  # Pause between two dequeued tasks
    extraction_retry_delay: float = 5.0  # Wait before requeueing a rate-limited task
    extraction_batch_size: int = 2
    extraction_batch_delay: float = 5.0  # Pause between question batches
    extraction_max_tokens: int = 150
    extraction_degraded_max_tokens: int = 50
    extraction_queue_size: int = 100  # Bounded queue capacity
    
    # Comparison Engine
    comparison_max_tokens: int = 400
    chapter_summary_max_tokens: int = 200
    significant_differences_max_tokens: int = 1000
    overall_summary_max_tokens: int = 300
    max_significant_differences: int = 3
    max_concurrent_chapter_comparisons: int = 1  # Must stay within the completion quota
    comparison_timeout: float = 1800.0  # Overall pipeline deadline in seconds
    
    # Q&A Configuration
    qa_max_tokens: int = 800
    
    # Cost analytics (USD per million tokens)
    input_token_price: float = 15.0
    output_token_price: float = 75.0
    
    class Config:   
        env_file = ".env"
        case_sensitive = False

settings = Settings()
