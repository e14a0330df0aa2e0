from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "CardMirror"
    debug: bool = False

    database_url: str = "postgresql+asyncpg://localhost:5432/cardmirror"

    catalog_api_url: str = "https://api.pokemontcg.io/v2"
    # Without a key the catalog allows roughly 100 requests per day
    catalog_api_key: str = ""
    catalog_timeout: float = 30.0
    catalog_max_retries: int = 3

    chunk_size: int = 50
    catalog_page_size: int = 250

    full_sync_batch_size: int = 5
    full_sync_batch_delay: float = 1.0
    metadata_all_delay: float = 2.0


settings = Settings()


# =============================================================================
# CATALOG LIMITS
# =============================================================================

# Hard page size ceiling enforced by the catalog API
MAX_CATALOG_PAGE_SIZE = 250

# Fallback wait when a 429 response carries no usable Retry-After header
DEFAULT_RETRY_AFTER_SECONDS = 1.0
