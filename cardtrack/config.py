from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "CardTrack"
    debug: bool = False

    # --- Server ---

    database_url: str = "postgresql+asyncpg://localhost:5432/cardtrack"

    # Bearer token -> owner id, consumed by the static token verifier.
    # Session issuance lives outside this service.
    api_tokens: dict[str, str] = Field(default_factory=dict)

    max_page_limit: int = 100

    # --- Client ---

    api_base_url: str = "http://localhost:8000"
    api_token: str | None = None
    owner_id: str = ""

    replica_url: str = "sqlite:///cardtrack-local.db"

    sync_timeout: float = 30.0
    sync_page_size: int = 50


settings = Settings()


# Attempts at the compare-and-swap write for one batch entry before the
# entry is reported back as a conflict.
MAX_RECONCILE_ATTEMPTS = 3

# Attempts at a guarded write for one add or edit before it gives up
# with a write conflict.
MAX_WRITE_ATTEMPTS = 5
