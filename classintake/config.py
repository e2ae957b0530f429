from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    PORT: int = 3002
    DB_PATH: str = "/data/classintake.db"
    DB_POOL_SIZE: int = 5
    DB_POOL_TIMEOUT: float = 10.0
    LOG_LEVEL: str = "info"

    # Comma-separated; empty disables cross-origin access.
    ALLOWED_ORIGINS: str = ""
    PUBLIC_BASE_URL: str = ""

    TURNSTILE_SECRET_KEY: str = ""
    TURNSTILE_SITE_KEY: str = ""

    SHOPIFY_SHOP: str = ""
    SHOPIFY_ACCESS_TOKEN: str = ""
    SHOPIFY_API_VERSION: str = "2025-01"
    METAOBJECT_TYPE: str = "class_submission"

    REVIEW_PAGE_SIZE: int = 250
    MAX_BATCH_ROWS: int = 100
    HTTP_TIMEOUT: float = 10.0

    @property
    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]


settings = Settings()
