from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    APP_NAME: str = "RICEDASH"
    DATABASE_URL: str = "sqlite+pysqlite:///./ricedash.db"

    # Bearer tokens issued by the identity store (subject claim = external identity id)
    TOKEN_SECRET_KEY: str = "change-me"
    TOKEN_ALGORITHM: str = "HS256"
    TOKEN_AUDIENCE: str | None = None

    # Identity store backend API (server-side only)
    IDENTITY_API_URL: str = "https://api.clerk.com/v1"
    IDENTITY_SECRET_KEY: str = ""
    IDENTITY_TIMEOUT_SEC: float = 10.0
    IDENTITY_PAGE_SIZE: int = 100
    IDENTITY_RETRY_MAX_ATTEMPTS: int = 2
    IDENTITY_RETRY_BACKOFF_MS: int = 200

    # Identity event webhook
    WEBHOOK_SIGNING_SECRET: str = ""
    WEBHOOK_TOLERANCE_SEC: int = 300

    # External inventory feed
    STOCK_FEED_URL: str = "https://ibpr.berasraja.com/api/v1/models/mvw_dashboard_storage_per_product_onlyrm"
    STOCK_FEED_API_KEY: str = ""
    STOCK_FEED_TIMEOUT_SEC: float = 30.0
    STOCK_REFRESH_PRODUCT_TYPES: list[str] = ["RAW MATERIAL", "FINISHED_GOODS"]
    STOCK_DEFAULT_PRODUCT_TYPE: str = "RAW MATERIAL"

    DEFAULT_LOCATIONS: list[str] = ["Jakarta", "Surabaya", "Bandung", "Medan", "Yogyakarta"]
    BOOTSTRAP_ADMIN_EXTERNAL_ID: str = ""
    BOOTSTRAP_ADMIN_NAME: str = "superadmin"

    METRICS_ENABLED: bool = True


settings = Settings()
