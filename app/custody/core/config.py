from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    APP_NAME: str = "CUSTODY-LEDGER"
    DEFAULT_ADMIN_NAME: str = "Central Warehouse"
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    DATABASE_URL: str = "sqlite+pysqlite:///./custody.db"
    METRICS_ENABLED: bool = True
    NOTIFY_DEBOUNCE_MS: int = 250
    REQUEST_BATCH_WINDOW_MS: int = 1000
    LIST_MAX_PAGE_SIZE: int = 200
    SIGNATURE_STORAGE_ACCESS_KEY: str = ""
    SIGNATURE_STORAGE_SECRET_KEY: str = ""
    SIGNATURE_STORAGE_BUCKET: str = ""
    SIGNATURE_STORAGE_REGION: str = ""
    SIGNATURE_STORAGE_ENDPOINT: str = ""
    SIGNATURE_STORAGE_PUBLIC_BASE_URL: str = ""
    SIGNATURE_MAX_BYTES: int = 2 * 1024 * 1024
    OPS_ENABLE_INTEGRITY_SCAN: bool = True


settings = Settings()
