from pathlib import Path
from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent.parent

class Settings(BaseSettings):
    SENSAY_API_URL: str = "https://api.sensay.io"
    SENSAY_API_KEY: str = ""                # organization secret
    SENSAY_API_VERSION: str = "2025-03-25"
    SENSAY_REPLICA_UUID: str = "50039859-1408-4152-b6ec-1c0fde91cd87"
    SENSAY_TIMEOUT_SECONDS: float = 30.0
    SHOPIFY_STORE_DOMAIN: str = ""
    SHOPIFY_STOREFRONT_ACCESS_TOKEN: str = ""
    SHOPIFY_ADMIN_ACCESS_TOKEN: str = ""    # order lookup only
    SQLITE_DB_PATH: str = str(BASE_DIR / "data" / "store.db")
    LOG_LEVEL: str = "INFO"
    ADMIN_USER_IDS: str = ""                # comma-separated

    PRODUCT_SEARCH_LIMIT: int = 5
    CONTEXT_MESSAGE_LIMIT: int = 15
    FOCUS_SCAN_LIMIT: int = 10
    PURCHASE_HISTORY_LIMIT: int = 10

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings() #type: ignore
