# app/core/config.py
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service configuration, read from environment variables or .env"""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "fleet-ota"
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "sqlite:///./app/fleet_ota.db"
    BASE_URL: str = "http://localhost:8000"

    # Binary storage
    FIRMWARE_DIR: str = "./firmware"
    FIRMWARE_MAX_SIZE: int = 16 * 1024 * 1024  # 16 MB
    URL_SIGNING_SECRET: str = Field(default="change-me", description="HMAC key for download URLs")
    BINARY_URL_EXPIRY_SECONDS: int = 3600
    STORAGE_TIMEOUT_SECONDS: float = 30.0
    STORAGE_WORKERS: int = 4

    # Release signing (PEM files)
    SIGNING_PRIVATE_KEY_PATH: Optional[str] = None
    SIGNING_PUBLIC_KEY_PATH: Optional[str] = None

    # Device registry
    DEVICE_REGISTRY_URL: str = "http://localhost:8081"
    DEVICE_REGISTRY_TIMEOUT_SECONDS: float = 10.0
    DEVICE_REGISTRY_PAGE_SIZE: int = 200

    # Rollout behaviour
    DEFAULT_FAILURE_THRESHOLD: int = Field(default=10, ge=1, le=100)
    DEPLOYMENT_WRITE_RETRIES: int = 5
    AUTO_ROLLBACK_ENABLED: bool = True

    # Operator endpoints (HTTP Basic)
    ADMIN_USER: str = "admin"
    ADMIN_PASS: str = "admin"

    # Push notifications
    FIREBASE_PROJECT_ID: Optional[str] = None
    FIREBASE_CLIENT_EMAIL: Optional[str] = None
    FIREBASE_PRIVATE_KEY: Optional[str] = None
    FIREBASE_TOPIC_OPERATORS: str = "ota-operators"


settings = Settings()
