import os
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Configuration class for environment variables and migration engine settings.
    """

    # Service settings
    service_name: str = os.getenv("SERVICE_NAME", "mongochain")
    environment: str = os.getenv("ENVIRONMENT", "development")
    debug: bool = os.getenv("DEBUG", "False").lower() == "true"

    # Logging settings
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    json_logs: bool = os.getenv("JSON_LOGS", "False").lower() == "true"

    # MongoDB settings
    mongodb: str = os.getenv("MONGODB", "mongodb://localhost:27017")
    mongodb_database: str = os.getenv("MONGODB_DATABASE", "app")

    # MongoDB connection pool settings
    mongo_max_pool_size: int = int(os.getenv("MONGO_MAX_POOL_SIZE", "10"))
    mongo_min_pool_size: int = int(os.getenv("MONGO_MIN_POOL_SIZE", "0"))
    mongo_connect_timeout_ms: int = int(os.getenv("MONGO_CONNECT_TIMEOUT_MS", "5000"))
    mongo_server_selection_timeout_ms: int = int(
        os.getenv("MONGO_SERVER_SELECTION_TIMEOUT_MS", "5000")
    )
    mongo_socket_timeout_ms: int = int(os.getenv("MONGO_SOCKET_TIMEOUT_MS", "30000"))

    # Migration settings
    migrations_dir: str = os.getenv("MIGRATIONS_DIR", "migrations")
    migrations_collection: str = os.getenv("MIGRATIONS_COLLECTION", "_migrations")
    seed_batch_size: int = Field(
        default=int(os.getenv("SEED_BATCH_SIZE", "1000")),
        ge=1,
        description="Documents per insert_many batch when seeding",
    )
    drift_strictness: Literal["warn", "error"] = Field(
        default=os.getenv("DRIFT_STRICTNESS", "warn"),
        description="Whether schema changes no operation accounts for are warnings or errors",
    )
    validate_before_migrate: bool = (
        os.getenv("VALIDATE_BEFORE_MIGRATE", "True").lower() == "true"
    )

    # Index operation queue settings
    index_queue_concurrency: int = int(os.getenv("INDEX_QUEUE_CONCURRENCY", "2"))
    index_queue_timeout: float = float(os.getenv("INDEX_QUEUE_TIMEOUT", "30.0"))
    index_queue_retry_attempts: int = int(os.getenv("INDEX_QUEUE_RETRY_ATTEMPTS", "0"))
    index_queue_retry_delay: float = float(os.getenv("INDEX_QUEUE_RETRY_DELAY", "1.0"))

    @property
    def logging_config(self) -> dict:
        """
        Returns logging configuration based on environment.
        """
        base_config = {
            "app_name": self.service_name,
            "log_level": self.log_level,
            "json_logs": self.json_logs,
        }

        if self.environment == "development":
            base_config.update({"json_logs": False, "log_level": "DEBUG" if self.debug else "INFO"})

        return base_config

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
