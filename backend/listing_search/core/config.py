import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_pool_size() -> int:
    return min(32, (os.cpu_count() or 1) * 2)


class Settings(BaseSettings):
    DATABASE_PATH: str | None = None
    EMBEDDING_DIM: int = Field(768, gt=0)

    # Storage concurrency
    POOL_SIZE: int = Field(default_factory=default_pool_size, ge=1)
    WORKER_COUNT: int | None = Field(None, ge=1)
    CHECKOUT_TIMEOUT: float = Field(30.0, gt=0)

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    HOST: str = "0.0.0.0"
    PORT: int = 9090

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:5173"]

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def worker_count(self) -> int:
        # Workers beyond the pool size would only queue on checkout
        return self.WORKER_COUNT or self.POOL_SIZE

settings = Settings()
