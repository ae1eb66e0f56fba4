from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(".env", "src/.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "local"

    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "mailroom"
    DATABASE_URL: str | None = None

    redis_url: str = "redis://localhost:6379/0"
    sql_echo: bool = False

    log_level: str = "INFO"
    log_dir: str | None = None

    # queue / worker
    queue_batch_size: int = 10
    queue_retention_days: int = 14
    worker_max_jobs: int = 10
    worker_message_timeout: int = 300
    worker_max_tries: int = 3

    # provider selection
    home_country: str = "US"
    domestic_provider: str | None = "usps"
    international_provider: str = "googlemaps"
    fallback_provider: str | None = None

    # retries
    retry_max_attempts: int = 3
    retry_backoff: list[float] = [1.0, 5.0, 30.0]
    proxy_retry_max_attempts: int = 2
    proxy_retry_backoff: list[float] = [1.0]

    http_timeout_seconds: float = 20.0

    # secrets
    secret_backend: str = "ssm"
    aws_region: str | None = None
    secrets: dict[str, str] = {}

    usps_consumer_key_param: str = "/mailroom/usps/consumer-key"
    usps_consumer_secret_param: str = "/mailroom/usps/consumer-secret"
    googlemaps_api_key_param: str = "/mailroom/googlemaps/api-key"
    geoapify_api_key_param: str = "/mailroom/geoapify/api-key"
    addresszen_api_key_param: str = "/mailroom/addresszen/api-key"

    usps_base_url: str = "https://apis.usps.com"
    googlemaps_base_url: str = "https://addressvalidation.googleapis.com"
    geoapify_base_url: str = "https://api.geoapify.com"
    addresszen_base_url: str = "https://api.addresszen.com"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            "postgresql+asyncpg://"
            f"{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()
