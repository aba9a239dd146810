from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "community-messaging"
    app_env: str = "development"

    database_url: str = "sqlite:///./messaging.sqlite"

    # JWT
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 60

    # Argon2
    argon2_time_cost: int = 2
    argon2_memory_cost: int = 102400  # ~100 MB
    argon2_parallelism: int = 8

    # Messages
    subject_max_length: int = 255
    content_max_length: int = 50000
    send_rate_limit: int = 30
    send_rate_window_seconds: int = 60
    new_paid_user_days: int = 30

    # Attachments
    attachment_dir: str = "./uploads/attachments"
    max_attachment_bytes: int = 10 * 1024 * 1024

    csrf_enabled: bool = True

    # Logging
    log_level: str = "INFO"
    log_file: str | None = None
    log_json: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
