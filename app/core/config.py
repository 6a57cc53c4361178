from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./alumni_connect.db"
    DB_ECHO: bool = False

    SUPABASE_URL: str
    SUPABASE_SERVICE_KEY: str

    VAPID_PUBLIC_KEY: str | None = None
    VAPID_PRIVATE_KEY: str | None = None
    VAPID_SUBJECT: str = "mailto:admin@alumni-connect.local"

    LOG_LEVEL: str = "INFO"

    # Mentorship / messaging policy
    MENTORSHIP_MIN_DESCRIPTION_LENGTH: int = 10
    MENTORSHIP_MAX_DESCRIPTION_LENGTH: int = 1000
    MESSAGE_MAX_LENGTH: int = 2000
    REPORT_SNAPSHOT_SIZE: int = 20
    CONVERSATION_PREVIEW_LENGTH: int = 60
    NOTIFICATION_PREVIEW_LENGTH: int = 50

    @property
    def SQLALCHEMY_DATABASE_URL(self) -> str:
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )


settings = Settings()
