"""Runtime configuration for the FestivoEMS backend."""

from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_field(default, *env_names: str):
    alias = AliasChoices(*env_names) if len(env_names) > 1 else env_names[0]
    return Field(default=default, validation_alias=alias)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: Optional[str] = _env_field(None, "DATABASE_URL", "MONGODB_URI")
    database_name: str = _env_field("festivo", "DATABASE_NAME")

    jwt_secret: str = _env_field("change-me", "JWT_SECRET")
    jwt_expire_minutes: int = _env_field(60 * 24 * 7, "JWT_EXPIRE_MINUTES")

    cors_origins: List[str] = _env_field(["*"], "CORS_ORIGINS")

    log_level: str = _env_field("INFO", "LOG_LEVEL")
    # Daily JSON-lines transaction files are written here when set
    log_dir: Optional[str] = _env_field(None, "LOG_DIR")
    service_name: str = _env_field("festivo-api", "SERVICE_NAME")

    port: int = _env_field(8000, "PORT")


settings = Settings()
