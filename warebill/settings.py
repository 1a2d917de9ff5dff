import logging

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="WAREBILL_", extra="ignore")

    db_url: str = "mysql://warebill:warebill@db:3306/warebill"

    log_level: str = "INFO"
    log_json: bool = False

    storage_service_code: str = "STORAGE"
    storage_days_per_month: int = 30  # monthly rate -> daily rate divisor


settings = Settings()
