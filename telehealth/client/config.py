from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class ClientSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TELEHEALTH_", env_file=".env", extra="ignore")

    API_URL: str = "http://localhost:5000/api"
    # Seconds; applies to connect, read, write and pool acquisition
    REQUEST_TIMEOUT: float = 15.0
    # Where FileStorage keeps the session between runs
    SESSION_FILE: Optional[str] = None


client_settings = ClientSettings()
