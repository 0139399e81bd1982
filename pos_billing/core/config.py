from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from pydantic import field_validator

class Settings(BaseSettings):
    # Backend (billing / SRI collaborator) settings
    BILLING_API_URL: str = 'http://localhost:3000/api'
    BILLING_API_TIMEOUT: float = 30.0  # segundos, incluye el viaje al SRI
    BILLING_API_TOKEN: Optional[str] = None

    # Facturación electrónica (Ecuador)
    FINAL_CONSUMER_ID: str = '9999999999999'
    FINAL_CONSUMER_LIMIT: float = 50.0
    DEFAULT_TAX_RATE: float = 15.0

    # Frases de confirmación para operaciones destructivas
    RESET_BILLING_PHRASE: str = 'ELIMINAR TODO'
    RESET_CONFIG_PHRASE: str = 'RESTAURAR CONFIG'

    # Caché de configuración
    CONFIG_REFRESH_TIMEOUT: float = 10.0
    CONFIG_CACHE_FILE: Optional[str] = None

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def billing_api_base(self) -> str:
        return self.BILLING_API_URL.rstrip('/')

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", mode="before")
    @classmethod
    def parse_debug(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("BILLING_API_TOKEN", "CONFIG_CACHE_FILE", mode="before")
    @classmethod
    def parse_optional(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

settings = Settings()
