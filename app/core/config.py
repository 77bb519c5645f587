from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List
from decimal import Decimal
from pydantic import field_validator

class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'monterrey_user'
    POSTGRES_PASSWORD: str = 'monterrey_pass'
    POSTGRES_DB: str = 'monterrey_crm'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432
    # Full URL override (tests point this at a SQLite file)
    DATABASE_URL: Optional[str] = None

    # Redis settings
    REDIS_HOST: str = 'redis'
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None

    # Fiscal documents (NCF)
    # JSON en el entorno: NCF_TYPES='["B01","B02"]'
    NCF_TYPES: List[str] = ["B01", "B02", "B04", "B14", "B15"]
    NO_FISCAL_TYPE: str = "S/C"  # Sin comprobante
    CREDIT_NOTE_NCF_TYPE: str = "B04"
    INVOICE_NUMBER_PREFIX: str = "FAC"
    CREDIT_NOTE_NUMBER_PREFIX: str = "NC"

    # Ledger
    BALANCE_TOLERANCE: Decimal = Decimal("0.01")
    RECONCILE_INTERVAL_SECONDS: float = 3600.0
    SEQUENCE_SYNC_INTERVAL_SECONDS: float = 86400.0

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

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

settings = Settings()
