# freestays/config.py
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # App
    APP_ENV: Literal["dev", "prod", "staging"] = "dev"
    PUBLIC_ORIGIN: str = "http://localhost:3000"

    # Reservation backend
    API_URL: str = "http://localhost:5240/api/v1"
    HTTP_CONNECT_TIMEOUT: float = 3.0
    HTTP_READ_TIMEOUT: float = 30.0
    CUSTOMER_COUNTRY: str = "TR"  # placeholder until the form collects it
    PREBOOK_LOCK_SECONDS: int = 1800  # backend holds the price ~30 minutes

    # Payment provider (hosted checkout page)
    PAYMENT_PUBLISHABLE_KEY: Optional[str] = None
    PAYMENT_CHECKOUT_URL: str = "https://checkout.stripe.com/pay"

    # Drafts
    DRAFT_TTL_SECONDS: int = 1800

    # Submission rate limit (per client, per minute)
    SUBMIT_RATE_LIMIT: int = 10
    REDIS_URL: Optional[str] = None

    # read .env and ignore any extra keys so this doesn't break again
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()
