import os
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from errors import ConfigurationError


class Settings(BaseModel):
    database_url: Optional[str] = Field(None, description="MongoDB connection string")
    database_name: str = Field("parking", description="MongoDB database name")
    storage_timeout: float = Field(5.0, gt=0, description="Seconds bounding each storage call")
    slot_lock_ttl: float = Field(30.0, gt=0, description="Seconds a slot lease stays valid")
    slot_lock_wait: float = Field(2.0, ge=0, description="Seconds to wait for a contended slot")
    checkout_key_id: Optional[str] = Field(None, description="Public checkout widget key")
    checkout_key_secret: Optional[str] = Field(None, description="Secret used to verify payments")
    currency: str = Field("INR", description="Currency of payment intents")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def load_settings() -> Settings:
    origins = os.getenv("CORS_ORIGINS", "*")
    try:
        return Settings(
            database_url=os.getenv("DATABASE_URL") or None,
            database_name=os.getenv("DATABASE_NAME", "parking"),
            storage_timeout=_float_env("STORAGE_TIMEOUT", 5.0),
            slot_lock_ttl=_float_env("SLOT_LOCK_TTL", 30.0),
            slot_lock_wait=_float_env("SLOT_LOCK_WAIT", 2.0),
            checkout_key_id=os.getenv("RAZORPAY_KEY_ID") or None,
            checkout_key_secret=os.getenv("RAZORPAY_KEY_SECRET") or None,
            currency=os.getenv("PAYMENT_CURRENCY", "INR"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid settings: {exc}") from exc


@lru_cache()
def get_settings() -> Settings:
    return load_settings()
