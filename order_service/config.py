# order_service/config.py
import os
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

TX_MODE_TRANSACTION = "transaction"
TX_MODE_SAGA = "saga"


class Settings(BaseModel):
    database_url: str = "sqlite+aiosqlite:///./orders.db"
    sql_echo: bool = False
    log_level: str = "INFO"

    secret_key: str = "change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # Pricing
    shipping_cost: Decimal = Decimal("150.00")
    tax_rate: Decimal = Decimal("0.15")
    currency: str = "ETB"

    # Order workflow
    order_tx_mode: Literal["transaction", "saga"] = TX_MODE_TRANSACTION
    order_tx_timeout: float = 10.0
    order_conflict_retries: int = 3
    restock_on_cancel: bool = True

    # Collaborators
    payment_service_url: str = "http://payment_service:8005"
    payment_timeout: float = 10.0
    rabbitmq_url: str = ""

    class Config:
        frozen = True


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@lru_cache
def get_settings() -> Settings:
    """Build settings from the environment (and .env, if present)."""
    defaults = Settings()
    return Settings(
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        sql_echo=_env_bool("SQL_ECHO", defaults.sql_echo),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level),
        secret_key=os.getenv("SECRET_KEY", defaults.secret_key),
        algorithm=os.getenv("ALGORITHM", defaults.algorithm),
        access_token_expire_minutes=int(
            os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", defaults.access_token_expire_minutes)
        ),
        shipping_cost=Decimal(os.getenv("SHIPPING_COST", str(defaults.shipping_cost))),
        tax_rate=Decimal(os.getenv("TAX_RATE", str(defaults.tax_rate))),
        currency=os.getenv("CURRENCY", defaults.currency),
        order_tx_mode=os.getenv("ORDER_TX_MODE", defaults.order_tx_mode),
        order_tx_timeout=float(os.getenv("ORDER_TX_TIMEOUT", defaults.order_tx_timeout)),
        order_conflict_retries=int(
            os.getenv("ORDER_CONFLICT_RETRIES", defaults.order_conflict_retries)
        ),
        restock_on_cancel=_env_bool("RESTOCK_ON_CANCEL", defaults.restock_on_cancel),
        payment_service_url=os.getenv("PAYMENT_SERVICE_URL", defaults.payment_service_url),
        payment_timeout=float(os.getenv("PAYMENT_TIMEOUT", defaults.payment_timeout)),
        rabbitmq_url=os.getenv("RABBITMQ_URL", defaults.rabbitmq_url),
    )
