from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent.parent  # project root
ENV_PATH = BASE_DIR / ".env"

# Load .env into the process environment before Settings reads it
load_dotenv(dotenv_path=ENV_PATH)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=False,
    )

    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    DATABASE_URL: str

    JWT_SECRET: str
    JWT_ALG: str = "HS256"
    JWT_ACCESS_MINUTES: int = 60
    JWT_ISSUER: str = "store-backend"

    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    # Order bounds, in rial
    ORDER_MIN_AMOUNT: int = 1_000
    ORDER_MAX_AMOUNT: int = 50_000_000
    ORDER_MAX_QUANTITY: int = 100

    # Payment gateways
    GATEWAY_TIMEOUT_SECONDS: float = 30.0
    GATEWAY_RETRIES: int = 2

    ZARINPAL_MERCHANT_ID: str = ""
    ZARINPAL_CALLBACK_URL: str = ""
    ZARINPAL_SANDBOX: bool = True

    PAYMENT4_API_KEY: str = ""
    PAYMENT4_CALLBACK_URL: str = ""
    PAYMENT4_WEBHOOK_SECRET: str = ""
    PAYMENT4_SANDBOX: bool = True

    # Receiving addresses passed to Payment4
    STORE_ETH_WALLET: str = ""
    STORE_TON_WALLET: str = ""

    # Price feed
    NOBITEX_API_URL: str = "https://api.nobitex.ir/market/stats"
    PRICE_CACHE_SECONDS: int = 60
    USDT_FLOOR_TOMAN: int = 110_000
    USDT_FALLBACK_TOMAN: int = 115_000

    # Mail (empty host means confirmations are only logged)
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    MAIL_FROM: str = "no-reply@localhost"


settings = Settings()
