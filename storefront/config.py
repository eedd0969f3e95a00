# storefront/config.py
import os
import logging
from decimal import Decimal
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Base directory of the project
BASE_DIR = Path(__file__).resolve().parent.parent


def _decimal(name: str, default: str) -> Decimal:
    return Decimal(os.getenv(name, default))


class Config:
    """Configuration settings for the storefront service"""

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development").lower()

    # Server settings
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:8080")
    BACKEND_URL: str = os.getenv("BACKEND_URL", "http://localhost:8000")

    # Database settings
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    # Admin settings
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")

    # Payment settings (Cashfree)
    CASHFREE_APP_ID: str = os.getenv("CASHFREE_APP_ID", "")
    CASHFREE_SECRET_KEY: str = os.getenv("CASHFREE_SECRET_KEY", "")
    CASHFREE_ENVIRONMENT: str = os.getenv("CASHFREE_ENVIRONMENT", "sandbox").lower()
    CASHFREE_API_VERSION: str = os.getenv("CASHFREE_API_VERSION", "2023-08-01")
    CASHFREE_WEBHOOK_SECRET: str = os.getenv("CASHFREE_WEBHOOK_SECRET", "") or CASHFREE_SECRET_KEY

    # Shipping settings (Shiprocket)
    SHIPROCKET_EMAIL: str = os.getenv("SHIPROCKET_EMAIL", "")
    SHIPROCKET_PASSWORD: str = os.getenv("SHIPROCKET_PASSWORD", "")
    SHIPROCKET_PICKUP_LOCATION: str = os.getenv("SHIPROCKET_PICKUP_LOCATION", "Primary")
    SHIPROCKET_PICKUP_PINCODE: str = os.getenv("SHIPROCKET_PICKUP_PINCODE", "")
    SHIPROCKET_CHANNEL_ID: str = os.getenv("SHIPROCKET_CHANNEL_ID", "")
    SHIPROCKET_WEBHOOK_SECRET: str = os.getenv("SHIPROCKET_WEBHOOK_SECRET", "")

    # Mail dispatch settings
    MAIL_API_URL: str = os.getenv("MAIL_API_URL", "")
    MAIL_API_KEY: str = os.getenv("MAIL_API_KEY", "")
    MAIL_FROM: str = os.getenv("MAIL_FROM", "XRoboFly <no-reply@xrobofly.com>")

    # Shop policy
    CURRENCY: str = os.getenv("CURRENCY", "INR")
    ORDER_ID_PREFIX: str = os.getenv("ORDER_ID_PREFIX", "XRF")
    FREE_SHIPPING_THRESHOLD: Decimal = _decimal("FREE_SHIPPING_THRESHOLD", "5000")
    FLAT_SHIPPING_FEE: Decimal = _decimal("FLAT_SHIPPING_FEE", "99")
    TAX_RATE: Decimal = _decimal("TAX_RATE", "0.18")
    MAX_LINE_QUANTITY: int = int(os.getenv("MAX_LINE_QUANTITY", "100"))
    REWARD_THRESHOLD: Decimal = _decimal("REWARD_THRESHOLD", "20000")
    REWARD_DISCOUNT_PERCENTAGE: int = int(os.getenv("REWARD_DISCOUNT_PERCENTAGE", "5"))
    REWARD_VALIDITY_DAYS: int = int(os.getenv("REWARD_VALIDITY_DAYS", "30"))
    DEFAULT_ITEM_WEIGHT: Decimal = _decimal("DEFAULT_ITEM_WEIGHT", "0.5")

    # Timing
    CHECKOUT_RETENTION_SECONDS: int = int(os.getenv("CHECKOUT_RETENTION_SECONDS", "3600"))
    SWEEP_INTERVAL_SECONDS: int = int(os.getenv("SWEEP_INTERVAL_SECONDS", "300"))
    EXTERNAL_TIMEOUT_SECONDS: float = float(os.getenv("EXTERNAL_TIMEOUT_SECONDS", "30"))
    SHIPMENT_CLAIM_SECONDS: int = int(os.getenv("SHIPMENT_CLAIM_SECONDS", "300"))

    # Other settings
    TIMEZONE: str = os.getenv("TZ", "Asia/Kolkata")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Paths
    LOG_DIR = BASE_DIR / "logs"

    @classmethod
    def is_production(cls) -> bool:
        return cls.ENVIRONMENT == "production"

    @classmethod
    def validate(cls) -> None:
        """Fail fast on settings the service cannot run without"""
        if not cls.DATABASE_URL:
            raise ValueError("No DATABASE_URL set in environment")

        if cls.is_production():
            missing = [
                name for name in (
                    "CASHFREE_APP_ID",
                    "CASHFREE_SECRET_KEY",
                    "CASHFREE_WEBHOOK_SECRET",
                    "SHIPROCKET_WEBHOOK_SECRET",
                    "ADMIN_API_KEY",
                )
                if not getattr(cls, name)
            ]
            if missing:
                raise ValueError(f"Missing production settings: {', '.join(missing)}")


def setup_logging():
    """Configure logging settings"""
    Config.LOG_DIR.mkdir(exist_ok=True)
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    log_file = Config.LOG_DIR / "storefront.log"

    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
        format=log_format,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )
