import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


class Settings:
    """Centralised application configuration sourced from environment variables."""

    def __init__(self) -> None:
        load_dotenv()
        self.database_path = Path(os.getenv("DATABASE_PATH", "data/creatorpass.db")).resolve()
        self.stripe_secret_key = os.getenv("STRIPE_SECRET_KEY")
        self.stripe_webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET")
        self.stripe_webhook_tolerance_seconds = self._get_int("STRIPE_WEBHOOK_TOLERANCE_SECONDS", default=300)
        self.gateway_timeout_seconds = self._get_float("GATEWAY_TIMEOUT_SECONDS", default=10.0)
        self.principal_token_secret = os.getenv("PRINCIPAL_TOKEN_SECRET", "change-me")
        self.principal_token_algorithm = os.getenv("PRINCIPAL_TOKEN_ALGORITHM", "HS256")
        self.frontend_base_url = os.getenv("FRONTEND_BASE_URL", "http://localhost:3000")
        self.default_currency = os.getenv("DEFAULT_CURRENCY", "USD").upper()
        self.checkout_reservation_ttl_seconds = self._get_int("CHECKOUT_RESERVATION_TTL_SECONDS", default=900)
        origins = os.getenv("CORS_ALLOW_ORIGINS")
        if origins:
            self.cors_allow_origins = [item.strip() for item in origins.split(",") if item.strip()]
        else:
            self.cors_allow_origins = ["*"]

    @staticmethod
    def _get_int(key: str, default: Optional[int] = None) -> int:
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise RuntimeError(f"Missing required environment variable: {key}")
            return default
        try:
            return int(value)
        except ValueError as exc:
            raise RuntimeError(f"Environment variable {key} must be an integer") from exc

    @staticmethod
    def _get_float(key: str, default: Optional[float] = None) -> float:
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise RuntimeError(f"Missing required environment variable: {key}")
            return default
        try:
            return float(value)
        except ValueError as exc:
            raise RuntimeError(f"Environment variable {key} must be a number") from exc
