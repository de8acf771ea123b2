"""Environment-driven configuration for the payment service."""

import os
from functools import lru_cache
from typing import Optional


def _optional(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


class Settings:
    """Service settings read from environment variables.

    Secrets are left as ``None`` when unset; components that need them fail
    closed at request time instead of at startup.
    """

    def __init__(self):
        self.service_name = os.getenv("SERVICE_NAME", "payment-service")
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
        self.log_file = _optional("LOG_FILE")
        self.log_json = os.getenv("LOG_JSON", "false").lower() == "true"

        self.nowpayments_api_key = _optional("NOWPAYMENTS_API_KEY")
        self.nowpayments_base_url = os.getenv("NOWPAYMENTS_BASE_URL", "https://api.nowpayments.io/v1").rstrip("/")
        self.nowpayments_ipn_secret = _optional("NOWPAYMENTS_IPN_SECRET")

        self.public_base_url = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")
        self.ipn_callback_url = _optional("IPN_CALLBACK_URL") or f"{self.public_base_url}/nowpayments-webhook"

        self.supabase_url = _optional("SUPABASE_URL")
        self.supabase_service_role_key = _optional("SUPABASE_SERVICE_ROLE_KEY")
        self.supabase_anon_key = _optional("SUPABASE_ANON_KEY")

        self.notification_backend = os.getenv("NOTIFICATION_BACKEND", "log").lower()
        self.resend_api_key = _optional("RESEND_API_KEY")
        self.notification_from = os.getenv("NOTIFICATION_FROM", "CryptoShop <onboarding@resend.dev>")
        self.kafka_bootstrap_servers = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "kafka:9092")
        self.notification_topic = os.getenv("NOTIFICATION_TOPIC", "orders.status")

        self.http_timeout_seconds = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)


@lru_cache
def get_settings() -> Settings:
    """Load settings once per process."""
    return Settings()
