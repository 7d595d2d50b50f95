"""
Factory for creating payment providers based on configuration.
"""
import logging

from app.core.config import settings
from app.services.payments.paystack import PaystackProvider
from app.services.payments.provider import PaymentProvider

logger = logging.getLogger(__name__)


class PaymentProviderFactory:
    """Factory for creating payment providers."""

    PROVIDERS = {
        "paystack": PaystackProvider,
    }

    @classmethod
    def create(cls, provider_name: str, config: dict) -> PaymentProvider:
        """
        Create provider instance by name.

        Raises:
            ValueError: If provider name is unknown
        """
        provider_class = cls.PROVIDERS.get(provider_name)
        if not provider_class:
            available = ", ".join(cls.PROVIDERS.keys())
            raise ValueError(f"Unknown payment provider: {provider_name}. Available: {available}")
        provider = provider_class(config)
        if not provider.is_available():
            logger.warning("payment_provider_not_configured", extra={"source": provider_name})
        return provider

    @classmethod
    def create_from_settings(cls, launcher=None) -> PaymentProvider:
        """Create the configured provider; launcher is the presentation checkout hook."""
        name = settings.payment_provider
        config = cls.get_config_for_provider(name)
        config["launcher"] = launcher
        return cls.create(name, config)

    @staticmethod
    def get_config_for_provider(provider_name: str) -> dict:
        if provider_name == "paystack":
            return {
                "public_key": settings.paystack_public_key,
                "secret_key": settings.paystack_secret_key,
                "api_url": settings.paystack_api_url,
                "timeout": settings.http_client_timeout,
            }
        return {}
