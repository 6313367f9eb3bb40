"""
Factory for creating image generation providers based on configuration.
"""
from typing import Optional
import logging

from app.services.image_generation.base import ImageGenerationProvider
from app.services.image_generation.providers.mock import MockProvider
from app.services.image_generation.providers.openai import OpenAIProvider

logger = logging.getLogger(__name__)


class ImageProviderFactory:
    """Factory for creating image generation providers."""

    PROVIDERS = {
        "mock": MockProvider,
        "openai": OpenAIProvider,
    }

    @classmethod
    def create(cls, provider_name: str, config: dict) -> ImageGenerationProvider:
        """
        Create provider instance by name.

        Args:
            provider_name: Name of provider (mock, openai)
            config: Provider-specific configuration dict

        Returns:
            Initialized provider instance

        Raises:
            ValueError: If provider name is unknown
        """
        provider_class = cls.PROVIDERS.get((provider_name or "").strip().lower())

        if not provider_class:
            available = ", ".join(cls.PROVIDERS.keys())
            raise ValueError(
                f"Provider '{provider_name}' not found. "
                f"Available: {available}"
            )

        logger.info("image_provider_created", extra={"provider": provider_name})
        provider = provider_class(config)

        if not provider.is_available():
            logger.warning("image_provider_not_configured", extra={"provider": provider_name})

        return provider

    @classmethod
    def build_config(cls, provider_name: str, settings) -> dict:
        """Provider config from application settings; no shared state involved."""
        base = {
            "timeout": settings.ai_timeout,
            "retries": settings.ai_retries,
        }
        if provider_name == "openai":
            return {
                **base,
                "api_key": settings.openai_api_key,
                "organization": settings.openai_organization,
                "model": settings.openai_model,
            }
        if provider_name == "mock":
            return {
                **base,
                "min_delay": settings.mock_min_delay_seconds,
                "max_delay": settings.mock_max_delay_seconds,
                "failure_rate": settings.mock_failure_rate,
            }
        raise ValueError(f"Provider {provider_name} not supported in settings")

    @classmethod
    def create_from_settings(cls, settings, provider_override: Optional[str] = None) -> ImageGenerationProvider:
        """
        Create provider from application settings.

        Args:
            settings: Application settings object
            provider_override: If set, use this provider name instead of settings.ai_provider
                (admin-selected provider stored in AppSettings)
        """
        provider_name = ((provider_override or "").strip() or settings.ai_provider).lower()
        return cls.create(provider_name, cls.build_config(provider_name, settings))

    @classmethod
    def get_available_providers(cls) -> list[str]:
        """Get list of all available provider names."""
        return list(cls.PROVIDERS.keys())
