"""
Upstream (Azure OpenAI) configuration.

Built once from Settings at application start and handed to the dispatcher;
request handling code never reads the environment directly.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from symptom_chat.config.settings import Settings
from symptom_chat.services.upstream.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CHAT_DEPLOYMENT = "gpt-4"
DEFAULT_CHAT_API_VERSION = "2024-02-15-preview"
DEFAULT_IMAGE_DEPLOYMENT = "dall-e-3"
DEFAULT_IMAGE_API_VERSION = "2024-02-01"


@dataclass(frozen=True)
class UpstreamConfig:
    """Connection details for the hosted model deployments."""

    base_url: str
    api_key: str
    chat_deployment: str = DEFAULT_CHAT_DEPLOYMENT
    chat_api_version: str = DEFAULT_CHAT_API_VERSION
    image_deployment: str = DEFAULT_IMAGE_DEPLOYMENT
    image_api_version: str = DEFAULT_IMAGE_API_VERSION
    reassemble_lines: bool = True

    @property
    def normalized_base_url(self) -> str:
        """Base address, always ending with a path separator."""
        return self.base_url if self.base_url.endswith("/") else f"{self.base_url}/"

    @classmethod
    def from_settings(cls, settings: Settings) -> "UpstreamConfig":
        """
        Build the config from application settings.

        Raises:
            ConfigurationError: If the base address or API key is missing
        """
        if not settings.azure_openai_api_base_url or not settings.azure_openai_api_key:
            raise ConfigurationError()

        return cls(
            base_url=settings.azure_openai_api_base_url,
            api_key=settings.azure_openai_api_key,
            chat_deployment=settings.azure_deployment_gpt4 or DEFAULT_CHAT_DEPLOYMENT,
            chat_api_version=settings.azure_deployment_gpt4_version or DEFAULT_CHAT_API_VERSION,
            image_deployment=settings.azure_deployment_dalle3 or DEFAULT_IMAGE_DEPLOYMENT,
            image_api_version=settings.azure_deployment_dalle3_version or DEFAULT_IMAGE_API_VERSION,
            reassemble_lines=settings.stream_reassemble_lines,
        )


def load_upstream_config(settings: Settings) -> Optional[UpstreamConfig]:
    """Build the config at startup, returning None (and logging) when incomplete."""
    try:
        config = UpstreamConfig.from_settings(settings)
    except ConfigurationError:
        logger.error(
            "Azure configuration missing! Check AZURE_OPENAI_API_BASE_URL and AZURE_OPENAI_API_KEY"
        )
        return None

    logger.info(
        f"Azure configured: chat={config.chat_deployment}@{config.chat_api_version} "
        f"image={config.image_deployment}@{config.image_api_version}"
    )
    return config
