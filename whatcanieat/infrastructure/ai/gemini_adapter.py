"""
Gemini API adapter.

Direct calls to the Gemini Developer API with an API key.
"""

from __future__ import annotations

from typing import Optional

import structlog
from google import genai
from google.genai import types

from whatcanieat.infrastructure.ai.generative_adapter import GenerativeAdapter
from whatcanieat.infrastructure.ai.transport import ResilientTransport
from whatcanieat.infrastructure.config import AIProvider, GeminiConfig, validate_provider_config

logger = structlog.get_logger(__name__)


class GeminiAdapter(GenerativeAdapter):
    """
    Menu analysis through the Gemini API.

    Example:
        >>> adapter = GeminiAdapter(GeminiConfig(api_key="..."))
        >>> response = await adapter.analyze(request)
        >>> await adapter.aclose()
    """

    provider = AIProvider.GEMINI
    max_output_tokens = 2048

    def __init__(
        self,
        config: GeminiConfig,
        client: Optional[genai.Client] = None,
        transport: Optional[ResilientTransport] = None,
    ) -> None:
        """
        Initialize adapter.

        Args:
            config: Gemini settings
            client: Optional pre-configured genai client (for testing)
            transport: Optional transport (defaults to one built from config)

        Raises:
            ConfigurationError: API key or endpoint missing
        """
        validate_provider_config(config)
        self.config = config

        if client is None:
            client = genai.Client(
                api_key=config.api_key,
                http_options=types.HttpOptions(base_url=config.endpoint),
            )

        super().__init__(
            model=config.model,
            client=client,
            transport=transport
            or ResilientTransport(
                timeout_seconds=config.timeout_seconds,
                max_retries=config.max_retries,
                name=self.provider.value,
            ),
        )
        logger.debug("Gemini adapter ready", model=config.model, api_key_present=True)
