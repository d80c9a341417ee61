"""
Vertex AI adapter.

Calls Gemini models hosted on Vertex AI using service-account
credentials (JSON text or a key file) or application default credentials.
"""

from __future__ import annotations

import json
from typing import Optional

import structlog
from google import genai
from google.auth.credentials import Credentials
from google.oauth2 import service_account

from whatcanieat.domain.shared.errors import ConfigurationError
from whatcanieat.infrastructure.ai.generative_adapter import GenerativeAdapter
from whatcanieat.infrastructure.ai.transport import ResilientTransport
from whatcanieat.infrastructure.config import AIProvider, VertexConfig, validate_provider_config

logger = structlog.get_logger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


def load_vertex_credentials(credentials: Optional[str]) -> Optional[Credentials]:
    """
    Load service-account credentials.

    Args:
        credentials: Service-account JSON text, a key-file path, or None

    Returns:
        Credentials, or None to fall back to application default credentials

    Raises:
        ConfigurationError: Material is neither valid JSON nor a readable key file
    """
    if not credentials:
        return None

    try:
        info = json.loads(credentials)
    except json.JSONDecodeError:
        info = None

    try:
        if isinstance(info, dict):
            return service_account.Credentials.from_service_account_info(
                info, scopes=[CLOUD_PLATFORM_SCOPE]
            )
        return service_account.Credentials.from_service_account_file(
            credentials, scopes=[CLOUD_PLATFORM_SCOPE]
        )
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Invalid Vertex AI credentials: {e}") from e


class VertexAdapter(GenerativeAdapter):
    """Menu analysis through Vertex AI."""

    provider = AIProvider.VERTEX
    max_output_tokens = 4096

    def __init__(
        self,
        config: VertexConfig,
        client: Optional[genai.Client] = None,
        transport: Optional[ResilientTransport] = None,
    ) -> None:
        """
        Initialize adapter.

        Args:
            config: Vertex settings
            client: Optional pre-configured genai client (for testing)
            transport: Optional transport (defaults to one built from config)

        Raises:
            ConfigurationError: Project/location missing or bad credentials
        """
        validate_provider_config(config)
        self.config = config

        if client is None:
            client = genai.Client(
                vertexai=True,
                project=config.project_id,
                location=config.location,
                credentials=load_vertex_credentials(config.credentials),
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
        logger.debug(
            "Vertex adapter ready",
            model=config.model,
            project_id=config.project_id,
            location=config.location,
        )
