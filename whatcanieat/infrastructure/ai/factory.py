"""Provider adapter factory.

Maps a provider configuration to the matching adapter:
- GeminiConfig -> GeminiAdapter
- VertexConfig -> VertexAdapter
- ProxyConfig  -> ProxyAdapter

Usage:
    adapter = create_provider_adapter(config.gemini)
"""

from typing import Union

from whatcanieat.domain.analysis.ports import IAnalysisProvider
from whatcanieat.domain.shared.errors import ConfigurationError
from whatcanieat.infrastructure.ai.gemini_adapter import GeminiAdapter
from whatcanieat.infrastructure.ai.proxy_adapter import ProxyAdapter
from whatcanieat.infrastructure.ai.vertex_adapter import VertexAdapter
from whatcanieat.infrastructure.config import GeminiConfig, ProxyConfig, VertexConfig


def create_provider_adapter(
    config: Union[GeminiConfig, VertexConfig, ProxyConfig, None],
) -> IAnalysisProvider:
    """Create an adapter for a provider configuration.

    Raises:
        ConfigurationError: Config missing, unknown or incomplete
    """
    if isinstance(config, GeminiConfig):
        return GeminiAdapter(config)
    if isinstance(config, VertexConfig):
        return VertexAdapter(config)
    if isinstance(config, ProxyConfig):
        return ProxyAdapter(config)
    raise ConfigurationError("No configuration provided for the selected provider")
