"""
Ports (Interfaces) for Menu Analysis Dependencies.

Defines the interfaces the orchestrator and the analysis service depend
on. Infrastructure provides the implementations; tests provide mocks.

Design Pattern: Ports & Adapters (Hexagonal Architecture)
"""

from typing import List, Optional, Protocol, Sequence, runtime_checkable

from whatcanieat.domain.analysis.models import (
    AnalysisRequest,
    AnalysisResponse,
    ConnectionTestResult,
    MenuItem,
    MultimodalAnalysisRequest,
)
from whatcanieat.domain.analysis.trial import TrialCheckResult


@runtime_checkable
class IAnalysisProvider(Protocol):
    """
    Port for an AI provider adapter.

    Implementations turn a semantic request into a vendor call and never
    raise for call-time failures: they return a failed AnalysisResponse.
    """

    @property
    def provider_name(self) -> str:
        """Provider tag used in logs and messages (e.g. "gemini")."""
        ...

    async def analyze(self, request: AnalysisRequest) -> AnalysisResponse:
        """
        Analyze text menu items.

        Args:
            request: Text analysis request

        Returns:
            AnalysisResponse (success or failure)
        """
        ...

    async def analyze_multimodal(self, request: MultimodalAnalysisRequest) -> AnalysisResponse:
        """Analyze a menu given as text and image parts."""
        ...

    async def test_connection(self) -> ConnectionTestResult:
        """Probe the provider with a tiny request."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...


@runtime_checkable
class ICacheStore(Protocol):
    """
    Port for an asynchronous key-value store.

    Values are opaque strings (serialized JSON).
    """

    async def get(self, key: str) -> Optional[str]:
        """Return the value for ``key`` or None."""
        ...

    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        ...

    async def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        ...

    async def keys(self, prefix: str = "") -> List[str]:
        """List keys starting with ``prefix``."""
        ...

    async def delete_many(self, keys: Sequence[str]) -> int:
        """Remove several keys. Returns number removed."""
        ...


@runtime_checkable
class ITrialGate(Protocol):
    """Port for the trial allowance check."""

    async def can_perform_call(self) -> TrialCheckResult:
        """Check whether another analysis is allowed."""
        ...

    async def record_call_performed(self) -> None:
        """Count one successful live analysis."""
        ...


@runtime_checkable
class IConnectivityProbe(Protocol):
    """Port for network reachability checks."""

    async def is_online(self) -> bool:
        """True when the network is believed reachable."""
        ...


@runtime_checkable
class IMenuExtractor(Protocol):
    """Port for turning raw menu text into items."""

    def parse_menu_text(self, raw_text: str) -> List[MenuItem]:
        """Split free text into menu items."""
        ...

    async def extract_from_url(self, url: str) -> List[MenuItem]:
        """Download a menu page and split it into items."""
        ...
