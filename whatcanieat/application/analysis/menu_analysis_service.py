"""
Menu Analysis Service.

Caller-facing entry point. Runs the complete flow for one request:

1. Trial gate (denied -> failed response, nothing else touched;
   unreadable usage -> allowed)
2. Cache lookup (hit -> cached results, new request id)
3. Connectivity probe (offline -> "Offline" failure)
4. Live call through the orchestrator
5. Success -> cache write + trial record
   Failure -> fall back to a still valid cache entry if one appeared

Design Pattern: Service Layer + Dependency Injection
"""

from __future__ import annotations

import time
import uuid
from typing import Awaitable, Callable, List, Optional, Union

import structlog

from whatcanieat.application.analysis.orchestrator import (
    AnalysisOrchestrator,
    create_orchestrator,
)
from whatcanieat.domain.analysis.models import (
    AnalysisRequest,
    AnalysisResponse,
    DietaryPreferences,
    MenuItem,
    MultimodalAnalysisRequest,
)
from whatcanieat.domain.analysis.ports import (
    ICacheStore,
    IConnectivityProbe,
    IMenuExtractor,
    ITrialGate,
)
from whatcanieat.domain.analysis.trial import TrialCheckResult
from whatcanieat.domain.shared.errors import CacheError, ErrorCode, TransportError
from whatcanieat.infrastructure.cache.factory import create_cache_store
from whatcanieat.infrastructure.cache.result_cache import ResultCache
from whatcanieat.infrastructure.config import get_cache_max_entries, get_cache_ttl_seconds
from whatcanieat.infrastructure.connectivity.probe import (
    StaticConnectivityProbe,
    create_connectivity_probe,
)
from whatcanieat.infrastructure.menu.text_extractor import MenuTextExtractor
from whatcanieat.infrastructure.trial.trial_gate import create_trial_gate

logger = structlog.get_logger(__name__)

OFFLINE_MESSAGE = "Offline mode - please connect to internet to analyze menu"

AnyAnalysisRequest = Union[AnalysisRequest, MultimodalAnalysisRequest]


class MenuAnalysisService:
    """
    Gated, cached, offline-aware menu analysis.

    Dependencies (injected via Ports/Interfaces):
    - orchestrator: AnalysisOrchestrator - provider routing
    - cache: ResultCache - content-addressed responses
    - probe: IConnectivityProbe - network reachability
    - trial_gate: ITrialGate - anonymous allowance (optional)
    - extractor: IMenuExtractor - free text to menu items

    Example:
        >>> service = MenuAnalysisService(orchestrator, ResultCache(InMemoryCacheStore()))
        >>> response = await service.analyze_menu(request)
        >>> for result in response.results:
        ...     print(result.item_name, result.suitability.value)
    """

    def __init__(
        self,
        orchestrator: AnalysisOrchestrator,
        cache: ResultCache,
        probe: Optional[IConnectivityProbe] = None,
        trial_gate: Optional[ITrialGate] = None,
        extractor: Optional[IMenuExtractor] = None,
    ):
        """
        Initialize service with dependencies.

        Args:
            orchestrator: Provider orchestrator
            cache: Result cache
            probe: Connectivity probe (default: always online)
            trial_gate: Trial gate (default: no gating)
            extractor: Menu text extractor (default: MenuTextExtractor)
        """
        self.orchestrator = orchestrator
        self.cache = cache
        self.probe = probe or StaticConnectivityProbe(online=True)
        self.trial_gate = trial_gate
        self.extractor = extractor or MenuTextExtractor()

    async def analyze_menu(self, request: AnalysisRequest) -> AnalysisResponse:
        """
        Analyze text menu items.

        Args:
            request: Text analysis request

        Returns:
            AnalysisResponse; failures are returned, not raised
        """
        return await self._execute(request, self.orchestrator.analyze_menu)

    async def analyze_menu_multimodal(self, request: MultimodalAnalysisRequest) -> AnalysisResponse:
        """Analyze a menu given as text and image parts."""
        return await self._execute(request, self.orchestrator.analyze_menu_multimodal)

    async def analyze_menu_text(
        self,
        raw_text: str,
        preferences: DietaryPreferences,
        context: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> AnalysisResponse:
        """
        Parse pasted menu text into items, then analyze them.

        Args:
            raw_text: Menu text, one item per line
            preferences: Dietary preferences
            context: Optional extra instructions
            request_id: Correlation id (generated if None)

        Returns:
            AnalysisResponse
        """
        items = self.extractor.parse_menu_text(raw_text)
        return await self._analyze_items(items, preferences, context, request_id)

    async def analyze_menu_url(
        self,
        url: str,
        preferences: DietaryPreferences,
        context: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> AnalysisResponse:
        """Download a menu page, extract its items and analyze them."""
        request_id = request_id or new_request_id()
        try:
            items = await self.extractor.extract_from_url(url)
        except TransportError as e:
            return AnalysisResponse.failure(request_id, str(e), e.code)
        return await self._analyze_items(items, preferences, context, request_id)

    async def _analyze_items(
        self,
        items: List[MenuItem],
        preferences: DietaryPreferences,
        context: Optional[str],
        request_id: Optional[str],
    ) -> AnalysisResponse:
        request_id = request_id or new_request_id()
        if not items:
            return AnalysisResponse.failure(
                request_id,
                "No menu items found in the provided text",
                ErrorCode.INVALID_REQUEST,
            )
        request = AnalysisRequest(
            dietary_preferences=preferences,
            menu_items=items,
            context=context,
            request_id=request_id,
        )
        return await self.analyze_menu(request)

    async def _execute(
        self,
        request: AnyAnalysisRequest,
        call: Callable[[AnyAnalysisRequest], Awaitable[AnalysisResponse]],
    ) -> AnalysisResponse:
        started_at = time.monotonic()
        log = logger.bind(request_id=request.request_id)

        if self.trial_gate is not None:
            try:
                check: Optional[TrialCheckResult] = await self.trial_gate.can_perform_call()
            except CacheError as e:
                log.warning("Trial usage unreadable, allowing analysis", error=str(e))
                check = None
            if check is not None and not check.can_call:
                log.info("Trial gate denied analysis")
                return AnalysisResponse.failure(
                    request.request_id,
                    check.message or "Trial limit reached",
                    ErrorCode.TRIAL_LIMIT,
                    started_at=started_at,
                )

        key = self.cache.make_key(request)
        cached = await self.cache.get(key, request.request_id, started_at=started_at)
        if cached is not None:
            log.info("Returning cached analysis", items=len(cached.results))
            return cached

        if not await self.probe.is_online():
            log.warning("Offline and no cached analysis")
            return AnalysisResponse.failure(
                request.request_id,
                OFFLINE_MESSAGE,
                ErrorCode.OFFLINE,
                started_at=started_at,
            )

        response = await call(request)

        if response.success:
            await self.cache.put(key, response)
            if self.trial_gate is not None:
                try:
                    await self.trial_gate.record_call_performed()
                except CacheError as e:
                    log.warning("Trial call not recorded", error=str(e))
            return response

        fallback = await self.cache.get(key, request.request_id, started_at=started_at)
        if fallback is not None:
            log.warning("Live analysis failed, using cached analysis", error=response.message)
            return fallback

        return response

    async def clear_cache(self) -> int:
        """Remove every cached analysis."""
        return await self.cache.clear()

    async def aclose(self) -> None:
        await self.orchestrator.aclose()


def new_request_id() -> str:
    """Generate a correlation id."""
    return f"req_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def create_menu_analysis_service(
    store: Optional[ICacheStore] = None,
    signed_in: bool = False,
) -> MenuAnalysisService:
    """
    Wire a service from environment variables.

    Args:
        store: Cache store override (default from CACHE_STORE)
        signed_in: Skip the trial gate for authenticated users

    Raises:
        ConfigurationError: Invalid backend or store configuration
    """
    store = store or create_cache_store()
    return MenuAnalysisService(
        orchestrator=create_orchestrator(),
        cache=ResultCache(store, ttl_seconds=get_cache_ttl_seconds(), max_entries=get_cache_max_entries()),
        probe=create_connectivity_probe(),
        trial_gate=create_trial_gate(store, signed_in=signed_in),
    )
