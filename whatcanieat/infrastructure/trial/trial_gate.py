"""
Local trial gate.

Tracks anonymous usage in the key-value store so the limit survives
restarts when a persistent store is configured.
"""

import time
import uuid
from typing import Callable

import structlog
from pydantic import ValidationError

from whatcanieat.domain.analysis.ports import ICacheStore, ITrialGate
from whatcanieat.domain.analysis.trial import (
    MAX_TRIAL_CALLS,
    TRIAL_LIMIT_MESSAGE,
    TrialCheckResult,
    TrialUsage,
)

logger = structlog.get_logger(__name__)

TRIAL_USAGE_KEY = "trial_usage"


class LocalTrialGate:
    """
    Trial allowance backed by an ICacheStore.

    Example:
        >>> gate = LocalTrialGate(InMemoryCacheStore())
        >>> (await gate.can_perform_call()).can_call
        True
        >>> await gate.record_call_performed()
        >>> (await gate.can_perform_call()).requires_signup
        True
    """

    def __init__(
        self,
        store: ICacheStore,
        max_calls: int = MAX_TRIAL_CALLS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.max_calls = max_calls
        self._clock = clock

    async def get_usage(self) -> TrialUsage:
        """Load usage, creating a fresh record if none (or a corrupt one) exists."""
        raw = await self.store.get(TRIAL_USAGE_KEY)
        if raw is not None:
            try:
                return TrialUsage.model_validate_json(raw)
            except ValidationError:
                logger.warning("Resetting unreadable trial usage record")

        usage = TrialUsage(device_id=f"device_{uuid.uuid4().hex[:12]}")
        await self._save(usage)
        return usage

    async def _save(self, usage: TrialUsage) -> None:
        await self.store.set(TRIAL_USAGE_KEY, usage.model_dump_json())

    async def can_perform_call(self) -> TrialCheckResult:
        """Check the remaining allowance."""
        usage = await self.get_usage()
        if usage.converted:
            return TrialCheckResult(can_call=True, calls_remaining=0)

        remaining = max(0, self.max_calls - usage.calls_performed)
        if usage.expired or remaining == 0:
            return TrialCheckResult(
                can_call=False,
                calls_remaining=0,
                requires_signup=True,
                message=TRIAL_LIMIT_MESSAGE,
            )
        return TrialCheckResult(can_call=True, calls_remaining=remaining)

    async def record_call_performed(self) -> None:
        """Count one live analysis."""
        usage = await self.get_usage()
        if usage.converted:
            return

        calls = usage.calls_performed + 1
        updated = usage.model_copy(
            update={
                "calls_performed": calls,
                "first_call_at": usage.first_call_at or self._clock(),
                "expired": calls >= self.max_calls,
            }
        )
        await self._save(updated)
        logger.info("Trial call recorded", calls_performed=calls, max_calls=self.max_calls)

    async def reset(self) -> None:
        """Forget all usage."""
        await self.store.delete(TRIAL_USAGE_KEY)

    async def convert(self) -> None:
        """Mark the trial as converted to a full account; lifts the limit."""
        usage = await self.get_usage()
        await self._save(usage.model_copy(update={"converted": True, "expired": False}))
        logger.info("Trial converted", device_id=usage.device_id)


class UnlimitedTrialGate:
    """Gate for signed-in users: always allows, records nothing."""

    async def can_perform_call(self) -> TrialCheckResult:
        return TrialCheckResult(can_call=True, calls_remaining=0)

    async def record_call_performed(self) -> None:
        return None


def create_trial_gate(store: ICacheStore, signed_in: bool = False) -> ITrialGate:
    """Pick the gate for the current user."""
    return UnlimitedTrialGate() if signed_in else LocalTrialGate(store)
