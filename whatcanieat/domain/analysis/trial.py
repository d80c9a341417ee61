"""
Trial allowance models.

Anonymous users get a fixed number of live analyses before an account
is required.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


MAX_TRIAL_CALLS = 1

TRIAL_LIMIT_MESSAGE = "Trial limit reached. Please create an account to continue scanning menus."


class TrialUsage(BaseModel):
    """
    Persisted trial usage record.

    Attributes:
        calls_performed: Live analyses performed so far
        first_call_at: Epoch seconds of the first analysis
        expired: True once the allowance is used up
        converted: True once the user created an account
        device_id: Anonymous device identifier
    """

    calls_performed: int = Field(0, ge=0)
    first_call_at: Optional[float] = None
    expired: bool = False
    converted: bool = False
    device_id: str


class TrialCheckResult(BaseModel):
    """Answer to "may I perform another analysis?"."""

    can_call: bool
    calls_remaining: int = Field(0, ge=0)
    requires_signup: bool = False
    message: Optional[str] = None
