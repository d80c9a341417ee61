"""
WhatCanIEat menu analysis core.

Request orchestration and resilience layer that checks menu items
against a user's dietary restrictions through interchangeable AI backends.

Structure:
- domain/: Analysis models, prompts, response parsing, ports
- infrastructure/: Provider adapters, transport, cache stores, config
- application/: Orchestrator and the caller-facing analysis service
- tests/: Test suite (unit)
"""

__version__ = "1.0.0"
