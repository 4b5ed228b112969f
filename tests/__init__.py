"""
MarketDB Test Suite.

This package contains:
- unit/: Unit tests (storage primitives, registry, membership, policy, entity store, config)
- integration/: Integration tests (onboarding, cart, vendor dashboard, HTTP API, CLI)
"""
