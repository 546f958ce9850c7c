"""Core mathematics, configuration and errors for the Arena wagering engine.

This package contains pure building blocks:

- ``odds_math``    : implied probability, margin pricing, parlay multiplier
- ``market_config``: fallback prices, fixed auxiliary markets, pricing knobs
- ``errors``       : the wagering exception hierarchy

Nothing in this package imports from ``backend.services`` or ``backend.models``.
All modules are side-effect-free and unit-testable in isolation.
"""
