"""
Pricing Kernel

Shared foundation for the pricing-and-tax rule evaluation engine:
- Exact decimal numeric core (no binary floating point in money math)
- Immutable snapshot value objects for rules, tiers, taxes and exemptions
- Typed exceptions with machine-readable codes
- Structured JSON logging
- Read-only ORM snapshot loading
"""

__version__ = "0.1.0"
