"""Pricing runs and the pricing engine collaborator.

Re-exports key classes for convenient access:
    from quotation.pricing import PricingRunStore, HttpPricingEngine
"""

from quotation.pricing.engine import HttpPricingEngine, PricingEngine, parse_engine_response
from quotation.pricing.runs import PricingRunStore

__all__ = [
    "HttpPricingEngine",
    "PricingEngine",
    "PricingRunStore",
    "parse_engine_response",
]
