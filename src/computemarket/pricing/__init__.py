"""Market price discovery."""

from computemarket.pricing.oscillator import PriceOscillator

__all__ = ["PriceOscillator"]
