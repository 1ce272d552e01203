"""Batch shipping-rate comparison: map, validate, rate, mark up and persist."""

__version__ = "0.1.0"
