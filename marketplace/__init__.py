"""Marketplace order/payment service."""

__version__ = "1.0.0"
