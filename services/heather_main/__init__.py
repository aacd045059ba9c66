# services/heather_main/__init__.py
"""HEATHER main service - patient/doctor platform backend."""

__version__ = "1.0.0"
