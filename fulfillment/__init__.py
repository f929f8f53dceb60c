"""Warehouse-aware stock allocation, reservation and checkout for the storefront."""

__version__ = "0.1.0"
