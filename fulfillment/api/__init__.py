"""HTTP surface for the fulfillment service."""

from fulfillment import __version__

__all__ = ["__version__"]
