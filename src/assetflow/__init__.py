"""assetflow - async client for quote/commit wallet transfers."""

__version__ = "0.1.0"
