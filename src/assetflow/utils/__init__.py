"""Utility modules for assetflow."""

from assetflow.utils.locks import SingleFlight

__all__ = ["SingleFlight"]
