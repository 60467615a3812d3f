"""Local persistence for offline fallbacks."""

from assetflow.storage.balance_mirror import BalanceMirror

__all__ = ["BalanceMirror"]
