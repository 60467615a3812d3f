"""Exceptions for programming errors.

Backend and validation failures are never raised; they come back as
``ErrorResult`` values inside the response models.
"""


class AssetflowError(Exception):
    """Base class for assetflow exceptions."""


class ConfigurationError(AssetflowError):
    """Raised when a service is wired with unusable settings."""


class UnknownFlowError(AssetflowError):
    """Raised when an error classifier is requested for an unknown flow."""

    def __init__(self, flow: str):
        self.flow = flow
        super().__init__(f"No error classifier registered for flow '{flow}'")
