class FrontDeskError(Exception):
    """Base class for errors raised by the front desk service."""


class ConfigurationError(FrontDeskError):
    """A required setting (usually an API key) is missing."""


class ModelCallError(FrontDeskError):
    """The language model could not produce a reply for this turn."""
