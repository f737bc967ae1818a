"""
Exception hierarchy for the registry automation.
"""


class AutomationError(Exception):
    """Base exception for registry automation failures."""
    pass


class ConfigurationError(AutomationError):
    """Required configuration is missing or invalid. Fatal to the calling operation."""
    pass


class SheetNotFoundError(AutomationError):
    """A sheet of the tabular registry does not exist."""

    def __init__(self, sheet: str):
        super().__init__(f"Sheet '{sheet}' not found")
        self.sheet = sheet


class GatewayError(AutomationError):
    """A notification or scheduling transport failed."""
    pass
