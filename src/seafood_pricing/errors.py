"""
Exception types shared across the pricing and mapping packages.
"""


class PricingError(Exception):
    """Base class for all errors raised by this package."""


class ToggleRejected(PricingError):
    """A toggle transition was refused; the job line state is unchanged."""

    def __init__(self, toggle: str, reason: str):
        super().__init__(f"{toggle}: {reason}")
        self.toggle = toggle
        self.reason = reason


class EvaluationError(PricingError):
    """A transformation expression failed to parse or raised while running."""


class FactoryDataError(PricingError):
    """Factory rate data could not be loaded."""


class UnknownFactory(PricingError, KeyError):
    """No factory is registered under the requested id."""

    def __init__(self, factory_id: str):
        super().__init__(factory_id)
        self.factory_id = factory_id

    def __str__(self) -> str:
        return f"Unknown factory '{self.factory_id}'"
