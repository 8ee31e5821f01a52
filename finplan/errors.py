"""Exception types raised by the calculation engines."""

from __future__ import annotations


class FinplanError(Exception):
    """Base class for engine errors."""


class InputValidationError(FinplanError, ValueError):
    """A project input record is malformed."""


class PreconditionError(FinplanError):
    """Inputs are not sufficient to run a calculation."""

    code = "precondition_failed"

    def __init__(self, message: str, action: str = ""):
        super().__init__(message)
        self.message = message
        self.action = action

    def __str__(self) -> str:
        if self.action:
            return f"{self.message}: {self.action}"
        return self.message


class NoProductsError(PreconditionError):
    code = "no_products"

    def __init__(self):
        super().__init__("No products defined", "create products first")


class NoSalesProjectionsError(PreconditionError):
    code = "no_sales_projections"

    def __init__(self):
        super().__init__("No sales projections defined", "create sales projections first")


class ProjectNotFoundError(FinplanError, LookupError):
    """No input data exists for the requested project."""


class ScenarioNotFoundError(FinplanError, LookupError):
    """The requested scenario is not defined for the project."""
