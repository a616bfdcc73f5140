"""Exceptions raised by the billing reconciliation core."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional


@dataclass
class BillingError(Exception):
    """Base class for failures the billing core reports to its caller."""

    code: str
    message: str
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for logs and JSON responses."""

        base: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base.update(self.detail)
        return base


@dataclass
class BillingConsistencyError(BillingError):
    """A required cross-entity reference could not be resolved."""


@dataclass
class CustomerMappingError(BillingConsistencyError):
    """No local customer is linked to the provider customer on an event."""


@dataclass
class UnsupportedEventError(BillingError):
    """The provider event type is not handled by the reconciliation core."""


@dataclass
class BillingPropagationError(BillingError):
    """Billing details reached the provider but the local write failed."""


__all__ = [
    "BillingConsistencyError",
    "BillingError",
    "BillingPropagationError",
    "CustomerMappingError",
    "UnsupportedEventError",
]
