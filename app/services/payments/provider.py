"""
Base classes and types for payment providers.
Used by factory, coordinator and all providers (paystack).
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

VERIFIED_STATUS = "success"

SuccessCallback = Callable[[], Any]
DismissCallback = Callable[[], Any]


@dataclass(frozen=True)
class CheckoutRequest:
    """Everything the provider UI needs to charge one attempt."""
    public_key: str
    amount_minor_units: int
    reference: str
    currency: str
    email: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VerificationResult:
    """Server-side view of a transaction. Only status == "success" confirms payment."""
    status: str
    amount_minor_units: int | None = None
    currency: str | None = None
    raw: dict[str, Any] | None = None

    @property
    def is_success(self) -> bool:
        return self.status == VERIFIED_STATUS


class PaymentProvider(ABC):
    """Base class for payment providers."""

    def __init__(self, config: dict) -> None:
        self.config = config

    @abstractmethod
    def is_available(self) -> bool:
        """Check if provider is configured."""
        pass

    @abstractmethod
    def invoke(
        self,
        request: CheckoutRequest,
        on_success: SuccessCallback,
        on_dismiss: DismissCallback,
    ) -> None:
        """
        Launch the provider checkout. Callbacks may fire from any thread, at most
        once each, or never. Raises ProviderInvocationError if the UI cannot start.
        """
        pass

    @abstractmethod
    def verify(self, reference: str) -> VerificationResult:
        """Query transaction status. Raises VerificationTransportError on transport failure."""
        pass
