"""
Paystack provider: hosted checkout + transaction verification over the REST API.
Bearer auth with the secret key; amounts in minor units (kobo).
"""
import logging
from typing import Any, Callable

import httpx

from app.services.payments.errors import ProviderInvocationError, VerificationTransportError
from app.services.payments.provider import (
    CheckoutRequest,
    DismissCallback,
    PaymentProvider,
    SuccessCallback,
    VerificationResult,
)

logger = logging.getLogger(__name__)

# Presentation-side launcher: opens authorization_url and reports back via the callbacks
CheckoutLauncher = Callable[[str, CheckoutRequest, SuccessCallback, DismissCallback], Any]


class PaystackProvider(PaymentProvider):
    """Paystack API provider."""

    def __init__(self, config: dict, client: httpx.Client | None = None):
        super().__init__(config)
        self.public_key = config.get("public_key", "")
        self.secret_key = config.get("secret_key", "")
        self.api_url = config.get("api_url", "https://api.paystack.co").rstrip("/")
        self.timeout = config.get("timeout", 10.0)
        self.launcher: CheckoutLauncher | None = config.get("launcher")
        self._client = client

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def is_available(self) -> bool:
        return bool(self.public_key and self.secret_key)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def initialize_transaction(self, request: CheckoutRequest) -> str:
        """Create the transaction server-side and return the hosted checkout URL."""
        payload = {
            "email": request.email,
            "amount": str(request.amount_minor_units),
            "reference": request.reference,
            "currency": request.currency,
            "metadata": request.metadata,
        }
        try:
            response = self.client.post(
                f"{self.api_url}/transaction/initialize",
                headers=self._headers(),
                json=payload,
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise ProviderInvocationError(f"Paystack initialize failed: {e}") from e

        if not body.get("status"):
            raise ProviderInvocationError(f"Paystack initialize rejected: {body.get('message', 'unknown error')}")
        url = (body.get("data") or {}).get("authorization_url")
        if not url:
            raise ProviderInvocationError("Paystack initialize returned no authorization_url")
        return url

    def invoke(
        self,
        request: CheckoutRequest,
        on_success: SuccessCallback,
        on_dismiss: DismissCallback,
    ) -> None:
        if not self.is_available():
            raise ProviderInvocationError("Paystack provider not configured")
        if self.launcher is None:
            raise ProviderInvocationError("No checkout launcher configured for Paystack")

        authorization_url = self.initialize_transaction(request)
        logger.info(
            "paystack_checkout_opened",
            extra={"reference": request.reference, "amount": request.amount_minor_units, "currency": request.currency},
        )
        try:
            self.launcher(authorization_url, request, on_success, on_dismiss)
        except ProviderInvocationError:
            raise
        except Exception as e:
            raise ProviderInvocationError(f"Checkout launcher failed: {e}") from e

    def verify(self, reference: str) -> VerificationResult:
        try:
            response = self.client.get(
                f"{self.api_url}/transaction/verify/{reference}",
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise VerificationTransportError(f"Paystack verify request failed: {e}") from e

        if response.status_code != 200:
            raise VerificationTransportError(
                f"Paystack verify returned {response.status_code}",
                status_code=response.status_code,
            )
        try:
            data = response.json().get("data") or {}
        except ValueError as e:
            raise VerificationTransportError(f"Paystack verify returned invalid JSON: {e}") from e

        amount = data.get("amount")
        return VerificationResult(
            status=str(data.get("status") or "unknown"),
            amount_minor_units=int(amount) if amount is not None else None,
            currency=data.get("currency"),
            raw=data,
        )
