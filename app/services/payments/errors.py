"""Payment / entitlement error taxonomy."""


class PaymentError(Exception):
    """Base class for payment core errors."""


class ProviderInvocationError(PaymentError):
    """Provider UI/SDK could not be launched. Terminal (outcome=error), never retried."""


class VerificationTransportError(PaymentError):
    """verify(reference) failed at transport level. Inconclusive, polling continues."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DuplicateReferenceConflict(PaymentError):
    """A different terminal status was recorded for a reference that is already terminal."""

    def __init__(self, reference: str, existing_status: str, new_status: str):
        super().__init__(
            f"Reference {reference} already recorded as {existing_status!r}, refusing {new_status!r}"
        )
        self.reference = reference
        self.existing_status = existing_status
        self.new_status = new_status


class UnknownPlanError(PaymentError, KeyError):
    """Plan id is not in the catalog."""

    def __init__(self, plan_id: str):
        super().__init__(plan_id)
        self.plan_id = plan_id

    def __str__(self) -> str:
        return f"Unknown plan: {self.plan_id}"
